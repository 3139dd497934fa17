import os
import sys

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from block_factories import batch_block
from packages.indexers.substrate.entity_graph.entity_graph_indexer import EntityGraphIndexer
from packages.indexers.substrate.entity_graph.model import BlockExtract
from packages.indexers.substrate.entity_graph.store import EntityStore, MemoryBackend


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def store(backend):
    return EntityStore(backend)


@pytest.fixture
def indexer(store):
    return EntityGraphIndexer(store)


@pytest.fixture
def extract():
    return BlockExtract.from_archive(batch_block(100))
