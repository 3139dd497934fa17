import json
import threading

import pytest

from block_factories import archive_block, archive_call, archive_event, batch_block
from packages.indexers.base.metrics import IndexerMetrics, MetricsRegistry
from packages.indexers.substrate.entity_graph.entity_graph_consumer import EntityGraphConsumer
from packages.indexers.substrate.entity_graph.entity_graph_indexer import EntityGraphIndexer
from packages.indexers.substrate.entity_graph.errors import MalformedNameError, ReferentialIntegrityError
from packages.indexers.substrate.entity_graph.model import Block, Call, Event, Extrinsic
from packages.indexers.substrate.entity_graph.store import EntityStore, MemoryBackend
from packages.indexers.substrate.node.archive_file_node import ArchiveFileNode


def write_archive(path, blocks):
    with open(path, 'a') as f:
        for block in blocks:
            f.write(json.dumps(block) + '\n')


def make_consumer(node, backend, **kwargs):
    indexer = EntityGraphIndexer(EntityStore(backend))
    return EntityGraphConsumer(
        node,
        indexer,
        threading.Event(),
        'polkadot',
        batch_size=2,
        sleep_time=0,
        retry_delay=0,
        end_height=node.get_current_block_height(),
        **kwargs
    )


def test_archive_node_indexes_heights(tmp_path):
    path = tmp_path / 'blocks.jsonl'
    write_archive(path, [batch_block(height) for height in (3, 1, 2)])

    node = ArchiveFileNode([str(path)])

    assert node.get_current_block_height() == 3
    assert node.get_block_extract(2).header.height == 2
    assert node.get_block_extract(9) is None
    with pytest.raises(ValueError):
        node.get_block_extracts(2, 4)


def test_consumer_indexes_archive_range(tmp_path):
    path = tmp_path / 'blocks.jsonl'
    write_archive(path, [batch_block(height) for height in range(1, 6)])
    backend = MemoryBackend()

    make_consumer(ArchiveFileNode([str(path)]), backend, start_height=1).run()

    assert backend.get_last_block_height() == 5
    assert sorted(row['height'] for row in backend.tables[Block].values()) == [1, 2, 3, 4, 5]
    assert len(backend.tables[Event]) == 5 * 4


def test_consumer_resumes_after_checkpoint(tmp_path):
    path = tmp_path / 'blocks.jsonl'
    write_archive(path, [batch_block(height) for height in range(1, 4)])
    backend = MemoryBackend()
    make_consumer(ArchiveFileNode([str(path)]), backend, start_height=1).run()

    write_archive(path, [batch_block(height) for height in range(4, 7)])
    make_consumer(ArchiveFileNode([str(path)]), backend, start_height=1).run()

    assert backend.get_last_block_height() == 6
    assert len(backend.tables[Block]) == 6


def test_consumer_discards_rows_past_checkpoint(tmp_path):
    path = tmp_path / 'blocks.jsonl'
    write_archive(path, [batch_block(height) for height in range(1, 4)])
    backend = MemoryBackend()
    make_consumer(ArchiveFileNode([str(path)]), backend, start_height=1).run()
    # block 3 rows survive while the checkpoint says 2, as after an interrupted flush
    backend.checkpoint = 2

    make_consumer(ArchiveFileNode([str(path)]), backend, start_height=1).run()

    assert backend.get_last_block_height() == 3
    assert len(backend.tables[Block]) == 3


def test_consumer_stops_on_integrity_error(tmp_path):
    path = tmp_path / 'blocks.jsonl'
    bad = archive_block(2, events=[archive_event(0, 'NoPallet', phase='Initialization')])
    write_archive(path, [batch_block(1), bad, batch_block(3)])
    backend = MemoryBackend()

    with pytest.raises(MalformedNameError):
        make_consumer(ArchiveFileNode([str(path)]), backend, start_height=1).run()

    assert backend.get_last_block_height() == 0
    assert backend.tables[Block] == {}


class FailingOnceBackend(MemoryBackend):
    """Raises a connection error on the first write of `fail_kind`"""

    def __init__(self, fail_kind):
        super().__init__()
        self.fail_kind = fail_kind
        self.failed = False

    def write(self, kind, entity_rows):
        if kind is self.fail_kind and not self.failed:
            self.failed = True
            raise ConnectionError("connection reset by peer")
        super().write(kind, entity_rows)


def make_metrics():
    return IndexerMetrics(MetricsRegistry('substrate-polkadot-entity-graph'), 'polkadot', 'entity_graph')


def test_partial_flush_is_discarded_before_retry(tmp_path):
    path = tmp_path / 'blocks.jsonl'
    write_archive(path, [batch_block(1), batch_block(2)])
    backend = FailingOnceBackend(Call)
    metrics = make_metrics()

    make_consumer(ArchiveFileNode([str(path)]), backend, start_height=1, metrics=metrics).run()

    assert backend.failed
    assert backend.get_last_block_height() == 2
    assert len(backend.tables[Block]) == 2
    assert len(backend.tables[Extrinsic]) == 2 * 2
    assert len(backend.tables[Call]) == 2 * 5
    samples = metrics.registry.registry
    assert samples.get_sample_value(
        'service_errors_total', {'error_type': 'connection_error', 'component': 'entity_graph_consumer'}
    ) == 1
    assert samples.get_sample_value('service_health_status') == 1


def test_unknown_extrinsic_in_archive_stops_consumer(tmp_path):
    path = tmp_path / 'blocks.jsonl'
    write_archive(path, [archive_block(1, calls=[archive_call(3, [], 'Timestamp.set')])])
    backend = MemoryBackend()
    metrics = make_metrics()

    with pytest.raises(ReferentialIntegrityError):
        make_consumer(ArchiveFileNode([str(path)]), backend, start_height=1, metrics=metrics).run()

    assert backend.tables[Block] == {}
    samples = metrics.registry.registry
    assert samples.get_sample_value(
        'service_errors_total', {'error_type': 'integrity_error', 'component': 'entity_graph_consumer'}
    ) == 1
    assert samples.get_sample_value('service_health_status') == 0
