from packages.indexers.substrate.entity_graph.errors import (
    EntityGraphError, ReferentialIntegrityError, DuplicateEntityError, MalformedNameError, BlockOrderError
)
from packages.indexers.substrate.entity_graph.model import (
    Block, Extrinsic, Call, Event, ExtrinsicSignature,
    BlockHeader, ExtrinsicRecord, CallRecord, EventRecord, BlockExtract
)
from packages.indexers.substrate.entity_graph.store import EntityStore, EntityBackend, MemoryBackend
