import copy
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Type

from loguru import logger

from packages.indexers.substrate.entity_graph import rows
from packages.indexers.substrate.entity_graph.errors import DuplicateEntityError, ReferentialIntegrityError
from packages.indexers.substrate.entity_graph.model import ENTITY_TYPES, Extrinsic, Call


class EntityBackend(ABC):
    """Durable storage behind EntityStore. Works on rows (see rows.to_row)."""

    @abstractmethod
    def load(self, kind: Type, ids: List[str]) -> Dict[str, Dict[str, Any]]:
        """Return the stored rows among `ids`, keyed by id"""
        ...

    @abstractmethod
    def write(self, kind: Type, entity_rows: List[Dict[str, Any]]):
        """Create or overwrite rows of one entity kind"""
        ...

    @abstractmethod
    def commit_checkpoint(self, block_height: int):
        """Mark every block up to `block_height` as completely written"""
        ...

    @abstractmethod
    def get_last_block_height(self) -> int:
        """Height of the last checkpoint, 0 when nothing was committed"""
        ...

    @abstractmethod
    def discard_above(self, block_height: int):
        """Drop rows of blocks above `block_height` left by an interrupted flush"""
        ...


class MemoryBackend(EntityBackend):
    """Process-local backend. Keeps the order rows were written in `write_trace`."""

    def __init__(self):
        self.tables: Dict[Type, Dict[str, Dict[str, Any]]] = {kind: {} for kind in ENTITY_TYPES}
        self.write_trace: List[tuple] = []
        self.checkpoint = 0
        self._lock = threading.Lock()

    def load(self, kind, ids):
        with self._lock:
            table = self.tables[kind]
            return {entity_id: copy.deepcopy(table[entity_id]) for entity_id in ids if entity_id in table}

    def write(self, kind, entity_rows):
        with self._lock:
            for row in entity_rows:
                self.tables[kind][row['id']] = copy.deepcopy(row)
                self.write_trace.append((kind.kind, row['id']))

    def commit_checkpoint(self, block_height):
        with self._lock:
            self.checkpoint = max(self.checkpoint, block_height)

    def get_last_block_height(self):
        return self.checkpoint

    def discard_above(self, block_height):
        with self._lock:
            for kind, table in self.tables.items():
                height_column = rows.HEIGHT_COLUMNS[kind.kind]
                stale = [entity_id for entity_id, row in table.items() if row[height_column] > block_height]
                for entity_id in stale:
                    del table[entity_id]


class EntityStore:
    """
    Write-ahead cache in front of an EntityBackend.

    Every entity touched since the last flush lives in the cache, so a read
    always sees the writes issued before it. flush() writes pending entities
    kind by kind in dependency order (blocks, extrinsics, calls, events),
    each kind in first-write order; repeated upserts of one entity collapse
    into its latest state.
    """

    def __init__(self, backend: EntityBackend):
        self.backend = backend
        self._cache: Dict[Type, Dict[str, Any]] = {kind: {} for kind in ENTITY_TYPES}
        self._absent: Dict[Type, set] = {kind: set() for kind in ENTITY_TYPES}
        self._pending: Dict[Type, Dict[str, Any]] = {kind: {} for kind in ENTITY_TYPES}

    def prefetch(self, kind: Type, ids: Iterable[str]):
        """Resolve many ids with a single backend load"""
        missing = [
            entity_id for entity_id in dict.fromkeys(ids)
            if entity_id not in self._cache[kind] and entity_id not in self._absent[kind]
        ]
        if not missing:
            return

        loaded = self.backend.load(kind, missing)
        for entity_id in missing:
            row = loaded.get(entity_id)
            if row is None:
                self._absent[kind].add(entity_id)
            elif entity_id not in self._cache[kind]:
                self._hydrate(kind, row)

    def get(self, kind: Type, entity_id: str):
        cached = self._cache[kind].get(entity_id)
        if cached is not None:
            return cached
        if entity_id in self._absent[kind]:
            return None

        self.prefetch(kind, [entity_id])
        return self._cache[kind].get(entity_id)

    def get_or_fail(self, kind: Type, entity_id: str):
        entity = self.get(kind, entity_id)
        if entity is None:
            raise ReferentialIntegrityError(kind.kind, entity_id)
        return entity

    def insert(self, entity):
        kind = type(entity)
        if self.get(kind, entity.id) is not None:
            raise DuplicateEntityError(kind.kind, entity.id)
        self._stage(kind, entity)

    def upsert(self, entity):
        self._stage(type(entity), entity)

    def _stage(self, kind: Type, entity):
        self._cache[kind][entity.id] = entity
        self._absent[kind].discard(entity.id)
        self._pending[kind][entity.id] = entity

    def _hydrate(self, kind: Type, row: Dict[str, Any]):
        entity = rows.from_row(kind, row, self.get_or_fail)
        # resolving references can hydrate this same entity first (root call <-> extrinsic)
        existing = self._cache[kind].get(entity.id)
        if existing is not None:
            return existing
        self._cache[kind][entity.id] = entity
        if kind is Extrinsic and row.get('call_id') is not None:
            entity.call = self.get_or_fail(Call, row['call_id'])
        return entity

    @property
    def pending_count(self) -> int:
        return sum(len(pending) for pending in self._pending.values())

    def flush(self, checkpoint_height: Optional[int] = None):
        """
        Write pending entities to the backend and reset the cache.

        Args:
            checkpoint_height: When given, committed as the last complete block
                after every kind was written
        """
        written = {}
        for kind in ENTITY_TYPES:
            pending = list(self._pending[kind].values())
            if pending:
                self.backend.write(kind, [rows.to_row(entity) for entity in pending])
                written[kind.kind] = len(pending)

        if checkpoint_height is not None:
            self.backend.commit_checkpoint(checkpoint_height)

        logger.debug("Store flushed", extra={"written": written, "checkpoint_height": checkpoint_height})
        self._reset()

    def rollback(self):
        """Discard everything staged since the last flush"""
        discarded = self.pending_count
        self._reset()
        if discarded:
            logger.warning(f"Store rolled back, {discarded} pending entities discarded")

    def _reset(self):
        for kind in ENTITY_TYPES:
            self._cache[kind].clear()
            self._absent[kind].clear()
            self._pending[kind].clear()
