import time
import traceback
from typing import List, Optional, Tuple

from loguru import logger

from packages.indexers.base import IndexerMetrics, classify_error
from packages.indexers.substrate.entity_graph.args import args_to_strings
from packages.indexers.substrate.entity_graph.errors import BlockOrderError, MalformedNameError
from packages.indexers.substrate.entity_graph.model import (
    Block, Extrinsic, Call, Event, ExtrinsicSignature,
    BlockHeader, ExtrinsicRecord, CallRecord, EventRecord, BlockExtract,
    decode_hex, to_timestamp
)
from packages.indexers.substrate.entity_graph.store import EntityStore


def split_qualified_name(qualified_name: str) -> Tuple[str, str]:
    """'Balances.Transfer' -> ('Balances', 'Transfer')"""
    parts = qualified_name.split('.')
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise MalformedNameError(qualified_name)
    return parts[0], parts[1]


def order_calls(calls: List[CallRecord]) -> List[CallRecord]:
    """
    Order calls so that every parent precedes its children.

    A parent's address is a prefix of its children's addresses, so sorting by
    (extrinsic index, address) gives a pre-order walk of each call tree
    whatever order the source enumerated the calls in.
    """
    return sorted(calls, key=lambda call: (call.extrinsic_index, tuple(call.address)))


class EntityGraphIndexer:
    def __init__(self, store: EntityStore, metrics: Optional[IndexerMetrics] = None):
        self.store = store
        self.metrics = metrics
        self.last_block_height: Optional[int] = None

    def save_block(self, header: BlockHeader) -> Block:
        entity = Block(
            id=header.id,
            height=header.height,
            hash=decode_hex(header.hash),
            parent_hash=decode_hex(header.parent_hash),
            state_root=decode_hex(header.state_root),
            extrinsics_root=decode_hex(header.extrinsics_root),
            timestamp=to_timestamp(header.timestamp),
            spec_name=header.spec_name,
            spec_version=header.spec_version,
            impl_name=header.impl_name,
            impl_version=header.impl_version,
            validator=decode_hex(header.validator) if header.validator else None,
            extrinsics_count=0,
            calls_count=0,
            events_count=0,
        )
        self.store.insert(entity)
        return entity

    def save_extrinsic(self, record: ExtrinsicRecord) -> Extrinsic:
        block = self.store.get_or_fail(Block, record.block_id)

        entity = Extrinsic(
            id=record.id,
            block=block,
            index=record.index,
            hash=decode_hex(record.hash),
            version=record.version,
            success=record.success,
            signature=ExtrinsicSignature.from_value(record.signature),
            error=record.error,
            fee=record.fee,
            tip=record.tip,
        )
        self.store.insert(entity)

        block.extrinsics_count += 1
        self.store.upsert(block)
        return entity

    def save_call(self, record: CallRecord) -> Call:
        block = self.store.get_or_fail(Block, record.block_id)
        extrinsic = self.store.get_or_fail(Extrinsic, record.extrinsic_id)
        parent = self.store.get_or_fail(Call, record.parent_call_id) if record.parent_call_id else None

        pallet, name = split_qualified_name(record.name)

        entity = Call(
            id=record.id,
            block=block,
            extrinsic=extrinsic,
            parent=parent,
            address=list(record.address),
            pallet=pallet,
            name=name,
            success=record.success,
            args=record.args,
            error=record.error,
        )
        self.store.insert(entity)

        block.calls_count += 1
        self.store.upsert(block)

        if len(record.address) == 0:
            extrinsic.call = entity
            self.store.upsert(extrinsic)
        return entity

    def save_event(self, record: EventRecord) -> Event:
        block = self.store.get_or_fail(Block, record.block_id)
        extrinsic = self.store.get_or_fail(Extrinsic, record.extrinsic_id) if record.extrinsic_id else None
        call = self.store.get_or_fail(Call, record.call_id) if record.call_id else None

        pallet, name = split_qualified_name(record.name)

        entity = Event(
            id=record.id,
            block=block,
            block_number=block.height,
            index=record.index,
            phase=record.phase,
            pallet=pallet,
            name=name,
            args=record.args,
            args_str=args_to_strings(record.args),
            extrinsic=extrinsic,
            call=call,
        )
        self.store.insert(entity)

        block.events_count += 1
        self.store.upsert(block)
        return entity

    def process_block(self, extract: BlockExtract) -> Block:
        header = extract.header
        logger.debug(
            f"block {header.height}: extrinsics - {len(extract.extrinsics)}, "
            f"calls - {len(extract.calls)}, events - {len(extract.events)}"
        )

        block = self.save_block(header)

        for extrinsic in extract.extrinsics:
            self.save_extrinsic(extrinsic)

        for call in order_calls(extract.calls):
            self.save_call(call)

        for event in extract.events:
            self.save_event(event)

        return block

    def _check_order(self, extracts: List[BlockExtract]):
        previous = self.last_block_height
        for extract in extracts:
            height = extract.header.height
            if previous is not None and height <= previous:
                raise BlockOrderError(height, previous)
            previous = height

    def _prefetch(self, extracts: List[BlockExtract]):
        # one backend round-trip per kind answers every duplicate check of the batch
        self.store.prefetch(Block, [e.header.id for e in extracts])
        self.store.prefetch(Extrinsic, [x.id for e in extracts for x in e.extrinsics])
        self.store.prefetch(Call, [c.id for e in extracts for c in e.calls])
        self.store.prefetch(Event, [v.id for e in extracts for v in e.events])

    def index_blocks(self, extracts: List[BlockExtract]):
        """
        Link a batch of block extracts into the graph and flush it.

        Blocks must arrive in strictly ascending height order. Any failure
        discards the whole batch from the store and is re-raised; the caller
        decides whether to retry from the last checkpoint.

        Args:
            extracts: Block extracts in ascending height order
        """
        if not extracts:
            return

        batch_start_time = time.time()
        min_height = extracts[0].header.height
        max_height = extracts[-1].header.height
        try:
            self._check_order(extracts)
            self._prefetch(extracts)

            for extract in extracts:
                block_start_time = time.time()
                self.process_block(extract)
                if self.metrics:
                    self.metrics.record_block_processed(extract.header.height, time.time() - block_start_time)

            flush_start_time = time.time()
            self.store.flush(checkpoint_height=max_height)
            flush_elapsed = time.time() - flush_start_time
            self.last_block_height = max_height

            batch_duration = time.time() - batch_start_time
            processing_rate = len(extracts) / batch_duration if batch_duration > 0 else 0

            linked = {
                'extrinsic': sum(len(e.extrinsics) for e in extracts),
                'call': sum(len(e.calls) for e in extracts),
                'event': sum(len(e.events) for e in extracts),
            }
            if self.metrics:
                self.metrics.record_entities_linked('block', len(extracts))
                for kind, count in linked.items():
                    self.metrics.record_entities_linked(kind, count)
                self.metrics.update_processing_rate(processing_rate)

            logger.success(
                f"Indexed batch from {min_height} to {max_height} in {batch_duration:.2f}s "
                f"({len(extracts)} blocks, {linked['extrinsic']} extrinsics, {linked['call']} calls, "
                f"{linked['event']} events, {flush_elapsed:.2f}s flush time, {processing_rate:.2f} blocks/s)"
            )

        except Exception as e:
            self.store.rollback()
            if self.metrics:
                self.metrics.record_failed_batch(classify_error(e))

            logger.error(
                f"Failed indexing batch from {min_height} to {max_height}",
                error=e,
                traceback=traceback.format_exc())
            raise
