import hashlib
from typing import Any, Dict, Iterator, List, Optional, Tuple

from loguru import logger

from packages.indexers.substrate.entity_graph.model import (
    BlockHeader, ExtrinsicRecord, CallRecord, EventRecord, BlockExtract,
    format_block_id, format_extrinsic_id, format_call_id, format_event_id
)


def is_call_value(value: Any) -> bool:
    return isinstance(value, dict) and 'call_module' in value and 'call_function' in value


def call_name(call_value: Dict[str, Any]) -> str:
    return f"{call_value['call_module']}.{call_value['call_function']}"


def call_args(call_value: Dict[str, Any]) -> Dict[str, Any]:
    args = call_value.get('call_args') or []
    if isinstance(args, dict):
        return args
    return {arg.get('name'): arg.get('value') for arg in args}


def nested_calls(call_value: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Calls passed as arguments (batch items, proxied and sudo calls), in argument order"""
    children = []
    for value in call_args(call_value).values():
        if is_call_value(value):
            children.append(value)
        elif isinstance(value, list):
            children.extend(item for item in value if is_call_value(item))
    return children


def walk_call_tree(call_value: Dict[str, Any], address: Tuple[int, ...] = ()) -> Iterator[Tuple[Tuple[int, ...], Dict[str, Any]]]:
    yield address, call_value
    for position, child in enumerate(nested_calls(call_value)):
        yield from walk_call_tree(child, address + (position,))


def _phase(value: Dict[str, Any]) -> str:
    phase = value.get('phase')
    if isinstance(phase, dict):
        return next(iter(phase), '')
    return str(phase or '')


class BlockDataProcessor:
    """Turns substrate-interface block data into a BlockExtract."""

    @staticmethod
    def process_header(block: Dict[str, Any]) -> BlockHeader:
        header = block['block_data']['header']
        runtime = block.get('runtime_version') or {}
        return BlockHeader(
            id=format_block_id(block['block_height'], block['block_hash']),
            height=block['block_height'],
            hash=block['block_hash'],
            parent_hash=header['parentHash'],
            state_root=header['stateRoot'],
            extrinsics_root=header['extrinsicsRoot'],
            spec_name=runtime.get('specName', ''),
            spec_version=runtime.get('specVersion', 0),
            impl_name=runtime.get('implName', ''),
            impl_version=runtime.get('implVersion', 0),
            timestamp=block.get('timestamp'),
            validator=block.get('validator'),
        )

    @staticmethod
    def extrinsic_outcomes(events: List[Any]) -> Dict[int, Dict[str, Any]]:
        """Success, error, fee and tip of each extrinsic, read from its System and TransactionPayment events

        Args:
            events: Raw event records of the block

        Returns:
            Outcome dict keyed by extrinsic index
        """
        outcomes = {}
        for event in events:
            value = event.value
            extrinsic_idx = value.get('extrinsic_idx')
            if extrinsic_idx is None:
                continue
            outcome = outcomes.setdefault(extrinsic_idx, {'success': True, 'error': None, 'fee': None, 'tip': None})
            name = f"{value.get('module_id')}.{value.get('event_id')}"
            attributes = value.get('attributes') or {}

            if name == 'System.ExtrinsicFailed':
                outcome['success'] = False
                outcome['error'] = attributes.get('dispatch_error') if isinstance(attributes, dict) else attributes
            elif name == 'TransactionPayment.TransactionFeePaid' and isinstance(attributes, dict):
                outcome['fee'] = int(attributes.get('actual_fee') or 0)
                outcome['tip'] = int(attributes.get('tip') or 0)
        return outcomes

    @staticmethod
    def process_extrinsics(block: Dict[str, Any], block_id: str, outcomes: Dict[int, Dict[str, Any]]) -> List[ExtrinsicRecord]:
        records = []
        for index, extrinsic in enumerate(block['block_data'].get('extrinsics', [])):
            value = extrinsic.value
            outcome = outcomes.get(index, {})

            extrinsic_hash = value.get('extrinsic_hash')
            if not extrinsic_hash:
                extrinsic_hash = '0x' + hashlib.blake2b(bytes(extrinsic.data.data), digest_size=32).hexdigest()

            signature = None
            if value.get('address') is not None:
                signature = {
                    'address': value.get('address'),
                    'signature': value.get('signature'),
                    'signedExtensions': {
                        'era': value.get('era'),
                        'nonce': value.get('nonce'),
                        'tip': value.get('tip'),
                    },
                }

            tip = outcome.get('tip')
            if tip is None and value.get('tip') is not None:
                tip = int(value['tip'])

            records.append(ExtrinsicRecord(
                id=format_extrinsic_id(block_id, index),
                block_id=block_id,
                index=index,
                hash=extrinsic_hash,
                version=value.get('version', 4),
                success=outcome.get('success', True),
                signature=signature,
                error=outcome.get('error'),
                fee=outcome.get('fee'),
                tip=tip,
            ))
        return records

    @staticmethod
    def process_calls(block: Dict[str, Any], block_id: str, outcomes: Dict[int, Dict[str, Any]]) -> List[CallRecord]:
        """Decompose every extrinsic's call into its call tree.

        Nested calls inherit the outcome of their extrinsic.
        """
        records = []
        for index, extrinsic in enumerate(block['block_data'].get('extrinsics', [])):
            root = extrinsic.value.get('call')
            if not is_call_value(root):
                continue

            extrinsic_id = format_extrinsic_id(block_id, index)
            outcome = outcomes.get(index, {})
            for address, call_value in walk_call_tree(root):
                address = list(address)
                records.append(CallRecord(
                    id=format_call_id(extrinsic_id, address),
                    block_id=block_id,
                    extrinsic_id=extrinsic_id,
                    extrinsic_index=index,
                    name=call_name(call_value),
                    address=address,
                    success=outcome.get('success', True),
                    args=call_args(call_value),
                    error=outcome.get('error'),
                    parent_call_id=format_call_id(extrinsic_id, address[:-1]) if address else None,
                ))
        return records

    @staticmethod
    def process_events(block: Dict[str, Any], block_id: str, root_call_ids: Dict[int, str]) -> List[EventRecord]:
        """Events during ApplyExtrinsic are attributed to the extrinsic and its root call."""
        records = []
        for index, event in enumerate(block.get('events', [])):
            try:
                value = event.value
                extrinsic_idx = value.get('extrinsic_idx')
                extrinsic_id = format_extrinsic_id(block_id, extrinsic_idx) if extrinsic_idx is not None else None

                records.append(EventRecord(
                    id=format_event_id(block_id, index),
                    block_id=block_id,
                    index=index,
                    name=f"{value.get('module_id')}.{value.get('event_id')}",
                    phase=_phase(value),
                    args=value.get('attributes'),
                    extrinsic_id=extrinsic_id,
                    call_id=root_call_ids.get(extrinsic_idx) if extrinsic_idx is not None else None,
                ))
            except Exception as e:
                logger.error(f"Error processing event: {str(e)} | Raw event: {str(event)}")
                raise
        return records

    @classmethod
    def process_block(cls, block: Dict[str, Any]) -> BlockExtract:
        """
        Build the extract of one block.

        Args:
            block: Dict with block_height, block_hash, timestamp, runtime_version,
                block_data (substrate-interface get_block result) and events

        Returns:
            BlockExtract with ids assigned to every record
        """
        header = cls.process_header(block)
        events = block.get('events', [])
        outcomes = cls.extrinsic_outcomes(events)

        extrinsics = cls.process_extrinsics(block, header.id, outcomes)
        calls = cls.process_calls(block, header.id, outcomes)
        root_call_ids = {call.extrinsic_index: call.id for call in calls if not call.address}

        return BlockExtract(
            header=header,
            extrinsics=extrinsics,
            calls=calls,
            events=cls.process_events(block, header.id, root_call_ids),
        )


def find_timestamp(extrinsics: List[Any]) -> Optional[int]:
    """Milliseconds argument of the block's Timestamp.set inherent"""
    for extrinsic in extrinsics:
        call = extrinsic.value.get('call') or {}
        if call.get('call_module') != 'Timestamp':
            continue
        now = call_args(call).get('now')
        if now is not None:
            return int(now)
    return None
