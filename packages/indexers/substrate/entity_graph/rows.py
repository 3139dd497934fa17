"""Flat row form of entities, with references replaced by ids."""

from typing import Any, Callable, Dict, Optional, Type

from packages.indexers.substrate.entity_graph.model import (
    Block, Extrinsic, Call, Event, ExtrinsicSignature
)

Resolver = Callable[[Type, str], Any]


def to_row(entity) -> Dict[str, Any]:
    if isinstance(entity, Block):
        return {
            'id': entity.id,
            'height': entity.height,
            'hash': entity.hash,
            'parent_hash': entity.parent_hash,
            'state_root': entity.state_root,
            'extrinsics_root': entity.extrinsics_root,
            'timestamp': entity.timestamp,
            'spec_name': entity.spec_name,
            'spec_version': entity.spec_version,
            'impl_name': entity.impl_name,
            'impl_version': entity.impl_version,
            'validator': entity.validator,
            'extrinsics_count': entity.extrinsics_count,
            'calls_count': entity.calls_count,
            'events_count': entity.events_count,
        }
    if isinstance(entity, Extrinsic):
        return {
            'id': entity.id,
            'block_id': entity.block_id,
            'block_height': entity.block.height,
            'index': entity.index,
            'hash': entity.hash,
            'version': entity.version,
            'success': entity.success,
            'signature': entity.signature.to_json() if entity.signature is not None else None,
            'error': entity.error,
            'fee': entity.fee,
            'tip': entity.tip,
            'call_id': entity.call_id,
        }
    if isinstance(entity, Call):
        return {
            'id': entity.id,
            'block_id': entity.block_id,
            'block_height': entity.block.height,
            'extrinsic_id': entity.extrinsic_id,
            'parent_id': entity.parent_id,
            'address': list(entity.address),
            'pallet': entity.pallet,
            'name': entity.name,
            'success': entity.success,
            'args': entity.args,
            'error': entity.error,
        }
    if isinstance(entity, Event):
        return {
            'id': entity.id,
            'block_id': entity.block_id,
            'block_number': entity.block_number,
            'index': entity.index,
            'phase': entity.phase,
            'pallet': entity.pallet,
            'name': entity.name,
            'args': entity.args,
            'args_str': list(entity.args_str),
            'extrinsic_id': entity.extrinsic_id,
            'call_id': entity.call_id,
        }
    raise TypeError(f"Not an entity: {type(entity).__name__}")


def _optional(resolve: Resolver, kind: Type, entity_id: Optional[str]):
    return resolve(kind, entity_id) if entity_id is not None else None


def from_row(kind: Type, row: Dict[str, Any], resolve: Resolver):
    """
    Rebuild an entity from its row, resolving referenced ids through `resolve`.

    Extrinsic.call is left unset: the root call refers back to its extrinsic,
    so the caller links it once the extrinsic itself is resolvable.
    """
    if kind is Block:
        return Block(**row)
    if kind is Extrinsic:
        return Extrinsic(
            id=row['id'],
            block=resolve(Block, row['block_id']),
            index=row['index'],
            hash=row['hash'],
            version=row['version'],
            success=row['success'],
            signature=ExtrinsicSignature.from_value(row['signature']),
            error=row['error'],
            fee=row['fee'],
            tip=row['tip'],
        )
    if kind is Call:
        return Call(
            id=row['id'],
            block=resolve(Block, row['block_id']),
            extrinsic=resolve(Extrinsic, row['extrinsic_id']),
            parent=_optional(resolve, Call, row['parent_id']),
            address=list(row['address']),
            pallet=row['pallet'],
            name=row['name'],
            success=row['success'],
            args=row['args'],
            error=row['error'],
        )
    if kind is Event:
        return Event(
            id=row['id'],
            block=resolve(Block, row['block_id']),
            block_number=row['block_number'],
            index=row['index'],
            phase=row['phase'],
            pallet=row['pallet'],
            name=row['name'],
            args=row['args'],
            args_str=list(row['args_str']),
            extrinsic=_optional(resolve, Extrinsic, row['extrinsic_id']),
            call=_optional(resolve, Call, row['call_id']),
        )
    raise TypeError(f"Not an entity type: {kind.__name__}")


HEIGHT_COLUMNS = {
    'Block': 'height',
    'Extrinsic': 'block_height',
    'Call': 'block_height',
    'Event': 'block_number',
}
