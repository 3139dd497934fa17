"""
Entities of the block graph and the raw per-block records they are built from.

Entities reference each other as objects, the way they are linked in the
store cache. Records carry ids only; turning ids into entity references is
the indexer's job.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, List, Optional

from packages.indexers.substrate.entity_graph.errors import ReferentialIntegrityError


def decode_hex(value: str) -> bytes:
    if value.startswith('0x') or value.startswith('0X'):
        value = value[2:]
    return bytes.fromhex(value)


def encode_hex(value: bytes) -> str:
    return '0x' + value.hex()


def to_timestamp(milliseconds: Optional[int]) -> datetime:
    """Chain timestamps are unix milliseconds; a missing one maps to the epoch."""
    return datetime.fromtimestamp((milliseconds or 0) / 1000, tz=timezone.utc)


def format_block_id(height: int, block_hash: str) -> str:
    block_hash = block_hash[2:] if block_hash.startswith('0x') else block_hash
    return f"{height:010d}-{block_hash[:5]}"


def format_extrinsic_id(block_id: str, index: int) -> str:
    return f"{block_id}-{index:06d}"


def format_call_id(extrinsic_id: str, address: List[int]) -> str:
    return extrinsic_id + ''.join(f"-{position:06d}" for position in address)


def format_event_id(block_id: str, index: int) -> str:
    return f"{block_id}-{index:06d}"


@dataclass
class ExtrinsicSignature:
    address: Any = None
    signature: Any = None
    signed_extensions: Any = None

    @classmethod
    def from_value(cls, value: Optional[Dict[str, Any]]) -> Optional['ExtrinsicSignature']:
        if value is None:
            return None
        return cls(
            address=value.get('address'),
            signature=value.get('signature'),
            signed_extensions=value.get('signedExtensions', value.get('signed_extensions')),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            'address': self.address,
            'signature': self.signature,
            'signedExtensions': self.signed_extensions,
        }


# Entities compare by identity: the graph is cyclic (extrinsic <-> root call)
# and field-wise equality would recurse.

@dataclass(eq=False)
class Block:
    kind: ClassVar[str] = 'Block'

    id: str
    height: int
    hash: bytes
    parent_hash: bytes
    state_root: bytes
    extrinsics_root: bytes
    timestamp: datetime
    spec_name: str
    spec_version: int
    impl_name: str
    impl_version: int
    validator: Optional[bytes] = None
    extrinsics_count: int = 0
    calls_count: int = 0
    events_count: int = 0


@dataclass(eq=False)
class Extrinsic:
    kind: ClassVar[str] = 'Extrinsic'

    id: str
    block: Block = field(repr=False)
    index: int
    hash: bytes
    version: int
    success: bool
    signature: Optional[ExtrinsicSignature] = None
    error: Any = None
    fee: Optional[int] = None
    tip: Optional[int] = None
    call: Optional['Call'] = field(default=None, repr=False)

    @property
    def block_id(self) -> str:
        return self.block.id

    @property
    def call_id(self) -> Optional[str]:
        return self.call.id if self.call is not None else None


@dataclass(eq=False)
class Call:
    kind: ClassVar[str] = 'Call'

    id: str
    block: Block = field(repr=False)
    extrinsic: Extrinsic = field(repr=False)
    address: List[int]
    pallet: str
    name: str
    success: bool
    args: Any = None
    error: Any = None
    parent: Optional['Call'] = field(default=None, repr=False)

    @property
    def block_id(self) -> str:
        return self.block.id

    @property
    def extrinsic_id(self) -> str:
        return self.extrinsic.id

    @property
    def parent_id(self) -> Optional[str]:
        return self.parent.id if self.parent is not None else None


@dataclass(eq=False)
class Event:
    kind: ClassVar[str] = 'Event'

    id: str
    block: Block = field(repr=False)
    block_number: int
    index: int
    phase: str
    pallet: str
    name: str
    args: Any = None
    args_str: List[str] = field(default_factory=list)
    extrinsic: Optional[Extrinsic] = field(default=None, repr=False)
    call: Optional[Call] = field(default=None, repr=False)

    @property
    def block_id(self) -> str:
        return self.block.id

    @property
    def extrinsic_id(self) -> Optional[str]:
        return self.extrinsic.id if self.extrinsic is not None else None

    @property
    def call_id(self) -> Optional[str]:
        return self.call.id if self.call is not None else None


ENTITY_TYPES = (Block, Extrinsic, Call, Event)


@dataclass
class BlockHeader:
    id: str
    height: int
    hash: str
    parent_hash: str
    state_root: str
    extrinsics_root: str
    spec_name: str
    spec_version: int
    impl_name: str
    impl_version: int
    timestamp: Optional[int] = None
    validator: Optional[str] = None


@dataclass
class ExtrinsicRecord:
    id: str
    block_id: str
    index: int
    hash: str
    version: int
    success: bool
    signature: Optional[Dict[str, Any]] = None
    error: Any = None
    fee: Optional[int] = None
    tip: Optional[int] = None


@dataclass
class CallRecord:
    id: str
    block_id: str
    extrinsic_id: str
    extrinsic_index: int
    name: str
    address: List[int]
    success: bool
    args: Any = None
    error: Any = None
    parent_call_id: Optional[str] = None


@dataclass
class EventRecord:
    id: str
    block_id: str
    index: int
    name: str
    phase: str
    args: Any = None
    extrinsic_id: Optional[str] = None
    call_id: Optional[str] = None


def _big_int(value) -> Optional[int]:
    return int(value) if value is not None else None


@dataclass
class BlockExtract:
    header: BlockHeader
    extrinsics: List[ExtrinsicRecord] = field(default_factory=list)
    calls: List[CallRecord] = field(default_factory=list)
    events: List[EventRecord] = field(default_factory=list)

    @classmethod
    def from_archive(cls, data: Dict[str, Any]) -> 'BlockExtract':
        """
        Build an extract from an archive-format block.

        Archive blocks address extrinsics by index and calls by
        (extrinsicIndex, address); ids and parent links are derived here.

        Args:
            data: Dict with 'header', 'extrinsics', 'calls' and 'events' keys

        Returns:
            BlockExtract with ids assigned to every record
        """
        raw_header = data['header']
        block_id = raw_header.get('id') or format_block_id(raw_header['height'], raw_header['hash'])

        header = BlockHeader(
            id=block_id,
            height=raw_header['height'],
            hash=raw_header['hash'],
            parent_hash=raw_header['parentHash'],
            state_root=raw_header['stateRoot'],
            extrinsics_root=raw_header['extrinsicsRoot'],
            spec_name=raw_header['specName'],
            spec_version=raw_header['specVersion'],
            impl_name=raw_header['implName'],
            impl_version=raw_header['implVersion'],
            timestamp=raw_header.get('timestamp'),
            validator=raw_header.get('validator'),
        )

        extrinsic_ids = {}
        extrinsics = []
        for raw in data.get('extrinsics', []):
            extrinsic_id = format_extrinsic_id(block_id, raw['index'])
            extrinsic_ids[raw['index']] = extrinsic_id
            extrinsics.append(ExtrinsicRecord(
                id=extrinsic_id,
                block_id=block_id,
                index=raw['index'],
                hash=raw['hash'],
                version=raw['version'],
                success=raw['success'],
                signature=raw.get('signature'),
                error=raw.get('error'),
                fee=_big_int(raw.get('fee')),
                tip=_big_int(raw.get('tip')),
            ))

        def extrinsic_id_of(index: int) -> str:
            if index not in extrinsic_ids:
                raise ReferentialIntegrityError('Extrinsic', format_extrinsic_id(block_id, index))
            return extrinsic_ids[index]

        calls = []
        for raw in data.get('calls', []):
            extrinsic_id = extrinsic_id_of(raw['extrinsicIndex'])
            address = list(raw.get('address', []))
            calls.append(CallRecord(
                id=format_call_id(extrinsic_id, address),
                block_id=block_id,
                extrinsic_id=extrinsic_id,
                extrinsic_index=raw['extrinsicIndex'],
                name=raw['name'],
                address=address,
                success=raw['success'],
                args=raw.get('args'),
                error=raw.get('error'),
                parent_call_id=format_call_id(extrinsic_id, address[:-1]) if address else None,
            ))

        events = []
        for raw in data.get('events', []):
            extrinsic_id = None
            call_id = None
            if raw.get('extrinsicIndex') is not None:
                extrinsic_id = extrinsic_id_of(raw['extrinsicIndex'])
                if raw.get('callAddress') is not None:
                    call_id = format_call_id(extrinsic_id, raw['callAddress'])
            events.append(EventRecord(
                id=format_event_id(block_id, raw['index']),
                block_id=block_id,
                index=raw['index'],
                name=raw['name'],
                phase=raw['phase'],
                args=raw.get('args'),
                extrinsic_id=extrinsic_id,
                call_id=call_id,
            ))

        return cls(header=header, extrinsics=extrinsics, calls=calls, events=events)
