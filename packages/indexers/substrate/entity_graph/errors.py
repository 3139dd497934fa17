class EntityGraphError(Exception):
    """Base class for faults that abort the current block batch."""


class ReferentialIntegrityError(EntityGraphError):
    """A declared parent entity (block, extrinsic or call) is not in the store."""

    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"{kind} {entity_id} not found")
        self.kind = kind
        self.entity_id = entity_id


class DuplicateEntityError(EntityGraphError):
    """An insert targeted an id that is already stored, i.e. the block was already processed."""

    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"{kind} {entity_id} already exists")
        self.kind = kind
        self.entity_id = entity_id


class MalformedNameError(EntityGraphError, ValueError):
    """A qualified call or event name is not of the form 'Pallet.name'."""

    def __init__(self, qualified_name: str):
        super().__init__(f"Malformed qualified name: {qualified_name!r}")
        self.qualified_name = qualified_name


class BlockOrderError(EntityGraphError):
    """Blocks were handed to the indexer out of ascending height order."""

    def __init__(self, height: int, previous_height: int):
        super().__init__(f"Block {height} does not follow block {previous_height}")
        self.height = height
        self.previous_height = previous_height
