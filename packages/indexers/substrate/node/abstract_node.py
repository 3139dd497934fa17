from abc import ABC, abstractmethod
from typing import List

from packages.indexers.substrate.entity_graph.model import BlockExtract


class Node(ABC):
    """Source of block extracts, read in ascending height order"""

    @abstractmethod
    def get_current_block_height(self) -> int:
        """Get current blockchain height"""
        ...

    @abstractmethod
    def get_block_extract(self, block_height: int) -> BlockExtract | None:
        """Get the extract of the block at the specified height"""
        ...

    def get_block_extracts(self, start_height: int, end_height: int) -> List[BlockExtract]:
        extracts = []
        for height in range(start_height, end_height + 1):
            extract = self.get_block_extract(height)
            if extract is None:
                raise ValueError(f"No block found at height {height}")
            extracts.append(extract)
        return extracts
