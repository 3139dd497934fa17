import json
from typing import Dict, List

from loguru import logger

from packages.indexers.substrate.entity_graph.model import BlockExtract
from packages.indexers.substrate.node.abstract_node import Node


class ArchiveFileNode(Node):
    """
    Replays archive-format blocks from JSON lines files.

    Each line holds one block ({"header": ..., "extrinsics": [...], "calls": [...],
    "events": [...]}). Files are indexed by height on startup and lines are
    parsed on demand.
    """

    def __init__(self, paths: List[str]):
        self.paths = paths
        self._offsets: Dict[int, tuple] = {}
        for path in paths:
            self._index_file(path)

        logger.info(
            "Archive file node initialized",
            extra={
                "files": paths,
                "blocks": len(self._offsets),
                "max_height": self.get_current_block_height()
            }
        )

    def _index_file(self, path: str):
        with open(path, 'rb') as f:
            offset = f.tell()
            line = f.readline()
            while line:
                if line.strip():
                    height = json.loads(line)['header']['height']
                    self._offsets[height] = (path, offset)
                offset = f.tell()
                line = f.readline()

    def get_current_block_height(self) -> int:
        return max(self._offsets) if self._offsets else 0

    def get_block_extract(self, block_height: int) -> BlockExtract | None:
        location = self._offsets.get(block_height)
        if location is None:
            return None

        path, offset = location
        with open(path, 'rb') as f:
            f.seek(offset)
            return BlockExtract.from_archive(json.loads(f.readline()))
