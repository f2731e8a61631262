"""Directory layout of the persisted conversation store.

::

    <root>/message/<sessionID>/<messageID>.json
    <root>/message/<shard>/<sessionID>/<messageID>.json   (sharded variant)
    <root>/part/<messageID>/<partID>.json
"""

from pathlib import Path
from typing import List, Optional, Union

from ctxrecover.utils.logger import get_logger

logger = get_logger(__name__)


class StorageLayout:
    """Resolves session, message and part locations under one storage root."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    @property
    def message_root(self) -> Path:
        return self.root / "message"

    @property
    def part_root(self) -> Path:
        return self.root / "part"

    def message_dir(self, session_id: str) -> Optional[Path]:
        """Find the directory holding a session's message files, or None."""
        if not self.message_root.is_dir():
            return None

        direct = self.message_root / session_id
        if direct.is_dir():
            return direct

        try:
            shards = sorted(p for p in self.message_root.iterdir() if p.is_dir())
        except OSError as e:
            logger.debug(f"Cannot list message storage {self.message_root}: {e}")
            return None

        for shard in shards:
            candidate = shard / session_id
            if candidate.is_dir():
                return candidate
        return None

    def message_ids(self, session_id: str) -> List[str]:
        """Return the IDs of every message stored for a session."""
        message_dir = self.message_dir(session_id)
        if message_dir is None:
            return []
        try:
            return sorted(p.stem for p in message_dir.glob("*.json"))
        except OSError as e:
            logger.debug(f"Cannot list messages in {message_dir}: {e}")
            return []

    def part_dir(self, message_id: str) -> Path:
        return self.part_root / message_id
