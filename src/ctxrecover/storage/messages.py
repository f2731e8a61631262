"""Reading messages and parts, and writing single parts."""

import json
import os
import secrets
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from ctxrecover.storage.paths import StorageLayout
from ctxrecover.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class StoredMessage:
    """A persisted message together with its parts, in storage order."""

    id: str
    session_id: str
    role: Optional[str]
    created: int
    info: Dict[str, Any] = field(default_factory=dict)
    parts: List[Dict[str, Any]] = field(default_factory=list)


def read_json(path: Path) -> Optional[Dict[str, Any]]:
    """Load one JSON record, returning None when missing or malformed."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.debug(f"Skipping unreadable record {path}: {e}")
        return None
    return data if isinstance(data, dict) else None


def write_json(path: Path, data: Dict[str, Any]) -> None:
    """Write a JSON record atomically (temp file then rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    os.replace(tmp_path, path)


def read_parts(layout: StorageLayout, message_id: str) -> List[Dict[str, Any]]:
    """Return a message's parts sorted by part ID, each with ``_path`` set."""
    part_dir = layout.part_dir(message_id)
    if not part_dir.is_dir():
        return []

    parts = []
    for path in sorted(part_dir.glob("*.json")):
        part = read_json(path)
        if part is None:
            continue
        part["_path"] = str(path)
        parts.append(part)
    return sorted(parts, key=lambda p: str(p.get("id", "")))


def read_messages(
    layout: StorageLayout, session_id: str, with_parts: bool = True
) -> List[StoredMessage]:
    """Read a session's messages ordered by creation time, then ID."""
    message_dir = layout.message_dir(session_id)
    if message_dir is None:
        return []

    messages = []
    for path in message_dir.glob("*.json"):
        info = read_json(path)
        if info is None:
            continue
        message_id = str(info.get("id") or path.stem)
        times = info.get("time")
        created = times.get("created") if isinstance(times, dict) else None
        messages.append(
            StoredMessage(
                id=message_id,
                session_id=session_id,
                role=info.get("role"),
                created=created if isinstance(created, (int, float)) else 0,
                info=info,
                parts=read_parts(layout, message_id) if with_parts else [],
            )
        )

    return sorted(messages, key=lambda m: (m.created, m.id))


def generate_part_id() -> str:
    """Create a part ID that sorts after existing ones created earlier."""
    return f"prt_{int(time.time() * 1000):012x}{secrets.token_hex(7)}"


def write_part(layout: StorageLayout, part: Dict[str, Any]) -> bool:
    """Persist one part under its message directory.

    Returns:
        True on success, False when the part is incomplete or the write fails
    """
    message_id = part.get("messageID")
    part_id = part.get("id")
    if not message_id or not part_id:
        logger.warning("Refusing to write part without messageID/id")
        return False

    record = {k: v for k, v in part.items() if k != "_path"}
    path = layout.part_dir(str(message_id)) / f"{part_id}.json"
    try:
        write_json(path, record)
    except OSError as e:
        logger.warning(f"Failed to write part {path}: {e}")
        return False
    return True
