"""Access to the host's persisted conversation store."""

from ctxrecover.storage.messages import StoredMessage, read_messages, read_parts, write_part
from ctxrecover.storage.paths import StorageLayout
from ctxrecover.storage.tool_outputs import (
    TRUNCATION_MESSAGE,
    StoredToolRecord,
    ToolOutputStore,
    ToolResultInfo,
    TruncateOutcome,
)

__all__ = [
    "StorageLayout",
    "StoredMessage",
    "read_messages",
    "read_parts",
    "write_part",
    "TRUNCATION_MESSAGE",
    "StoredToolRecord",
    "ToolOutputStore",
    "ToolResultInfo",
    "TruncateOutcome",
]
