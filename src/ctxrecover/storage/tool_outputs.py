"""Tool-output records: ranking by size and irreversible truncation."""

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from ctxrecover.storage.messages import read_json, write_json
from ctxrecover.storage.paths import StorageLayout
from ctxrecover.utils.logger import get_logger

logger = get_logger(__name__)

TRUNCATION_MESSAGE = (
    "[TOOL RESULT TRUNCATED - Context limit exceeded. Original output was too "
    "large and has been truncated to recover the session. Please re-run this "
    "tool if you need the full output.]"
)


@dataclass(frozen=True)
class StoredToolRecord:
    """One persisted tool invocation."""

    part_id: str
    message_id: str
    call_id: Optional[str]
    tool_name: str
    input: Any
    output: Optional[str]
    truncated: bool = False
    original_size: Optional[int] = None

    @classmethod
    def from_part(cls, part: Dict[str, Any]) -> Optional["StoredToolRecord"]:
        """Build a record from a raw part, or None for non-tool parts."""
        if part.get("type") != "tool":
            return None
        state = part.get("state") if isinstance(part.get("state"), dict) else {}
        output = state.get("output")
        return cls(
            part_id=str(part.get("id", "")),
            message_id=str(part.get("messageID", "")),
            call_id=part.get("callID"),
            tool_name=str(part.get("tool", "")),
            input=state.get("input"),
            output=output if isinstance(output, str) else None,
            truncated=bool(part.get("truncated", False)),
            original_size=part.get("originalSize"),
        )

    @property
    def is_truncatable(self) -> bool:
        return bool(self.output) and not self.truncated


@dataclass(frozen=True)
class ToolResultInfo:
    """Location and size of a truncatable tool output."""

    part_path: str
    part_id: str
    message_id: str
    tool_name: str
    output_size: int


@dataclass(frozen=True)
class TruncateOutcome:
    """Result of truncating one record."""

    success: bool
    tool_name: Optional[str] = None
    original_size: Optional[int] = None


class ToolOutputStore:
    """Reads and truncates a session's persisted tool outputs.

    Only records with output present and ``truncated`` unset are ever
    selected, so truncating twice is a no-op even without a lock.
    """

    def __init__(self, layout: StorageLayout):
        self.layout = layout

    def _iter_tool_parts(
        self, session_id: str
    ) -> Iterator[Tuple[Path, str, Dict[str, Any]]]:
        for message_id in self.layout.message_ids(session_id):
            part_dir = self.layout.part_dir(message_id)
            if not part_dir.is_dir():
                continue
            for path in sorted(part_dir.glob("*.json")):
                part = read_json(path)
                if part is not None:
                    yield path, message_id, part

    def find_tool_results_by_size(self, session_id: str) -> List[ToolResultInfo]:
        """Return every truncatable tool output, largest first."""
        results = []
        for path, message_id, part in self._iter_tool_parts(session_id):
            record = StoredToolRecord.from_part(part)
            if record is None or not record.is_truncatable:
                continue
            results.append(
                ToolResultInfo(
                    part_path=str(path),
                    part_id=record.part_id,
                    message_id=message_id,
                    tool_name=record.tool_name,
                    output_size=len(record.output or ""),
                )
            )
        return sorted(results, key=lambda r: r.output_size, reverse=True)

    def find_largest_tool_result(self, session_id: str) -> Optional[ToolResultInfo]:
        results = self.find_tool_results_by_size(session_id)
        return results[0] if results else None

    def get_total_tool_output_size(self, session_id: str) -> int:
        return sum(r.output_size for r in self.find_tool_results_by_size(session_id))

    def count_truncated_results(self, session_id: str) -> int:
        return sum(
            1
            for _, _, part in self._iter_tool_parts(session_id)
            if part.get("truncated") is True
        )

    def truncate_tool_result(self, part_path: str) -> TruncateOutcome:
        """Replace one record's output with the truncation notice."""
        path = Path(part_path)
        part = read_json(path)
        if part is None:
            return TruncateOutcome(success=False)

        state = part.get("state")
        if not isinstance(state, dict) or not state.get("output") or part.get("truncated"):
            return TruncateOutcome(success=False)

        original_size = len(state["output"])
        tool_name = part.get("tool")

        part["truncated"] = True
        part["originalSize"] = original_size
        state["output"] = TRUNCATION_MESSAGE
        times = state.get("time")
        if not isinstance(times, dict):
            times = {"start": int(time.time() * 1000)}
            state["time"] = times
        times["compacted"] = int(time.time() * 1000)

        try:
            write_json(path, part)
        except OSError as e:
            logger.warning(f"Failed to truncate tool output {path}: {e}")
            return TruncateOutcome(success=False)

        logger.debug(f"Truncated {tool_name} output ({original_size} chars) at {path}")
        return TruncateOutcome(
            success=True, tool_name=tool_name, original_size=original_size
        )

    def truncate_tool_outputs_by_call_id(
        self, session_id: str, call_ids: Iterable[str]
    ) -> Tuple[int, int]:
        """Truncate the outputs of specific tool calls.

        Returns:
            Tuple of (records truncated, characters removed)
        """
        wanted = set(call_ids)
        if not wanted:
            return 0, 0

        truncated = 0
        removed = 0
        for path, _, part in self._iter_tool_parts(session_id):
            if part.get("type") != "tool" or part.get("callID") not in wanted:
                continue
            outcome = self.truncate_tool_result(str(path))
            if outcome.success:
                truncated += 1
                removed += outcome.original_size or 0
        return truncated, removed
