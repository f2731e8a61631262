"""Truncate tool outputs until the session fits a target share of the window."""

import math
from dataclasses import dataclass, field
from typing import List, Tuple

from ctxrecover.storage.tool_outputs import ToolOutputStore
from ctxrecover.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class TruncationConfig:
    """Configuration for aggressive truncation.

    Attributes:
        target_token_ratio: Share of ``max_tokens`` to shrink the session to
        chars_per_token: Fixed characters-per-token estimate
        max_truncate_attempts: Cap on records truncated per session before
            truncation is no longer tried
    """

    target_token_ratio: float = 0.5
    chars_per_token: int = 4
    max_truncate_attempts: int = 20


@dataclass
class TruncationResult:
    """Outcome of one truncate-until-target pass."""

    success: bool
    sufficient: bool
    truncated_count: int
    total_bytes_removed: int
    target_bytes_to_remove: int
    truncated_tools: List[Tuple[str, int]] = field(default_factory=list)

    @property
    def tool_names(self) -> List[str]:
        return [name for name, _ in self.truncated_tools]


def truncate_until_target_tokens(
    store: ToolOutputStore,
    session_id: str,
    current_tokens: int,
    max_tokens: int,
    target_ratio: float = 0.5,
    chars_per_token: int = 4,
) -> TruncationResult:
    """
    Truncate the largest tool outputs until enough characters are freed.

    Stops as soon as the removed total reaches the target, so no more records
    are truncated than necessary.

    Args:
        store: Tool-output store for the session
        session_id: Session to shrink
        current_tokens: Estimated current prompt size
        max_tokens: Model context window
        target_ratio: Share of ``max_tokens`` to shrink to
        chars_per_token: Characters-per-token estimate

    Returns:
        TruncationResult; ``sufficient`` is only True when the target was met
    """
    target_tokens = math.floor(max_tokens * target_ratio)
    tokens_to_reduce = current_tokens - target_tokens
    chars_to_reduce = tokens_to_reduce * chars_per_token

    if tokens_to_reduce <= 0:
        return TruncationResult(
            success=True,
            sufficient=True,
            truncated_count=0,
            total_bytes_removed=0,
            target_bytes_to_remove=0,
        )

    results = store.find_tool_results_by_size(session_id)
    if not results:
        return TruncationResult(
            success=False,
            sufficient=False,
            truncated_count=0,
            total_bytes_removed=0,
            target_bytes_to_remove=chars_to_reduce,
        )

    total_removed = 0
    truncated_tools: List[Tuple[str, int]] = []

    for result in results:
        if total_removed >= chars_to_reduce:
            break
        outcome = store.truncate_tool_result(result.part_path)
        if not outcome.success:
            continue
        size = outcome.original_size or 0
        total_removed += size
        truncated_tools.append((outcome.tool_name or result.tool_name, size))
        logger.debug(
            f"Truncated {result.tool_name} ({size} chars), "
            f"{total_removed}/{chars_to_reduce} removed"
        )

    return TruncationResult(
        success=len(truncated_tools) > 0,
        sufficient=total_removed >= chars_to_reduce,
        truncated_count=len(truncated_tools),
        total_bytes_removed=total_removed,
        target_bytes_to_remove=chars_to_reduce,
        truncated_tools=truncated_tools,
    )
