"""Prune repeated identical tool calls, keeping the most recent of each.

Runs without the session lock. It never touches the last call of a
signature, and the primary pipeline truncates by size, not recency; the
store's ``truncated`` flag makes any overlap idempotent.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from ctxrecover.recovery.errors import ParsedLimitError
from ctxrecover.storage.messages import StoredMessage, read_messages
from ctxrecover.storage.tool_outputs import ToolOutputStore
from ctxrecover.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_PROTECTED_TOOLS = frozenset(
    {
        "task",
        "todowrite",
        "todoread",
        "lsp_rename",
        "session_read",
        "session_write",
        "session_search",
    }
)

CHARS_PER_TOKEN_ESTIMATE = 4


@dataclass
class DeduplicationConfig:
    """Configuration for duplicate tool-call pruning."""

    enabled: bool = False
    protected_tools: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ToolCallSignature:
    """One tool call keyed by its canonical signature."""

    tool_name: str
    signature: str
    call_id: str
    turn: int


@dataclass
class PruningState:
    """Per-session record of calls already marked for pruning."""

    tool_ids_to_prune: Set[str] = field(default_factory=set)


@dataclass
class DeduplicationResult:
    """Outcome of one deduplication pass."""

    pruned_count: int = 0
    tokens_saved: int = 0
    unique_signatures: int = 0
    truncated_count: int = 0
    chars_removed: int = 0
    pruned_call_ids: List[str] = field(default_factory=list)


def create_tool_signature(tool_name: str, tool_input: Any) -> str:
    """Canonical ``tool::json`` form with object keys sorted at every level."""
    canonical = json.dumps(
        tool_input, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str
    )
    return f"{tool_name}::{canonical}"


def estimate_tokens(text: str) -> int:
    return -(-len(text) // CHARS_PER_TOKEN_ESTIMATE)


def _find_tool_output(messages: List[StoredMessage], call_id: str) -> Optional[str]:
    for message in messages:
        for part in message.parts:
            if part.get("type") != "tool" or part.get("callID") != call_id:
                continue
            output = (part.get("state") or {}).get("output")
            if output:
                return output
    return None


def plan_deduplication(
    messages: List[StoredMessage],
    state: PruningState,
    protected_tools: Iterable[str],
) -> DeduplicationResult:
    """
    Mark all but the last call of every repeated signature for pruning.

    Args:
        messages: Session messages with parts, oldest first
        state: Pruning state updated in place
        protected_tools: Tool names that are never pruned

    Returns:
        DeduplicationResult with the newly pruned call IDs
    """
    protected = set(DEFAULT_PROTECTED_TOOLS) | set(protected_tools)
    signatures: Dict[str, List[ToolCallSignature]] = {}
    current_turn = 0

    for message in messages:
        for part in message.parts:
            part_type = part.get("type")
            if part_type == "step-start":
                current_turn += 1
                continue

            call_id = part.get("callID")
            tool_name = part.get("tool")
            if part_type != "tool" or not call_id or not tool_name:
                continue
            if tool_name in protected or call_id in state.tool_ids_to_prune:
                continue

            signature = create_tool_signature(
                tool_name, (part.get("state") or {}).get("input")
            )
            call = ToolCallSignature(
                tool_name=tool_name, signature=signature, call_id=call_id, turn=current_turn
            )
            signatures.setdefault(signature, []).append(call)

    result = DeduplicationResult(unique_signatures=len(signatures))
    for signature, calls in signatures.items():
        if len(calls) <= 1:
            continue
        for call in calls[:-1]:
            state.tool_ids_to_prune.add(call.call_id)
            result.pruned_call_ids.append(call.call_id)
            result.pruned_count += 1

            output = _find_tool_output(messages, call.call_id)
            if output:
                result.tokens_saved += estimate_tokens(output)

            logger.debug(
                f"Pruned duplicate {call.tool_name} call {call.call_id} "
                f"(turn {call.turn}, signature {signature[:100]})"
            )

    return result


class DeduplicationPlanner:
    """Finds and truncates duplicate tool calls for a session."""

    def __init__(self, store: ToolOutputStore, config: Optional[DeduplicationConfig] = None):
        self.store = store
        self.config = config or DeduplicationConfig()
        self._states: Dict[str, PruningState] = {}

    def state_for(self, session_id: str) -> PruningState:
        return self._states.setdefault(session_id, PruningState())

    def forget(self, session_id: str) -> None:
        self._states.pop(session_id, None)

    def execute(self, session_id: str) -> DeduplicationResult:
        """Plan pruning over the full history and truncate the pruned outputs."""
        if not self.config.enabled:
            return DeduplicationResult()

        messages = read_messages(self.store.layout, session_id)
        result = plan_deduplication(
            messages, self.state_for(session_id), self.config.protected_tools
        )
        if result.pruned_call_ids:
            truncated, removed = self.store.truncate_tool_outputs_by_call_id(
                session_id, result.pruned_call_ids
            )
            result.truncated_count = truncated
            result.chars_removed = removed

        logger.info(
            f"Deduplication for session {session_id}: pruned {result.pruned_count} "
            f"calls across {result.unique_signatures} signatures, "
            f"~{result.tokens_saved} tokens saved"
        )
        return result

    def attempt_recovery(
        self, session_id: str, parsed: ParsedLimitError
    ) -> Optional[DeduplicationResult]:
        """Run deduplication for prompt-too-long errors when enabled."""
        if not self.config.enabled or not parsed.is_prompt_too_long:
            return None
        try:
            return self.execute(session_id)
        except Exception as e:
            logger.warning(f"Deduplication recovery failed for session {session_id}: {e}")
            return None
