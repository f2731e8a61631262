"""Context-window limit recovery: classification, truncation, summarize retry."""

from .deduplication import (
    DeduplicationConfig,
    DeduplicationPlanner,
    create_tool_signature,
    plan_deduplication,
)
from .empty_content import PLACEHOLDER_TEXT, EmptyContentRepair
from .errors import LimitErrorKind, ParsedLimitError, classify_error
from .hook import RecoveryHook
from .orchestrator import RecoveryConfig, RecoveryOrchestrator, RecoveryOutcome
from .state import RecoveryState
from .truncation import TruncationConfig, TruncationResult, truncate_until_target_tokens

__all__ = [
    # Error classification
    "LimitErrorKind",
    "ParsedLimitError",
    "classify_error",
    # Tool-output reduction
    "TruncationConfig",
    "TruncationResult",
    "truncate_until_target_tokens",
    "DeduplicationConfig",
    "DeduplicationPlanner",
    "create_tool_signature",
    "plan_deduplication",
    "PLACEHOLDER_TEXT",
    "EmptyContentRepair",
    # State machine
    "RecoveryState",
    "RecoveryConfig",
    "RecoveryOrchestrator",
    "RecoveryOutcome",
    "RecoveryHook",
]
