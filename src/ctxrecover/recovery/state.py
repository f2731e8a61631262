"""Per-session recovery bookkeeping.

One :class:`RecoveryState` is owned by each hook instance and passed by
reference to everything that needs it; there is no module-level state, so
separate hook instances never interfere.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Set

from ctxrecover.recovery.errors import ParsedLimitError
from ctxrecover.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class RetryState:
    """Summarize attempts for a session."""

    attempt: int = 0
    last_attempt_at: float = 0.0


@dataclass
class TruncateState:
    """Records truncated for a session, counted against the truncation cap."""

    attempt: int = 0


@dataclass
class RecoveryState:
    """Session-keyed collections shared by the hook and the orchestrator."""

    pending: Set[str] = field(default_factory=set)
    last_error: Dict[str, ParsedLimitError] = field(default_factory=dict)
    retry: Dict[str, RetryState] = field(default_factory=dict)
    truncate: Dict[str, TruncateState] = field(default_factory=dict)
    empty_content_attempts: Dict[str, int] = field(default_factory=dict)
    in_progress: Set[str] = field(default_factory=set)

    def record_error(self, session_id: str, error: ParsedLimitError) -> None:
        self.pending.add(session_id)
        self.last_error[session_id] = error

    def get_error(self, session_id: str) -> Optional[ParsedLimitError]:
        return self.last_error.get(session_id)

    def get_or_create_retry_state(self, session_id: str) -> RetryState:
        return self.retry.setdefault(session_id, RetryState())

    def get_or_create_truncate_state(self, session_id: str) -> TruncateState:
        return self.truncate.setdefault(session_id, TruncateState())

    def get_empty_content_attempt(self, session_id: str) -> int:
        return self.empty_content_attempts.get(session_id, 0)

    def increment_empty_content_attempt(self, session_id: str) -> int:
        attempt = self.get_empty_content_attempt(session_id) + 1
        self.empty_content_attempts[session_id] = attempt
        return attempt

    def is_running(self, session_id: str) -> bool:
        return session_id in self.in_progress

    def clear_session(self, session_id: str) -> None:
        """Drop all recovery bookkeeping for a session except its lock."""
        self.pending.discard(session_id)
        self.last_error.pop(session_id, None)
        self.retry.pop(session_id, None)
        self.truncate.pop(session_id, None)
        self.empty_content_attempts.pop(session_id, None)

    def forget_session(self, session_id: str) -> None:
        """Drop everything for a deleted session.

        The lock is left alone; only the run holding it releases it.
        """
        self.clear_session(session_id)

    @contextmanager
    def acquire(self, session_id: str) -> Iterator[bool]:
        """Hold the session's recovery lock for the duration of the block.

        Yields False without touching the lock when another run holds it.
        The check and the insert happen without an await in between, which
        makes them atomic under a single event loop.
        """
        if session_id in self.in_progress:
            yield False
            return

        self.in_progress.add(session_id)
        try:
            yield True
        finally:
            self.in_progress.discard(session_id)
