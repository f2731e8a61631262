"""Recovery state machine: truncate, then summarize with retries.

One run per session at a time, guarded by :meth:`RecoveryState.acquire`.
Every run ends in exactly one of the outcomes of :class:`RecoveryOutcome`;
retries are an explicit loop with awaited backoff, bounded by the attempt
caps.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional, Set

from ctxrecover.host.client import BaseHostClient, Toast, show_toast
from ctxrecover.recovery.empty_content import EmptyContentRepair
from ctxrecover.recovery.errors import LimitErrorKind, ParsedLimitError
from ctxrecover.recovery.state import RecoveryState, TruncateState
from ctxrecover.recovery.truncation import (
    TruncationConfig,
    TruncationResult,
    truncate_until_target_tokens,
)
from ctxrecover.storage.tool_outputs import ToolOutputStore
from ctxrecover.utils.formatting import format_bytes
from ctxrecover.utils.logger import get_logger
from ctxrecover.utils.retry import RetryConfig, calculate_delay

logger = get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class RecoveryOutcome(Enum):
    """Terminal branch reached by one orchestrator run."""

    ALREADY_RUNNING = "already_running"
    TRUNCATED = "truncated"
    SUMMARIZED = "summarized"
    SUMMARIZE_SKIPPED = "summarize_skipped"
    EXHAUSTED = "exhausted"
    EMPTY_CONTENT_EXHAUSTED = "empty_content_exhausted"
    SESSION_CLEARED = "session_cleared"
    FAILED = "failed"


@dataclass
class RecoveryConfig:
    """Knobs for one orchestrator (delays in seconds)."""

    truncation: TruncationConfig = field(default_factory=TruncationConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    empty_content_max_attempts: int = 3
    empty_content_retry_delay: float = 0.5
    continuation_delay: float = 0.5


class RecoveryOrchestrator:
    """Drives one session from a context-limit error back to a resumable state."""

    def __init__(
        self,
        state: RecoveryState,
        client: BaseHostClient,
        store: ToolOutputStore,
        config: Optional[RecoveryConfig] = None,
        empty_content: Optional[EmptyContentRepair] = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.state = state
        self.client = client
        self.store = store
        self.config = config or RecoveryConfig()
        self.empty_content = empty_content or EmptyContentRepair(store.layout)
        self._sleep = sleep
        self._clock = clock
        self._background: Set[asyncio.Task] = set()

    async def execute_compact(
        self,
        session_id: str,
        provider_id: Optional[str] = None,
        model_id: Optional[str] = None,
    ) -> RecoveryOutcome:
        """
        Run recovery for a session under its lock.

        Args:
            session_id: Session that hit the error
            provider_id: Provider of the failing model, if known
            model_id: Failing model, if known

        Returns:
            The terminal branch reached
        """
        with self.state.acquire(session_id) as acquired:
            if not acquired:
                logger.info(f"Recovery already running for session {session_id}")
                await show_toast(
                    self.client,
                    Toast(
                        title="Compact In Progress",
                        message="Recovery already running. Please wait for current compaction to complete.",
                        variant="warning",
                        duration_ms=3000,
                    ),
                )
                return RecoveryOutcome.ALREADY_RUNNING

            try:
                outcome = await self._run(session_id, provider_id, model_id)
            except Exception as e:
                logger.error(
                    f"Recovery for session {session_id} failed unexpectedly: {e}",
                    exc_info=True,
                )
                outcome = RecoveryOutcome.FAILED

        logger.info(f"Recovery for session {session_id} finished: {outcome.value}")
        return outcome

    async def _run(
        self, session_id: str, provider_id: Optional[str], model_id: Optional[str]
    ) -> RecoveryOutcome:
        error = self.state.get_error(session_id)
        if error is None:
            logger.info(f"No pending error for session {session_id}, nothing to recover")
            return RecoveryOutcome.SESSION_CLEARED

        truncate_state = self.state.get_or_create_truncate_state(session_id)

        if (
            error.is_over_limit
            and truncate_state.attempt < self.config.truncation.max_truncate_attempts
        ):
            if await self._run_aggressive_truncation(session_id, error, truncate_state):
                return RecoveryOutcome.TRUNCATED

        return await self._run_summarize_retry(session_id, provider_id, model_id, error)

    async def _run_aggressive_truncation(
        self, session_id: str, error: ParsedLimitError, truncate_state: TruncateState
    ) -> bool:
        """Truncate the largest outputs; True when the session is now small enough."""
        cfg = self.config.truncation
        logger.info(
            f"Aggressive truncation for session {session_id}: "
            f"{error.current_tokens}/{error.max_tokens} tokens, "
            f"target ratio {cfg.target_token_ratio}"
        )

        try:
            result = truncate_until_target_tokens(
                self.store,
                session_id,
                error.current_tokens,
                error.max_tokens,
                cfg.target_token_ratio,
                cfg.chars_per_token,
            )
        except OSError as e:
            logger.warning(f"Truncation failed for session {session_id}: {e}")
            return False

        if result.truncated_count <= 0:
            return False

        truncate_state.attempt += result.truncated_count
        await self._notify_truncation(result)

        if result.sufficient:
            self.state.clear_session(session_id)
            self._schedule_continuation(session_id)
            return True

        logger.info(
            f"Truncation insufficient for session {session_id} "
            f"({result.total_bytes_removed}/{result.target_bytes_to_remove} chars), "
            "falling through to summarize"
        )
        return False

    async def _notify_truncation(self, result: TruncationResult) -> None:
        removed = format_bytes(result.total_bytes_removed)
        tools = ", ".join(result.tool_names)
        if result.sufficient:
            title = "Truncation Complete"
            status = f"Truncated {result.truncated_count} outputs ({removed})"
            variant = "success"
        else:
            title = "Partial Truncation"
            status = (
                f"Truncated {result.truncated_count} outputs ({removed}) "
                "- continuing to summarize..."
            )
            variant = "warning"
        await show_toast(
            self.client,
            Toast(title=title, message=f"{status}: {tools}", variant=variant, duration_ms=4000),
        )

    async def _repair_empty_content(
        self, session_id: str, error: ParsedLimitError
    ) -> Optional[RecoveryOutcome]:
        """Repair empty turns until nothing is left to fix or attempts run out.

        Returns:
            A terminal outcome, or None to continue with summarize
        """
        any_fixed = False
        while True:
            if (
                self.state.get_empty_content_attempt(session_id)
                >= self.config.empty_content_max_attempts
            ):
                self.state.clear_session(session_id)
                await show_toast(
                    self.client,
                    Toast(
                        title="Recovery Failed",
                        message=(
                            "Max recovery attempts "
                            f"({self.config.empty_content_max_attempts}) reached for "
                            "empty content error. Please start a new session."
                        ),
                        variant="error",
                        duration_ms=10000,
                    ),
                )
                return RecoveryOutcome.EMPTY_CONTENT_EXHAUSTED

            self.state.increment_empty_content_attempt(session_id)
            try:
                fixed = await self.empty_content.fix_empty_messages(
                    session_id,
                    self.client,
                    error.message_index,
                    notify_missing=not any_fixed,
                )
            except OSError as e:
                logger.warning(f"Empty content repair failed for session {session_id}: {e}")
                fixed = False

            if not fixed:
                return None

            any_fixed = True
            await self._sleep(self.config.empty_content_retry_delay)
            if session_id not in self.state.last_error:
                return RecoveryOutcome.SESSION_CLEARED

    async def _run_summarize_retry(
        self,
        session_id: str,
        provider_id: Optional[str],
        model_id: Optional[str],
        error: ParsedLimitError,
    ) -> RecoveryOutcome:
        if error.kind == LimitErrorKind.NON_EMPTY_CONTENT:
            terminal = await self._repair_empty_content(session_id, error)
            if terminal is not None:
                return terminal

        retry_cfg = self.config.retry
        retry_state = self.state.get_or_create_retry_state(session_id)

        if self._clock() - retry_state.last_attempt_at > retry_cfg.reset_window:
            retry_state.attempt = 0
            self.state.truncate.pop(session_id, None)

        skipped = False
        while retry_state.attempt < retry_cfg.max_retries:
            retry_state.attempt += 1
            retry_state.last_attempt_at = self._clock()

            if not (provider_id and model_id):
                logger.warning(
                    f"Summarize skipped for session {session_id}: missing provider/model"
                )
                await show_toast(
                    self.client,
                    Toast(
                        title="Summarize Skipped",
                        message="Missing providerID or modelID.",
                        variant="warning",
                        duration_ms=3000,
                    ),
                )
                skipped = True
                break

            try:
                self.empty_content.sanitize_before_summarize(session_id)
                await show_toast(
                    self.client,
                    Toast(
                        title="Auto Compact",
                        message=(
                            f"Summarizing session (attempt {retry_state.attempt}/"
                            f"{retry_cfg.max_retries})..."
                        ),
                        variant="warning",
                        duration_ms=3000,
                    ),
                )
                await self.client.summarize(session_id, provider_id, model_id)
                logger.info(
                    f"Summarize requested for session {session_id} "
                    f"(attempt {retry_state.attempt}/{retry_cfg.max_retries})"
                )
                return RecoveryOutcome.SUMMARIZED
            except Exception as e:
                delay = calculate_delay(retry_state.attempt, retry_cfg)
                logger.warning(
                    f"Summarize attempt {retry_state.attempt} for session {session_id} "
                    f"failed, retrying after {delay:.2f}s: {e}"
                )
                await self._sleep(delay)

            if self.state.retry.get(session_id) is not retry_state:
                logger.info(f"Recovery state for session {session_id} cleared during backoff")
                return RecoveryOutcome.SESSION_CLEARED

        self.state.clear_session(session_id)
        await show_toast(
            self.client,
            Toast(
                title="Auto Compact Failed",
                message="All recovery attempts failed. Please start a new session.",
                variant="error",
                duration_ms=5000,
            ),
        )
        return RecoveryOutcome.SUMMARIZE_SKIPPED if skipped else RecoveryOutcome.EXHAUSTED

    def _schedule_continuation(self, session_id: str) -> None:
        task = asyncio.ensure_future(self._continue_after_delay(session_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _continue_after_delay(self, session_id: str) -> None:
        await self._sleep(self.config.continuation_delay)
        try:
            await self.client.prompt_async(session_id)
            logger.info(f"Continuation prompt sent for session {session_id}")
        except Exception as e:
            logger.warning(f"Continuation prompt failed for session {session_id}: {e}")

    async def wait_for_background(self) -> None:
        """Wait for scheduled continuation prompts to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
