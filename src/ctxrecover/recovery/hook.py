"""Binds host events to the recovery orchestrator."""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Set

from ctxrecover.host.client import BaseHostClient, Toast, get_last_assistant, show_toast
from ctxrecover.recovery.deduplication import DeduplicationConfig, DeduplicationPlanner
from ctxrecover.recovery.errors import classify_error
from ctxrecover.recovery.orchestrator import RecoveryConfig, RecoveryOrchestrator
from ctxrecover.recovery.state import RecoveryState
from ctxrecover.storage.tool_outputs import ToolOutputStore
from ctxrecover.utils.logger import get_logger

logger = get_logger(__name__)

SESSION_ERROR = "session.error"
SESSION_IDLE = "session.idle"
SESSION_DELETED = "session.deleted"
SESSION_COMPACTED = "session.compacted"
MESSAGE_UPDATED = "message.updated"


class RecoveryHook:
    """Event handler registered with the host's plugin event bus.

    Owns the :class:`RecoveryState` for this plugin instance. Exceptions never
    escape :meth:`handle_event`.
    """

    def __init__(
        self,
        client: BaseHostClient,
        store: ToolOutputStore,
        config: Optional[RecoveryConfig] = None,
        dedup_config: Optional[DeduplicationConfig] = None,
        error_recovery_delay: float = 0.3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        state: Optional[RecoveryState] = None,
        orchestrator: Optional[RecoveryOrchestrator] = None,
        dedup_planner: Optional[DeduplicationPlanner] = None,
    ):
        self.client = client
        self.store = store
        self.state = state or RecoveryState()
        self.orchestrator = orchestrator or RecoveryOrchestrator(
            self.state, client, store, config=config, sleep=sleep
        )
        self.dedup_planner = dedup_planner or DeduplicationPlanner(store, dedup_config)
        self.error_recovery_delay = error_recovery_delay
        self._sleep = sleep
        self._background: Set[asyncio.Task] = set()
        self._handlers: Dict[str, Callable[[Mapping[str, Any]], Awaitable[None]]] = {
            SESSION_DELETED: self._on_session_deleted,
            SESSION_COMPACTED: self._on_session_compacted,
            SESSION_ERROR: self._on_session_error,
            MESSAGE_UPDATED: self._on_message_updated,
            SESSION_IDLE: self._on_session_idle,
        }

    async def handle_event(self, event: Mapping[str, Any]) -> None:
        """Dispatch one host event ``{"type": ..., "properties": {...}}``."""
        handler = self._handlers.get(event.get("type", ""))
        if handler is None:
            return
        properties = event.get("properties")
        try:
            await handler(properties if isinstance(properties, Mapping) else {})
        except Exception as e:
            logger.error(f"Recovery hook failed on {event.get('type')}: {e}", exc_info=True)

    async def _on_session_deleted(self, props: Mapping[str, Any]) -> None:
        info = props.get("info")
        session_id = info.get("id") if isinstance(info, Mapping) else None
        if session_id:
            self.state.forget_session(session_id)
            self.dedup_planner.forget(session_id)

    async def _on_session_compacted(self, props: Mapping[str, Any]) -> None:
        session_id = props.get("sessionID")
        if session_id:
            self.state.clear_session(session_id)

    async def _on_session_error(self, props: Mapping[str, Any]) -> None:
        session_id = props.get("sessionID")
        if not session_id:
            return

        parsed = classify_error(props.get("error"))
        logger.info(f"session.error for {session_id} classified as {parsed}")
        if parsed is None:
            return

        self.state.record_error(session_id, parsed)

        if self.state.is_running(session_id):
            self.dedup_planner.attempt_recovery(session_id, parsed)
            return

        last_assistant = await get_last_assistant(self.client, session_id) or {}
        provider_id = parsed.provider_id or last_assistant.get("providerID")
        model_id = parsed.model_id or last_assistant.get("modelID")

        await show_toast(
            self.client,
            Toast(
                title="Context Limit Hit",
                message="Truncating large tool outputs and recovering...",
                variant="warning",
                duration_ms=3000,
            ),
        )
        self._schedule(self._recover_after_delay(session_id, provider_id, model_id))

    async def _on_message_updated(self, props: Mapping[str, Any]) -> None:
        info = props.get("info")
        if not isinstance(info, Mapping):
            return
        session_id = info.get("sessionID")
        if not session_id or info.get("role") != "assistant" or not info.get("error"):
            return

        parsed = classify_error(info.get("error"))
        logger.info(f"message.updated error for {session_id} classified as {parsed}")
        if parsed is not None:
            self.state.record_error(
                session_id, parsed.with_model(info.get("providerID"), info.get("modelID"))
            )

    async def _on_session_idle(self, props: Mapping[str, Any]) -> None:
        session_id = props.get("sessionID")
        if not session_id or session_id not in self.state.pending:
            return
        if self.state.is_running(session_id):
            return

        error = self.state.get_error(session_id)
        last_assistant = await get_last_assistant(self.client, session_id) or {}

        # Re-check after the await: another handler may have started or finished a run
        if session_id not in self.state.pending or self.state.is_running(session_id):
            return

        if last_assistant.get("summary") is True:
            self.state.clear_session(session_id)
            return

        provider_id = (error.provider_id if error else None) or last_assistant.get(
            "providerID"
        )
        model_id = (error.model_id if error else None) or last_assistant.get("modelID")

        await show_toast(
            self.client,
            Toast(
                title="Auto Compact",
                message="Token limit exceeded. Attempting recovery...",
                variant="warning",
                duration_ms=3000,
            ),
        )
        await self.orchestrator.execute_compact(session_id, provider_id, model_id)

    async def _recover_after_delay(
        self, session_id: str, provider_id: Optional[str], model_id: Optional[str]
    ) -> None:
        await self._sleep(self.error_recovery_delay)
        if session_id not in self.state.pending:
            logger.debug(f"Session {session_id} recovered before the delayed run")
            return
        await self.orchestrator.execute_compact(session_id, provider_id, model_id)

    def _schedule(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def wait_for_background(self) -> None:
        """Wait for delayed recovery runs and their continuation prompts."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self.orchestrator.wait_for_background()
