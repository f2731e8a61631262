"""Abstract host API consumed by the recovery controller."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ctxrecover.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Toast:
    """A transient UI notice."""

    title: str
    message: str
    variant: str = "info"  # info, success, warning, error
    duration_ms: int = 3000

    def to_body(self) -> Dict[str, Any]:
        """Serialize to the host's toast request body."""
        return {
            "title": self.title,
            "message": self.message,
            "variant": self.variant,
            "duration": self.duration_ms,
        }


class BaseHostClient(ABC):
    """Session and UI operations the host exposes to plugins."""

    @abstractmethod
    async def session_messages(self, session_id: str) -> List[Dict[str, Any]]:
        """Return the session's messages as ``[{"info": {...}, "parts": [...]}]``."""
        pass

    @abstractmethod
    async def summarize(
        self, session_id: str, provider_id: str, model_id: str
    ) -> None:
        """Ask the host to compact the session into a summary turn."""
        pass

    @abstractmethod
    async def prompt_async(self, session_id: str) -> None:
        """Send an automatic continuation prompt without waiting for the reply."""
        pass

    @abstractmethod
    async def show_toast(self, toast: Toast) -> None:
        """Display a toast in the host UI."""
        pass


async def show_toast(client: BaseHostClient, toast: Toast) -> None:
    """Show a toast, swallowing any failure."""
    try:
        await client.show_toast(toast)
    except Exception as e:
        logger.debug(f"Toast '{toast.title}' failed: {e}")


async def get_last_assistant(
    client: BaseHostClient, session_id: str
) -> Optional[Dict[str, Any]]:
    """Return the ``info`` of the newest assistant message, or None."""
    try:
        messages = await client.session_messages(session_id)
    except Exception as e:
        logger.warning(f"Could not load messages for session {session_id}: {e}")
        return None

    for message in reversed(messages or []):
        info = message.get("info") if isinstance(message, dict) else None
        if isinstance(info, dict) and info.get("role") == "assistant":
            return info
    return None
