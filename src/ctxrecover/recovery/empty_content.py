"""Repair turns the provider rejects for having empty content."""

from typing import Any, Dict, List, Optional

from ctxrecover.host.client import BaseHostClient, Toast, show_toast
from ctxrecover.storage.messages import (
    StoredMessage,
    generate_part_id,
    read_messages,
    write_part,
)
from ctxrecover.storage.paths import StorageLayout
from ctxrecover.utils.logger import get_logger

logger = get_logger(__name__)

PLACEHOLDER_TEXT = "[user interrupted]"

CONTENT_PART_TYPES = frozenset({"tool", "tool_use", "tool_result", "file"})


def _is_blank_text_part(part: Dict[str, Any]) -> bool:
    return part.get("type") == "text" and not str(part.get("text") or "").strip()


def has_content(message: StoredMessage) -> bool:
    """True when the message carries text or a tool/file part."""
    for part in message.parts:
        part_type = part.get("type")
        if part_type in CONTENT_PART_TYPES:
            return True
        if part_type == "text" and str(part.get("text") or "").strip():
            return True
    return False


class EmptyContentRepair:
    """Finds empty messages in storage and fills them with placeholder text."""

    def __init__(self, layout: StorageLayout, placeholder: str = PLACEHOLDER_TEXT):
        self.layout = layout
        self.placeholder = placeholder

    def find_empty_messages(self, session_id: str) -> List[StoredMessage]:
        return [m for m in read_messages(self.layout, session_id) if not has_content(m)]

    def find_empty_message_by_index(
        self, session_id: str, index: int
    ) -> Optional[StoredMessage]:
        """Locate the empty message the provider pointed at.

        The provider's index may be offset by one from storage order, so the
        previous message is checked as well.
        """
        messages = read_messages(self.layout, session_id)
        for candidate in (index, index - 1):
            if 0 <= candidate < len(messages) and not has_content(messages[candidate]):
                return messages[candidate]
        return None

    def replace_empty_text_parts(self, message: StoredMessage) -> bool:
        """Overwrite blank text parts in place; False when there were none."""
        replaced = False
        for part in message.parts:
            if not _is_blank_text_part(part):
                continue
            part["text"] = self.placeholder
            if write_part(self.layout, part):
                replaced = True
        return replaced

    def inject_text_part(self, message: StoredMessage) -> bool:
        """Add a synthetic placeholder text part to a message."""
        part = {
            "id": generate_part_id(),
            "sessionID": message.session_id,
            "messageID": message.id,
            "type": "text",
            "text": self.placeholder,
            "synthetic": True,
        }
        if not write_part(self.layout, part):
            return False
        message.parts.append(part)
        return True

    def repair_message(self, message: StoredMessage) -> bool:
        if self.replace_empty_text_parts(message):
            return True
        return self.inject_text_part(message)

    def sanitize_before_summarize(self, session_id: str) -> int:
        """Fill every empty message so the summarize request is accepted.

        Returns:
            Number of messages repaired
        """
        repaired = 0
        for message in self.find_empty_messages(session_id):
            if self.repair_message(message):
                repaired += 1
        if repaired:
            logger.info(f"Sanitized {repaired} empty messages in session {session_id}")
        return repaired

    async def fix_empty_messages(
        self,
        session_id: str,
        client: BaseHostClient,
        message_index: Optional[int] = None,
        notify_missing: bool = True,
    ) -> bool:
        """
        Repair the offending message, or every empty message in the session.

        Args:
            session_id: Session to repair
            client: Host client for notices
            message_index: ``messages.<N>`` index from the provider error
            notify_missing: Show an error notice when nothing needs repair

        Returns:
            True when at least one message was repaired
        """
        fixed_ids: List[str] = []

        if message_index is not None:
            target = self.find_empty_message_by_index(session_id, message_index)
            if target is not None and self.repair_message(target):
                fixed_ids.append(target.id)

        if not fixed_ids:
            empty = self.find_empty_messages(session_id)
            if not empty:
                if not notify_missing:
                    return False
                await show_toast(
                    client,
                    Toast(
                        title="Empty Content Error",
                        message="No empty messages found in storage. Cannot auto-recover.",
                        variant="error",
                        duration_ms=5000,
                    ),
                )
                return False
            for message in empty:
                if self.repair_message(message):
                    fixed_ids.append(message.id)

        if fixed_ids:
            logger.info(
                f"Fixed {len(fixed_ids)} empty messages in session {session_id}: {fixed_ids}"
            )
            await show_toast(
                client,
                Toast(
                    title="Session Recovery",
                    message=f"Fixed {len(fixed_ids)} empty messages. Retrying...",
                    variant="warning",
                    duration_ms=3000,
                ),
            )
        return bool(fixed_ids)
