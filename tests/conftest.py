"""Pytest configuration and shared fixtures."""

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Add src directory to Python path for tests
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from ctxrecover.host.client import BaseHostClient, Toast  # noqa: E402
from ctxrecover.storage.paths import StorageLayout  # noqa: E402
from ctxrecover.storage.tool_outputs import ToolOutputStore  # noqa: E402


@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch):
    """Setup test environment variables."""
    test_env = {
        "LOG_LEVEL": "DEBUG",
        "JSON_LOGS": "false",
    }

    for key, value in test_env.items():
        monkeypatch.setenv(key, value)

    for key in (
        "OPENCODE_STORAGE_DIR",
        "DEDUP_ENABLED",
        "DEDUP_PROTECTED_TOOLS",
        "HOST_PASSWORD",
        "TRUNCATE_TARGET_RATIO",
        "SUMMARIZE_MAX_ATTEMPTS",
    ):
        monkeypatch.delenv(key, raising=False)


class FakeHostClient(BaseHostClient):
    """In-memory host recording every call made by the recovery code."""

    def __init__(self, messages: Optional[List[Dict[str, Any]]] = None):
        self.messages = messages or []
        self.toasts: List[Toast] = []
        self.summarize_calls: List[tuple] = []
        self.prompt_calls: List[str] = []
        self.summarize_error: Optional[Exception] = None
        self.prompt_error: Optional[Exception] = None
        self.toast_error: Optional[Exception] = None

    async def session_messages(self, session_id: str) -> List[Dict[str, Any]]:
        return self.messages

    async def summarize(self, session_id: str, provider_id: str, model_id: str) -> None:
        self.summarize_calls.append((session_id, provider_id, model_id))
        if self.summarize_error is not None:
            raise self.summarize_error

    async def prompt_async(self, session_id: str) -> None:
        self.prompt_calls.append(session_id)
        if self.prompt_error is not None:
            raise self.prompt_error

    async def show_toast(self, toast: Toast) -> None:
        if self.toast_error is not None:
            raise self.toast_error
        self.toasts.append(toast)

    @property
    def toast_titles(self) -> List[str]:
        return [t.title for t in self.toasts]


class RecordingSleep:
    """Awaitable sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class SessionWriter:
    """Writes messages and parts in the host's on-disk layout."""

    def __init__(self, root: Path, session_id: str = "ses_test", shard: Optional[str] = None):
        self.root = root
        self.session_id = session_id
        message_root = root / "message"
        self.message_dir = (
            message_root / shard / session_id if shard else message_root / session_id
        )
        self._created = 1000

    def message(self, message_id: str, role: str = "assistant", **info: Any) -> Path:
        self._created += 1
        record = {
            "id": message_id,
            "sessionID": self.session_id,
            "role": role,
            "time": {"created": self._created},
        }
        record.update(info)
        self.message_dir.mkdir(parents=True, exist_ok=True)
        path = self.message_dir / f"{message_id}.json"
        path.write_text(json.dumps(record), encoding="utf-8")
        return path

    def part(self, message_id: str, part_id: str, **fields: Any) -> Path:
        record = {"id": part_id, "sessionID": self.session_id, "messageID": message_id}
        record.update(fields)
        part_dir = self.root / "part" / message_id
        part_dir.mkdir(parents=True, exist_ok=True)
        path = part_dir / f"{part_id}.json"
        path.write_text(json.dumps(record), encoding="utf-8")
        return path

    def tool(
        self,
        message_id: str,
        part_id: str,
        output: Optional[str],
        tool: str = "bash",
        call_id: Optional[str] = None,
        tool_input: Any = None,
        **fields: Any,
    ) -> Path:
        state: Dict[str, Any] = {
            "status": "completed",
            "input": tool_input if tool_input is not None else {"command": part_id},
            "time": {"start": 1, "end": 2},
        }
        if output is not None:
            state["output"] = output
        return self.part(
            message_id,
            part_id,
            type="tool",
            tool=tool,
            callID=call_id or f"call_{part_id}",
            state=state,
            **fields,
        )


def read_record(path: Path) -> Dict[str, Any]:
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture
def fake_client():
    """Fake host client."""
    return FakeHostClient()


@pytest.fixture
def recording_sleep():
    """Sleep replacement recording delays."""
    return RecordingSleep()


@pytest.fixture
def storage_root(tmp_path):
    """Empty storage root."""
    root = tmp_path / "storage"
    root.mkdir()
    return root


@pytest.fixture
def session_writer(storage_root):
    """Writer for a test session under the storage root."""
    return SessionWriter(storage_root)


@pytest.fixture
def layout(storage_root):
    return StorageLayout(storage_root)


@pytest.fixture
def store(layout):
    return ToolOutputStore(layout)
