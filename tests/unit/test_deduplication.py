"""Tests for duplicate tool-call pruning."""

import json

from ctxrecover.recovery.deduplication import (
    DEFAULT_PROTECTED_TOOLS,
    DeduplicationConfig,
    DeduplicationPlanner,
    PruningState,
    create_tool_signature,
    estimate_tokens,
    plan_deduplication,
)
from ctxrecover.recovery.errors import classify_error
from ctxrecover.storage.messages import StoredMessage
from ctxrecover.storage.tool_outputs import TRUNCATION_MESSAGE


def _tool_part(call_id, tool, tool_input, output="out"):
    return {
        "type": "tool",
        "callID": call_id,
        "tool": tool,
        "state": {"input": tool_input, "output": output},
    }


def _message(message_id, parts):
    return StoredMessage(
        id=message_id, session_id="ses_test", role="assistant", created=0, parts=parts
    )


class TestToolSignature:
    """Test canonical signatures."""

    def test_key_order_does_not_matter(self):
        """Test nested keys are sorted."""
        a = create_tool_signature("read", {"path": "a.py", "opts": {"b": 1, "a": 2}})
        b = create_tool_signature("read", {"opts": {"a": 2, "b": 1}, "path": "a.py"})
        assert a == b
        assert a == 'read::{"opts":{"a":2,"b":1},"path":"a.py"}'

    def test_tool_name_distinguishes(self):
        """Test identical inputs to different tools differ."""
        assert create_tool_signature("read", {"p": 1}) != create_tool_signature(
            "write", {"p": 1}
        )

    def test_estimate_tokens_rounds_up(self):
        """Test the 4 chars/token estimate."""
        assert estimate_tokens("abcde") == 2
        assert estimate_tokens("") == 0


class TestPlanDeduplication:
    """Test the pure pruning planner."""

    def test_all_but_last_pruned(self):
        """Test the most recent call of a repeated signature is kept."""
        messages = [
            _message("msg_1", [_tool_part("c1", "read", {"path": "a"}, "x" * 8)]),
            _message("msg_2", [{"type": "step-start"}]),
            _message("msg_3", [_tool_part("c2", "read", {"path": "a"})]),
            _message("msg_4", [_tool_part("c3", "read", {"path": "a"})]),
            _message("msg_5", [_tool_part("c4", "read", {"path": "b"})]),
        ]
        state = PruningState()

        result = plan_deduplication(messages, state, [])

        assert result.pruned_call_ids == ["c1", "c2"]
        assert result.pruned_count == 2
        assert result.unique_signatures == 2
        assert result.tokens_saved == 2 + 1
        assert state.tool_ids_to_prune == {"c1", "c2"}

    def test_protected_tools_never_pruned(self):
        """Test default and configured protected tools are skipped."""
        messages = [
            _message(
                "msg_1",
                [
                    _tool_part("t1", "todowrite", {"todos": []}),
                    _tool_part("t2", "todowrite", {"todos": []}),
                    _tool_part("t3", "custom", {}),
                    _tool_part("t4", "custom", {}),
                ],
            )
        ]

        result = plan_deduplication(messages, PruningState(), ["custom"])

        assert "todowrite" in DEFAULT_PROTECTED_TOOLS
        assert result.pruned_call_ids == []

    def test_already_pruned_calls_skipped(self):
        """Test a second pass does not report the same calls again."""
        messages = [
            _message(
                "msg_1",
                [
                    _tool_part("c1", "grep", {"q": "x"}),
                    _tool_part("c2", "grep", {"q": "x"}),
                ],
            )
        ]
        state = PruningState()

        first = plan_deduplication(messages, state, [])
        second = plan_deduplication(messages, state, [])

        assert first.pruned_call_ids == ["c1"]
        assert second.pruned_call_ids == []

    def test_state_holds_only_pruned_ids_across_passes(self):
        """Test repeated passes keep no per-call history beyond the pruned ids."""
        messages = [
            _message(
                "msg_1",
                [
                    _tool_part("c1", "grep", {"q": "x"}),
                    _tool_part("c2", "grep", {"q": "x"}),
                ],
            )
        ]
        state = PruningState()

        for _ in range(3):
            plan_deduplication(messages, state, [])

        assert state == PruningState(tool_ids_to_prune={"c1"})

    def test_non_tool_parts_ignored(self):
        """Test text parts and incomplete tool parts."""
        messages = [
            _message(
                "msg_1",
                [
                    {"type": "text", "text": "hello"},
                    {"type": "tool", "tool": "read"},
                ],
            )
        ]
        result = plan_deduplication(messages, PruningState(), [])
        assert result.pruned_count == 0
        assert result.unique_signatures == 0


class TestDeduplicationPlanner:
    """Test planning plus on-disk truncation."""

    def _write_duplicates(self, session_writer):
        session_writer.message("msg_1")
        old = session_writer.tool(
            "msg_1", "prt_1", "o" * 400, tool="read", call_id="c1", tool_input={"p": 1}
        )
        session_writer.message("msg_2")
        new = session_writer.tool(
            "msg_2", "prt_2", "n" * 400, tool="read", call_id="c2", tool_input={"p": 1}
        )
        return old, new

    def test_execute_truncates_older_duplicates(self, store, session_writer):
        """Test the older duplicate output is truncated and the newest kept."""
        old, new = self._write_duplicates(session_writer)
        planner = DeduplicationPlanner(store, DeduplicationConfig(enabled=True))

        result = planner.execute("ses_test")

        assert result.pruned_call_ids == ["c1"]
        assert result.truncated_count == 1
        assert result.chars_removed == 400
        assert json.loads(old.read_text())["state"]["output"] == TRUNCATION_MESSAGE
        assert json.loads(new.read_text())["state"]["output"] == "n" * 400

    def test_disabled_does_nothing(self, store, session_writer):
        """Test deduplication is off by default."""
        old, _ = self._write_duplicates(session_writer)
        planner = DeduplicationPlanner(store)

        assert planner.execute("ses_test").pruned_count == 0
        parsed = classify_error("prompt is too long: 205000 tokens > 200000 maximum")
        assert planner.attempt_recovery("ses_test", parsed) is None
        assert json.loads(old.read_text())["state"]["output"] == "o" * 400

    def test_attempt_recovery_only_for_prompt_too_long(self, store, session_writer):
        """Test empty-content errors do not trigger deduplication."""
        self._write_duplicates(session_writer)
        planner = DeduplicationPlanner(store, DeduplicationConfig(enabled=True))

        empty = classify_error("messages.1: all messages must have non-empty content")
        assert planner.attempt_recovery("ses_test", empty) is None

        too_long = classify_error("prompt is too long: 205000 tokens > 200000 maximum")
        result = planner.attempt_recovery("ses_test", too_long)
        assert result is not None
        assert result.pruned_count == 1

    def test_forget_resets_state(self, store):
        """Test per-session pruning state is dropped."""
        planner = DeduplicationPlanner(store, DeduplicationConfig(enabled=True))
        planner.state_for("ses_test").tool_ids_to_prune.add("c1")

        planner.forget("ses_test")

        assert planner.state_for("ses_test").tool_ids_to_prune == set()
