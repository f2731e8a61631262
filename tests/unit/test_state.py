"""Tests for per-session recovery state and its lock."""

import pytest

from ctxrecover.recovery.errors import classify_error
from ctxrecover.recovery.state import RecoveryState


@pytest.fixture
def parsed():
    return classify_error("prompt is too long: 205000 tokens > 200000 maximum")


class TestRecoveryState:
    """Test session bookkeeping."""

    def test_record_error(self, parsed):
        """Test recording marks the session pending."""
        state = RecoveryState()
        state.record_error("s1", parsed)

        assert "s1" in state.pending
        assert state.get_error("s1") is parsed
        assert state.get_error("s2") is None

    def test_lazy_creation(self):
        """Test counters are created on first use."""
        state = RecoveryState()
        assert state.get_or_create_retry_state("s1").attempt == 0
        assert state.get_or_create_truncate_state("s1").attempt == 0
        assert state.get_or_create_retry_state("s1") is state.retry["s1"]
        assert state.increment_empty_content_attempt("s1") == 1
        assert state.increment_empty_content_attempt("s1") == 2

    def test_clear_session_clears_all_collections(self, parsed):
        """Test every collection is cleared together."""
        state = RecoveryState()
        state.record_error("s1", parsed)
        state.get_or_create_retry_state("s1")
        state.get_or_create_truncate_state("s1")
        state.increment_empty_content_attempt("s1")
        state.record_error("s2", parsed)

        state.clear_session("s1")

        assert "s1" not in state.pending
        assert "s1" not in state.last_error
        assert "s1" not in state.retry
        assert "s1" not in state.truncate
        assert "s1" not in state.empty_content_attempts
        assert "s2" in state.pending

    def test_forget_session_leaves_lock_to_holder(self, parsed):
        """Test deletion during a run does not release the run's lock."""
        state = RecoveryState()
        state.record_error("s1", parsed)

        with state.acquire("s1") as acquired:
            assert acquired
            state.forget_session("s1")
            assert state.is_running("s1")
            assert "s1" not in state.pending

        assert not state.is_running("s1")

    def test_forget_session_does_not_free_lock_for_second_run(self, parsed):
        """Test a second run cannot start until the first one finishes."""
        state = RecoveryState()

        with state.acquire("s1"):
            state.forget_session("s1")
            with state.acquire("s1") as second:
                assert second is False
            assert state.is_running("s1")

        assert not state.is_running("s1")

    def test_instances_are_independent(self, parsed):
        """Test two states never share data."""
        first, second = RecoveryState(), RecoveryState()
        first.record_error("s1", parsed)
        assert second.get_error("s1") is None


class TestAcquire:
    """Test the scoped session lock."""

    def test_lock_held_inside_block(self):
        """Test the lock is held for the block and released after."""
        state = RecoveryState()
        assert not state.is_running("s1")

        with state.acquire("s1") as acquired:
            assert acquired
            assert state.is_running("s1")

        assert not state.is_running("s1")

    def test_second_acquire_refused(self):
        """Test a nested acquire yields False and leaves the outer lock alone."""
        state = RecoveryState()
        with state.acquire("s1"):
            with state.acquire("s1") as acquired:
                assert not acquired
            assert state.is_running("s1")
        assert not state.is_running("s1")

    def test_released_on_exception(self):
        """Test the lock is released when the block raises."""
        state = RecoveryState()
        with pytest.raises(RuntimeError):
            with state.acquire("s1"):
                raise RuntimeError("boom")
        assert not state.is_running("s1")

    def test_sessions_lock_independently(self):
        """Test locks are per session."""
        state = RecoveryState()
        with state.acquire("s1"):
            with state.acquire("s2") as acquired:
                assert acquired
