"""
Tests for selector fallback chains.
"""

import pytest

from stepwise.browser.strategies import Attempt, attempt_timeout_ms, run_fallback_chain
from stepwise.error_handling.exceptions import RunCancelledError, TargetNotFoundError
from stepwise.orchestration.cancellation import CancellationToken


class FrozenClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def recorder(calls, label, error=None, advance=None, clock=None):
    async def attempt(timeout_ms):
        calls.append((label, timeout_ms))
        if clock is not None and advance:
            clock.now += advance
        if error is not None:
            raise error

    return Attempt(label, attempt)


class TestRunFallbackChain:
    """Tests for run_fallback_chain."""

    @pytest.mark.asyncio
    async def test_first_success_wins(self):
        calls = []
        attempts = [
            recorder(calls, "label", Exception("Timeout 3000ms exceeded")),
            recorder(calls, "role"),
            recorder(calls, "text"),
        ]

        label = await run_fallback_chain(attempts, 9000, "Email", clock=FrozenClock())

        assert label == "role"
        assert [c[0] for c in calls] == ["label", "role"]

    @pytest.mark.asyncio
    async def test_budget_is_shared(self):
        """Test each attempt gets a third of what remains, at least one second."""
        clock = FrozenClock()
        calls = []
        attempts = [
            recorder(calls, "a", Exception("nope"), advance=3.0, clock=clock),
            recorder(calls, "b", Exception("nope"), advance=6.0, clock=clock),
            recorder(calls, "c", Exception("nope")),
        ]

        with pytest.raises(TargetNotFoundError):
            await run_fallback_chain(attempts, 9000, "Email", clock=clock)

        assert calls == [("a", 3000), ("b", 2000), ("c", 1000)]

    @pytest.mark.asyncio
    async def test_all_fail(self):
        calls = []
        attempts = [recorder(calls, "a", Exception("x")), recorder(calls, "b", Exception("y"))]

        with pytest.raises(TargetNotFoundError) as exc_info:
            await run_fallback_chain(
                attempts, 1000, "Email", failure_message="Nothing found.", clock=FrozenClock()
            )

        assert str(exc_info.value) == "Nothing found."
        assert exc_info.value.target == "Email"
        assert exc_info.value.attempts == ["a", "b"]

    @pytest.mark.asyncio
    async def test_default_failure_message(self):
        attempts = [recorder([], "a", Exception("x"))]

        with pytest.raises(TargetNotFoundError, match='Unable to locate target "Save".'):
            await run_fallback_chain(attempts, 1000, "Save", clock=FrozenClock())

    @pytest.mark.asyncio
    async def test_abort_artifact_stops_chain(self):
        """Test closed-resource errors propagate without trying later strategies."""
        calls = []
        attempts = [
            recorder(calls, "a", Exception("Target page, context or browser has been closed")),
            recorder(calls, "b"),
        ]

        with pytest.raises(Exception, match="has been closed"):
            await run_fallback_chain(attempts, 1000, "Save", clock=FrozenClock())

        assert [c[0] for c in calls] == ["a"]

    @pytest.mark.asyncio
    async def test_cancelled_before_next_attempt(self):
        token = CancellationToken()
        calls = []

        async def cancel_and_fail(timeout_ms):
            calls.append("a")
            token.cancel()
            raise Exception("Timeout")

        attempts = [Attempt("a", cancel_and_fail), recorder(calls, "b")]

        with pytest.raises(Exception, match="Timeout"):
            await run_fallback_chain(attempts, 1000, "Save", token=token, clock=FrozenClock())

        assert calls == ["a"]

    @pytest.mark.asyncio
    async def test_cancelled_token_raises(self):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(RunCancelledError):
            await run_fallback_chain([recorder([], "a")], 1000, "Save", token=token)


def test_attempt_timeout_floor():
    assert attempt_timeout_ms(0) == 1000
    assert attempt_timeout_ms(30000) == 10000
