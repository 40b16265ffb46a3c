from __future__ import annotations

from dataclasses import replace

import pytest

from imageroll.api.model import InstanceInfo, InstanceState
from imageroll.core.exceptions import (
    BackendQueryError,
    ConfigurationError,
    StateTransitionTimeoutError,
)
from imageroll.providers.wait import WaitPolicy, wait_for_status
from tests.conftest import make_instance

FAST = WaitPolicy(attempts=3, interval=0)


def poller(*states: InstanceState | None):
    """Poll function yielding one snapshot per call, repeating the last."""
    base = make_instance("i-abc", "web-01")
    seen: list[InstanceState | None] = []

    async def poll() -> InstanceInfo | None:
        state = states[min(len(seen), len(states) - 1)]
        seen.append(state)
        return None if state is None else replace(base, state=state)

    poll.seen = seen  # type: ignore[attr-defined]
    return poll


class TestWaitForStatus:
    @pytest.mark.asyncio
    async def test_returns_when_target_reached(self):
        poll = poller(InstanceState.STOPPING, InstanceState.STOPPED)

        info = await wait_for_status(poll, "i-abc", InstanceState.STOPPED, FAST)

        assert info.state == InstanceState.STOPPED
        assert len(poll.seen) == 2

    @pytest.mark.asyncio
    async def test_first_poll_already_in_target(self):
        poll = poller(InstanceState.RUNNING)

        await wait_for_status(poll, "i-abc", InstanceState.RUNNING, FAST)

        assert len(poll.seen) == 1

    @pytest.mark.asyncio
    async def test_missing_instance_counts_as_attempt(self):
        poll = poller(None, InstanceState.PENDING, InstanceState.RUNNING)

        info = await wait_for_status(poll, "i-new", InstanceState.RUNNING, FAST)

        assert info.state == InstanceState.RUNNING
        assert len(poll.seen) == 3

    @pytest.mark.asyncio
    async def test_budget_exhausted(self):
        poll = poller(InstanceState.STOPPING)

        with pytest.raises(StateTransitionTimeoutError) as exc_info:
            await wait_for_status(poll, "i-abc", InstanceState.STOPPED, FAST)

        err = exc_info.value
        assert err.attempts == 3
        assert err.last_state == "stopping"
        assert err.target == "stopped"
        assert len(poll.seen) == 3
        assert "after 3 attempts" in str(err)

    @pytest.mark.asyncio
    async def test_never_seen_instance(self):
        with pytest.raises(StateTransitionTimeoutError, match="last observed: unknown"):
            await wait_for_status(poller(None), "i-ghost", InstanceState.RUNNING, FAST)

    @pytest.mark.asyncio
    async def test_poll_error_propagates_immediately(self):
        calls = 0

        async def poll() -> InstanceInfo | None:
            nonlocal calls
            calls += 1
            raise BackendQueryError("RequestLimitExceeded")

        with pytest.raises(BackendQueryError):
            await wait_for_status(poll, "i-abc", InstanceState.STOPPED, FAST)

        assert calls == 1


class TestWaitPolicy:
    def test_defaults(self):
        assert WaitPolicy() == WaitPolicy(attempts=60, interval=5.0)

    def test_rejects_zero_attempts(self):
        with pytest.raises(ConfigurationError, match="attempts"):
            WaitPolicy(attempts=0)

    def test_rejects_negative_interval(self):
        with pytest.raises(ConfigurationError, match="interval"):
            WaitPolicy(interval=-1)

    def test_rejects_non_numeric_values(self):
        with pytest.raises(ConfigurationError, match="wait_attempts must be an integer"):
            WaitPolicy(attempts="ten")  # type: ignore[arg-type]
        with pytest.raises(ConfigurationError, match="wait_interval must be a non-negative number"):
            WaitPolicy(interval="fast")  # type: ignore[arg-type]
