"""Generic wait/polling utilities for backends.

Provides the bounded polling loop every backend's ``wait_for_status``
delegates to, so timeout behaviour is identical across providers.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from imageroll.api.model import InstanceInfo, InstanceState
from imageroll.core.exceptions import ConfigurationError, StateTransitionTimeoutError


@dataclass(frozen=True, slots=True)
class WaitPolicy:
    """Polling budget for state transitions.

    Args:
        attempts: Maximum number of state queries.
        interval: Seconds between queries.
    """

    attempts: int = 60
    interval: float = 5.0

    def __post_init__(self) -> None:
        if isinstance(self.attempts, bool) or not isinstance(self.attempts, int) or self.attempts < 1:
            raise ConfigurationError(
                f"wait_attempts must be an integer of at least 1, got {self.attempts!r}"
            )
        if (
            isinstance(self.interval, bool)
            or not isinstance(self.interval, int | float)
            or self.interval < 0
        ):
            raise ConfigurationError(
                f"wait_interval must be a non-negative number, got {self.interval!r}"
            )


async def wait_for_status(
    poll_fn: Callable[[], Awaitable[InstanceInfo | None]],
    instance_id: str,
    target: InstanceState,
    policy: WaitPolicy,
) -> InstanceInfo:
    """Wait until poll_fn reports ``target``.

    ``poll_fn`` may return None while the provider has not caught up with a
    freshly created instance; that counts as an attempt, not a failure.
    Errors raised by ``poll_fn`` propagate immediately.

    Raises:
        StateTransitionTimeoutError: If the attempt budget is exhausted.
    """
    last: InstanceInfo | None = None

    def _not_ready(info: InstanceInfo | None) -> bool:
        nonlocal last
        last = info
        return info is None or info.state != target

    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(policy.attempts),
            wait=wait_fixed(policy.interval),
            retry=retry_if_result(_not_ready),
        ):
            with attempt:
                info = await poll_fn()
            if not attempt.retry_state.outcome.failed:
                attempt.retry_state.set_result(info)
    except RetryError:
        raise StateTransitionTimeoutError(
            instance_id,
            target.value,
            last_state=last.state.value if last else None,
            attempts=policy.attempts,
        ) from None

    assert last is not None
    return last
