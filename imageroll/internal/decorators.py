"""Decorators for observability."""

import inspect
import time
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, Literal

from loguru import logger


def _call_label(op: str, sig: inspect.Signature, a: tuple, kw: dict) -> str:
    bound = sig.bind(*a, **kw)
    bound.apply_defaults()
    shown = ", ".join(f"{k}={v!r}" for k, v in bound.arguments.items() if k != "self")
    return f"{op}({shown})"


def audit[F: Callable[..., Awaitable[Any]]](
    operation: str | None = None,
    *,
    args: bool = False,
    result: bool = False,
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "TRACE"] = "INFO",
) -> Callable[[F], F]:
    """Log entry, exit and failure of a coroutine, with timing.

    Everything logged while the coroutine runs carries
    ``operation=<name>`` in its context, so backend and orchestrator
    records can be traced back to the Client call that caused them.

    - → entry (with arguments when ``args``)
    - ← exit with duration (with the return value when ``result``)
    - ✗ failure with duration; the exception is re-raised

    Usage:
        @audit("Replace", args=True, result=True)
        async def replace(self, identifier, image): ...
    """

    def decorator(func: F) -> F:
        op = operation or func.__name__
        sig = inspect.signature(func)

        @wraps(func)
        async def wrapper(*a: Any, **kw: Any) -> Any:
            label = _call_label(op, sig, a, kw) if args else op
            log = logger.opt(depth=1)
            start = time.monotonic()

            with logger.contextualize(operation=op):
                log.log(level, "→ {}", label)
                try:
                    r = await func(*a, **kw)
                except Exception as e:
                    log.error("✗ {} [{:.2f}s]: {}", label, time.monotonic() - start, e)
                    raise

                suffix = f" → {r!r}" if result else ""
                log.log(level, "← {} [{:.2f}s]{}", label, time.monotonic() - start, suffix)
                return r

        return wrapper  # type: ignore[return-value]

    return decorator
