"""Replace a single instance with one built from a new image.

A replacement is a fixed sequence of backend calls::

    resolve -> stop -> wait(stopped) -> capture -> create -> wait(running)

The template handed to create is captured from the stopped instance;
only the image (and, for backends that key instances by name, the name)
differs in the new instance.

Any failure moves the run to FAILED and propagates. Nothing is rolled back:
the old instance stays wherever the backend left it so an operator can
decide how to recover.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from loguru import logger

from imageroll.api.model import InstanceInfo, InstanceState
from imageroll.api.predicate import NameFilter
from imageroll.core.exceptions import (
    BackendMutationError,
    BackendQueryError,
    ImagerollError,
    StateTransitionTimeoutError,
)
from imageroll.providers.naming import generate_instance_name
from imageroll.providers.provider import ComputeBackend
from imageroll.resolver import InstanceResolver

log = logger.bind(component="replacement")

_AWAITED = {"wait-stopped": "stopped", "wait-running": "running"}


class ReplacementState(StrEnum):
    RESOLVED = "resolved"
    STOPPING = "stopping"
    STOPPED = "stopped"
    CREATING = "creating"
    RUNNING = "running"
    FAILED = "failed"


@dataclass(slots=True)
class ReplacementRun:
    """Progress of one replace invocation. Never reused across calls."""

    identifier: str
    image: str
    state: ReplacementState | None = None
    step: str = "resolve"
    history: list[ReplacementState] = field(default_factory=list)
    old_instance_id: str | None = None
    template: InstanceInfo | None = None
    new_name: str | None = None
    new_instance_id: str | None = None

    def advance(self, state: ReplacementState) -> None:
        if state in self.history:
            raise RuntimeError(f"replacement state {state} entered twice")
        log.debug(
            "{identifier}: {prev} -> {state}",
            identifier=self.identifier, prev=self.state or "start", state=state,
        )
        self.state = state
        self.history.append(state)


class ReplacementOrchestrator:
    def __init__(
        self,
        backend: ComputeBackend,
        resolver: InstanceResolver | None = None,
        *,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._backend = backend
        self._resolver = resolver or InstanceResolver(backend)
        self._now = now

    async def replace(
        self,
        name_filter: NameFilter,
        image: str,
        *,
        deadline: float | None = None,
    ) -> ReplacementRun:
        """Replace the single instance matching ``name_filter``.

        Args:
            name_filter: Identifier filter; must match exactly one instance.
            image: Image reference for the new instance.
            deadline: Overall time budget in seconds. Expiry cancels any
                in-flight poll and fails the run.

        Returns:
            The completed run; ``new_instance_id`` holds the new instance.
        """
        run = ReplacementRun(identifier=name_filter.pattern, image=image)
        try:
            async with asyncio.timeout(deadline):
                await self._run(run, name_filter)
        except TimeoutError as e:
            run.advance(ReplacementState.FAILED)
            raise StateTransitionTimeoutError(
                run.new_instance_id or run.old_instance_id or run.identifier,
                _AWAITED.get(run.step, run.step),
                reason=f"deadline of {deadline}s exceeded",
            ).with_context(run.step, run.identifier) from e
        except ImagerollError:
            run.advance(ReplacementState.FAILED)
            raise
        return run

    async def _run(self, run: ReplacementRun, name_filter: NameFilter) -> None:
        backend = self._backend

        with _step(run, "resolve", wrap=BackendQueryError):
            matches = await self._resolver.resolve(name_filter)
            old = matches.single(run.identifier)
        run.old_instance_id = old.instance_id
        run.advance(ReplacementState.RESOLVED)
        log.info(
            "Replacing {name} ({iid}) with image {image}",
            name=old.name, iid=old.instance_id, image=run.image,
        )

        run.advance(ReplacementState.STOPPING)
        with _step(run, "stop"):
            await backend.stop(old.instance_id)
        with _step(run, "wait-stopped"):
            await backend.wait_for_status(old.instance_id, InstanceState.STOPPED)
        run.advance(ReplacementState.STOPPED)

        with _step(run, "capture", wrap=BackendQueryError):
            snapshot = await backend.get_info(old.instance_id)

        run.new_name = (
            generate_instance_name(
                snapshot.name,
                separator=backend.name_separator,
                now=self._now(),
                max_length=backend.max_name_length,
            )
            if backend.requires_unique_names
            else snapshot.name
        )
        run.template = snapshot.with_image(run.image).with_name(run.new_name)

        run.advance(ReplacementState.CREATING)
        with _step(run, "create"):
            run.new_instance_id = await backend.create(run.image, run.new_name, run.template)
        log.info(
            "Created {name} ({iid}), waiting for it to run",
            name=run.new_name, iid=run.new_instance_id,
        )
        with _step(run, "wait-running"):
            await backend.wait_for_status(run.new_instance_id, InstanceState.RUNNING)
        run.advance(ReplacementState.RUNNING)
        log.info(
            "Replaced {old} with {new}",
            old=old.instance_id, new=run.new_instance_id,
        )


@contextmanager
def _step(
    run: ReplacementRun,
    step: str,
    *,
    wrap: type[ImagerollError] = BackendMutationError,
) -> Iterator[None]:
    """Attach step context to imageroll errors; wrap anything else in ``wrap``."""
    run.step = step
    try:
        yield
    except ImagerollError as e:
        e.with_context(step, run.identifier)
        raise
    except Exception as e:
        raise wrap(str(e), step=step, identifier=run.identifier) from e
