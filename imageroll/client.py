"""Client facade over the replacement and load-balancer orchestrators.

Example:
    async with await Client.connect(AWS(region="us-east-1", ...)) as client:
        new_id = await client.replace("web-01", "ami-999")
        await client.swap_load_balancer("lb-1", [new_id])
"""

from __future__ import annotations

from collections.abc import Sequence
from types import TracebackType
from typing import TYPE_CHECKING, Self

from loguru import logger

from imageroll.api.model import LoadBalancerMembership
from imageroll.api.predicate import FilterKind, name_filter
from imageroll.core.exceptions import BackendMutationError, ImagerollError
from imageroll.internal.decorators import audit
from imageroll.providers.provider import ComputeBackend
from imageroll.providers.registry import create_backend
from imageroll.replacement import ReplacementOrchestrator
from imageroll.resolver import InstanceResolver
from imageroll.swap import LoadBalancerSwapOrchestrator

if TYPE_CHECKING:
    from imageroll.config import Settings
    from imageroll.providers.registry import BackendConfig

log = logger.bind(component="client")


class Client:
    """Entry point for imageroll operations against one backend.

    Args:
        backend: Compute backend every operation runs against.
        filter_kind: How identifiers are matched against instance names.
        deadline: Overall time budget in seconds for each operation.
    """

    def __init__(
        self,
        backend: ComputeBackend,
        *,
        filter_kind: FilterKind = "regex",
        deadline: float | None = None,
    ) -> None:
        self._backend = backend
        self._filter_kind = filter_kind
        self._deadline = deadline
        self._resolver = InstanceResolver(backend)
        self._replacer = ReplacementOrchestrator(backend, self._resolver)
        self._swapper = LoadBalancerSwapOrchestrator(backend, self._resolver)

    @classmethod
    async def connect(
        cls,
        config: BackendConfig,
        *,
        filter_kind: FilterKind = "regex",
        deadline: float | None = None,
    ) -> Client:
        backend = await create_backend(config)
        return cls(backend, filter_kind=filter_kind, deadline=deadline)

    @classmethod
    async def from_settings(cls, settings: Settings) -> Client:
        return await cls.connect(
            settings.backend,
            filter_kind=settings.filter_kind,
            deadline=settings.deadline,
        )

    @property
    def backend(self) -> ComputeBackend:
        return self._backend

    @audit("Replace", args=True, result=True)
    async def replace(self, identifier: str, image: str) -> str:
        """Replace the one instance matching ``identifier`` with a new one on ``image``.

        Returns the new instance ID. Raises a ``ResolutionError`` without
        touching anything when the identifier matches zero or several
        instances.
        """
        run = await self._replacer.replace(
            name_filter(identifier, self._filter_kind), image, deadline=self._deadline,
        )
        if not run.new_instance_id:
            raise BackendMutationError(
                "backend returned no ID for the new instance",
                step="create",
                identifier=identifier,
            )
        return run.new_instance_id

    @audit("SwapLoadBalancer", args=True)
    async def swap_load_balancer(
        self, load_balancer: str, identifiers: Sequence[str],
    ) -> LoadBalancerMembership:
        """Make ``identifiers`` the complete membership of ``load_balancer``."""
        members = [name_filter(i, self._filter_kind) for i in identifiers]
        return await self._swapper.swap(load_balancer, members, deadline=self._deadline)

    @audit("Delete", args=True, result=True)
    async def delete(self, identifier: str) -> str:
        """Delete the one instance matching ``identifier`` and return its ID."""
        matches = await self._resolver.resolve(name_filter(identifier, self._filter_kind))
        instance = matches.single(identifier)

        try:
            await self._backend.delete(instance.instance_id)
        except ImagerollError as e:
            e.with_context("delete", identifier)
            raise
        except Exception as e:
            raise BackendMutationError(str(e), step="delete", identifier=identifier) from e

        log.info("Deleted {name} ({iid})", name=instance.name, iid=instance.instance_id)
        return instance.instance_id

    async def close(self) -> None:
        await self._backend.close()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
