"""Swap a load balancer's membership to a new instance set."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

from loguru import logger

from imageroll.api.model import LoadBalancerMembership
from imageroll.api.predicate import NameFilter
from imageroll.core.exceptions import (
    BackendMembershipError,
    BackendMutationError,
    ImagerollError,
    ResolutionError,
    StateTransitionTimeoutError,
)
from imageroll.providers.provider import ComputeBackend
from imageroll.resolver import InstanceResolver

log = logger.bind(component="swap")


class LoadBalancerSwapOrchestrator:
    def __init__(
        self,
        backend: ComputeBackend,
        resolver: InstanceResolver | None = None,
    ) -> None:
        self._backend = backend
        self._resolver = resolver or InstanceResolver(backend)

    async def swap(
        self,
        load_balancer: str,
        members: Sequence[NameFilter],
        *,
        deadline: float | None = None,
    ) -> LoadBalancerMembership:
        """Point ``load_balancer`` at exactly the instances named by ``members``.

        Every member must resolve to a single live instance before anything
        is written; the new set then replaces the old one in one backend
        call. Returns the membership that was applied.
        """
        try:
            async with asyncio.timeout(deadline):
                return await self._swap(load_balancer, members)
        except TimeoutError as e:
            raise StateTransitionTimeoutError(
                load_balancer,
                "swapped membership",
                reason=f"deadline of {deadline}s exceeded",
            ).with_context("swap", load_balancer) from e

    async def _swap(
        self, load_balancer: str, members: Sequence[NameFilter],
    ) -> LoadBalancerMembership:
        try:
            current = await self._backend.get_load_balancer(load_balancer)
        except ImagerollError as e:
            e.with_context("lookup", load_balancer)
            raise

        if not members:
            raise BackendMembershipError(
                "refusing to swap to an empty member set",
                step="validate", identifier=load_balancer,
            )

        instance_ids: set[str] = set()
        for member in members:
            instance_ids.add(await self._validate(member))

        target = LoadBalancerMembership(load_balancer, frozenset(instance_ids))
        log.info(
            "Swapping {lb}: {old} -> {new}",
            lb=load_balancer,
            old=sorted(current.instance_ids),
            new=sorted(target.instance_ids),
        )

        try:
            await self._backend.set_load_balancer_members(load_balancer, target.instance_ids)
        except ImagerollError as e:
            e.with_context("apply", load_balancer)
            raise
        except Exception as e:
            raise BackendMutationError(str(e), step="apply", identifier=load_balancer) from e

        return target

    async def _validate(self, member: NameFilter) -> str:
        try:
            matches = await self._resolver.resolve(member)
            instance = matches.single(member.pattern)
        except ResolutionError as e:
            raise BackendMembershipError(
                e.message, step="validate", identifier=member.pattern,
            ) from e

        if not instance.state.live:
            raise BackendMembershipError(
                f"instance {instance.instance_id} is {instance.state}, not live",
                step="validate",
                identifier=member.pattern,
            )
        return instance.instance_id
