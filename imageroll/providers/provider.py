from collections.abc import Set
from typing import Protocol, runtime_checkable

from imageroll.api.model import (
    InstanceInfo,
    InstancePage,
    InstanceState,
    LoadBalancerMembership,
)


@runtime_checkable
class ComputeBackend(Protocol):
    """Capability set every cloud backend exposes to the orchestrators.

    Implementations hold immutable config plus SDK clients; no lifecycle
    state survives between calls. Provider SDK failures are translated to
    imageroll errors at this boundary: reads raise ``BackendQueryError``,
    writes raise ``BackendMutationError``.
    """

    @property
    def name(self) -> str:
        """Short provider name used in logs ("aws", "gcp", ...)."""
        ...

    @property
    def requires_unique_names(self) -> bool:
        """Whether a replacement must be created under a new name.

        Backends that key instances by name cannot create the replacement
        while the stopped original still holds it.
        """
        ...

    @property
    def name_separator(self) -> str:
        """Separator used when deriving replacement names."""
        ...

    @property
    def max_name_length(self) -> int | None:
        """Longest instance name the provider accepts, None when unbounded."""
        ...

    async def list_instances(self, page_token: str | None = None) -> InstancePage:
        """Fetch one page of the instance listing.

        Parameters
        ----------
        page_token
            Continuation token returned by the previous page, None for
            the first page.

        Returns
        -------
        InstancePage
            Instances on this page and the token for the next one, None
            when the listing is exhausted.
        """
        ...

    async def get_info(self, instance_id: str) -> InstanceInfo:
        """Capture a fresh snapshot of an instance."""
        ...

    async def stop(self, instance_id: str) -> None:
        """Request a stop (and deallocation, where the provider splits them)."""
        ...

    async def create(self, image: str, name: str, template: InstanceInfo) -> str:
        """Launch an instance from ``template`` with ``image`` and ``name``.

        Returns
        -------
        str
            Provider identifier of the new instance.
        """
        ...

    async def delete(self, instance_id: str) -> None:
        ...

    async def wait_for_status(self, instance_id: str, state: InstanceState) -> InstanceInfo:
        """Poll until the instance reports ``state``.

        Raises
        ------
        StateTransitionTimeoutError
            When the attempt budget is exhausted first.
        """
        ...

    async def get_load_balancer(self, load_balancer: str) -> LoadBalancerMembership:
        """Read current membership, raising ``LoadBalancerNotFoundError``."""
        ...

    async def set_load_balancer_members(
        self, load_balancer: str, instance_ids: Set[str],
    ) -> None:
        """Make ``instance_ids`` the full membership of ``load_balancer``.

        Neither classic ELB nor GCE target pools can replace membership in
        one call, so new members are registered first and stale members
        removed second. A failure between the two leaves the union of old
        and new members registered; nothing is rolled back.
        """
        ...

    async def close(self) -> None:
        ...
