from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum

from imageroll.core.exceptions import AmbiguousMatchError, NoMatchError


class InstanceState(StrEnum):
    """Provider-neutral lifecycle state of a cloud instance."""

    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    TERMINATED = "terminated"

    @property
    def live(self) -> bool:
        return self in (InstanceState.PENDING, InstanceState.RUNNING)


@dataclass(frozen=True, slots=True)
class BlockDeviceMapping:
    """Storage attached to an instance under a device name."""

    device_name: str
    volume_size_gb: int
    volume_type: str | None = None
    delete_on_termination: bool = True
    volume_id: str | None = None


@dataclass(frozen=True, slots=True)
class InstanceInfo:
    """Point-in-time snapshot of an instance, used as a creation template."""

    instance_id: str
    name: str
    instance_type: str
    state: InstanceState
    image: str | None = None
    block_devices: tuple[BlockDeviceMapping, ...] = ()
    key_name: str | None = None
    subnet_id: str | None = None
    security_group_ids: tuple[str, ...] = ()

    def with_image(self, image: str) -> InstanceInfo:
        return replace(self, image=image)

    def with_name(self, name: str) -> InstanceInfo:
        return replace(self, name=name)

    def with_block_devices(self, devices: tuple[BlockDeviceMapping, ...]) -> InstanceInfo:
        return replace(self, block_devices=devices)


@dataclass(frozen=True, slots=True)
class InstancePage:
    """One page of a paginated instance listing.

    ``next_token`` is None on the last page.
    """

    instances: tuple[InstanceInfo, ...]
    next_token: str | None = None


@dataclass(frozen=True, slots=True)
class MatchResult:
    """Every instance whose name matched a filter, in listing order."""

    pattern: str
    instances: tuple[InstanceInfo, ...]

    def __len__(self) -> int:
        return len(self.instances)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(i.name for i in self.instances)

    def single(self, identifier: str | None = None) -> InstanceInfo:
        """Return the only match, or raise on zero or several matches."""
        identifier = identifier or self.pattern
        match self.instances:
            case ():
                raise NoMatchError(identifier)
            case (only,):
                return only
            case _:
                raise AmbiguousMatchError(identifier, self.names)


@dataclass(frozen=True, slots=True)
class LoadBalancerMembership:
    load_balancer: str
    instance_ids: frozenset[str]
