from __future__ import annotations

import asyncio
from collections.abc import Set
from dataclasses import dataclass, field, replace

import pytest

from imageroll.api.model import (
    BlockDeviceMapping,
    InstanceInfo,
    InstancePage,
    InstanceState,
    LoadBalancerMembership,
)
from imageroll.core.exceptions import (
    BackendQueryError,
    LoadBalancerNotFoundError,
    StateTransitionTimeoutError,
)

MUTATIONS = frozenset({"stop", "create", "delete", "set_load_balancer_members"})


def make_instance(
    instance_id: str,
    name: str,
    *,
    state: InstanceState = InstanceState.RUNNING,
    instance_type: str = "t2.micro",
    size_gb: int = 50,
) -> InstanceInfo:
    return InstanceInfo(
        instance_id=instance_id,
        name=name,
        instance_type=instance_type,
        state=state,
        image="ami-old",
        block_devices=(BlockDeviceMapping("/dev/sda1", size_gb, "gp3"),),
        key_name="deploy",
        subnet_id="subnet-1",
        security_group_ids=("sg-1",),
    )


@dataclass
class FakeBackend:
    """In-memory ComputeBackend that records every call it receives.

    Stopped instances reach ``stopped`` on the first poll and new instances
    reach ``running`` on the first poll, unless ``stuck`` names them.
    ``listed_states`` limits the listing like the real backends do.
    """

    instances: list[InstanceInfo] = field(default_factory=list)
    load_balancers: dict[str, set[str]] = field(default_factory=dict)
    page_size: int = 2
    requires_unique_names: bool = False
    name_separator: str = "_"
    max_name_length: int | None = None
    listed_states: frozenset[InstanceState] | None = None
    stuck: set[str] = field(default_factory=set)
    fail_on: dict[str, Exception] = field(default_factory=dict)
    poll_delay: float = 0.0
    calls: list[tuple] = field(default_factory=list)
    created: list[tuple[str, str, InstanceInfo]] = field(default_factory=list)
    closed: bool = False
    _next_id: int = 0

    @property
    def name(self) -> str:
        return "fake"

    @property
    def mutations(self) -> list[tuple]:
        return [c for c in self.calls if c[0] in MUTATIONS]

    @property
    def call_names(self) -> list[str]:
        return [c[0] for c in self.calls]

    def _record(self, *call: object) -> None:
        self.calls.append(call)
        if (exc := self.fail_on.get(str(call[0]))) is not None:
            raise exc

    def _find(self, instance_id: str) -> InstanceInfo:
        for inst in self.instances:
            if inst.instance_id == instance_id:
                return inst
        raise BackendQueryError(f"instance {instance_id} not found")

    def _set_state(self, instance_id: str, state: InstanceState) -> None:
        self.instances = [
            replace(i, state=state) if i.instance_id == instance_id else i
            for i in self.instances
        ]

    async def list_instances(self, page_token: str | None = None) -> InstancePage:
        self._record("list_instances", page_token)
        listed = [
            i for i in self.instances
            if self.listed_states is None or i.state in self.listed_states
        ]
        start = int(page_token or 0)
        end = start + self.page_size
        next_token = str(end) if end < len(listed) else None
        return InstancePage(tuple(listed[start:end]), next_token)

    async def get_info(self, instance_id: str) -> InstanceInfo:
        self._record("get_info", instance_id)
        return self._find(instance_id)

    async def stop(self, instance_id: str) -> None:
        self._record("stop", instance_id)
        self._find(instance_id)
        if instance_id not in self.stuck:
            self._set_state(instance_id, InstanceState.STOPPED)

    async def create(self, image: str, name: str, template: InstanceInfo) -> str:
        self._record("create", image, name)
        self._next_id += 1
        new_id = f"i-new{self._next_id}"
        self.created.append((image, name, template))
        self.instances.append(
            replace(template, instance_id=new_id, name=name, image=image, state=InstanceState.PENDING),
        )
        return new_id

    async def delete(self, instance_id: str) -> None:
        self._record("delete", instance_id)
        self._find(instance_id)
        self._set_state(instance_id, InstanceState.TERMINATED)

    async def wait_for_status(self, instance_id: str, state: InstanceState) -> InstanceInfo:
        self._record("wait_for_status", instance_id, state)
        if self.poll_delay:
            await asyncio.sleep(self.poll_delay)
        if instance_id in self.stuck:
            raise StateTransitionTimeoutError(
                instance_id, state.value, last_state="stopping", attempts=3,
            )
        self._set_state(instance_id, state)
        return self._find(instance_id)

    async def get_load_balancer(self, load_balancer: str) -> LoadBalancerMembership:
        self._record("get_load_balancer", load_balancer)
        if load_balancer not in self.load_balancers:
            raise LoadBalancerNotFoundError(load_balancer)
        return LoadBalancerMembership(load_balancer, frozenset(self.load_balancers[load_balancer]))

    async def set_load_balancer_members(self, load_balancer: str, instance_ids: Set[str]) -> None:
        self._record("set_load_balancer_members", load_balancer, frozenset(instance_ids))
        self.load_balancers[load_balancer] = set(instance_ids)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend(
        instances=[
            make_instance("i-abc", "web-01"),
            make_instance("i-xyz", "web-02"),
            make_instance("i-db", "db-01"),
        ],
    )

