"""GCP Compute Engine backend for imageroll.

Implements the ComputeBackend protocol using sync GCP clients dispatched to
a dedicated thread pool. Compute Engine keys instances by name, so the
instance name doubles as the instance ID and every replacement is created
under a freshly derived name.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Set
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from google.api_core.exceptions import GoogleAPICallError, NotFound
from loguru import logger

from imageroll.api.model import (
    BlockDeviceMapping,
    InstanceInfo,
    InstancePage,
    InstanceState,
    LoadBalancerMembership,
)
from imageroll.core.exceptions import (
    BackendMutationError,
    BackendQueryError,
    ConfigurationError,
    LoadBalancerNotFoundError,
    MissingCredentialError,
)
from imageroll.internal.rethrow import rethrow
from imageroll.providers.wait import WaitPolicy, wait_for_status

from .config import GCP

log = logger.bind(provider="gcp")

COMPUTE_API = "https://www.googleapis.com/compute/v1"

GCE_NAME_LIMIT = 63

_STATES: dict[str, InstanceState] = {
    "PROVISIONING": InstanceState.PENDING,
    "STAGING": InstanceState.PENDING,
    "REPAIRING": InstanceState.PENDING,
    "RUNNING": InstanceState.RUNNING,
    "STOPPING": InstanceState.STOPPING,
    "SUSPENDING": InstanceState.STOPPING,
    # GCE reports a stopped instance as TERMINATED.
    "TERMINATED": InstanceState.STOPPED,
    "SUSPENDED": InstanceState.STOPPED,
}


def _query_error(e: Exception) -> BackendQueryError:
    return BackendQueryError(f"GCP request failed: {e}")


def _mutation_error(e: Exception) -> BackendMutationError:
    return BackendMutationError(f"GCP request failed: {e}")


class GCPBackend:
    """Stateless GCP backend. Holds only immutable config + sync clients."""

    def __init__(
        self,
        config: GCP,
        instances_client: Any,
        target_pools_client: Any,
        thread_pool: ThreadPoolExecutor,
        policy: WaitPolicy | None = None,
    ) -> None:
        self._config = config
        self._instances = instances_client
        self._target_pools = target_pools_client
        self._pool = thread_pool
        self._policy = policy or config.wait_policy

    async def _run[T](self, fn: Callable[..., T], *args: object, **kwargs: object) -> T:
        loop = asyncio.get_running_loop()
        if kwargs:
            return await loop.run_in_executor(
                self._pool, lambda: fn(*args, **kwargs),
            )
        return await loop.run_in_executor(self._pool, fn, *args)

    @classmethod
    async def create(cls, config: GCP) -> GCPBackend:
        if missing := config.missing_credentials():
            raise MissingCredentialError("gcp", missing)

        from google.auth.exceptions import GoogleAuthError
        from google.cloud import compute_v1

        try:
            instances_client = compute_v1.InstancesClient.from_service_account_file(
                config.credentials_file,
            )
            target_pools_client = compute_v1.TargetPoolsClient.from_service_account_file(
                config.credentials_file,
            )
        except (OSError, ValueError, GoogleAuthError) as e:
            raise ConfigurationError(
                f"cannot load GCP credentials from {config.credentials_file}: {e}"
            ) from e

        thread_pool = ThreadPoolExecutor(
            max_workers=config.thread_pool_size,
            thread_name_prefix="gcp-io",
        )
        log.debug(
            "GCP backend ready for {project}/{zone}",
            project=config.project, zone=config.zone,
        )
        return cls(
            config=config,
            instances_client=instances_client,
            target_pools_client=target_pools_client,
            thread_pool=thread_pool,
        )

    @property
    def name(self) -> str:
        return "gcp"

    @property
    def requires_unique_names(self) -> bool:
        return True

    @property
    def name_separator(self) -> str:
        # GCE names may only contain lowercase letters, digits and hyphens.
        return "-"

    @property
    def max_name_length(self) -> int | None:
        return GCE_NAME_LIMIT

    # -------------------------------------------------------------------------
    # Instances
    # -------------------------------------------------------------------------

    @rethrow(GoogleAPICallError, _query_error)
    async def list_instances(self, page_token: str | None = None) -> InstancePage:
        from google.cloud import compute_v1

        pager = await self._run(
            self._instances.list,
            request=compute_v1.ListInstancesRequest(
                project=self._config.project,
                zone=self._config.zone,
                max_results=self._config.page_size,
                page_token=page_token or "",
            ),
        )
        # The pager proxies the first response: items and token of this page only.
        instances = tuple(
            info for info in map(_parse_instance, pager.items)
            if info.state.value in self._config.listed_states
        )
        return InstancePage(instances=instances, next_token=pager.next_page_token or None)

    async def get_info(self, instance_id: str) -> InstanceInfo:
        info = await self._describe(instance_id)
        if info is None:
            raise BackendQueryError(f"instance {instance_id} not found", identifier=instance_id)
        return info

    @rethrow(GoogleAPICallError, _mutation_error)
    async def stop(self, instance_id: str) -> None:
        from google.cloud import compute_v1

        await self._run(
            self._instances.stop,
            request=compute_v1.StopInstanceRequest(
                project=self._config.project,
                zone=self._config.zone,
                instance=instance_id,
            ),
        )
        log.info("Requested stop of {name}", name=instance_id)

    @rethrow(GoogleAPICallError, _mutation_error)
    async def create(self, image: str, name: str, template: InstanceInfo) -> str:
        from google.cloud import compute_v1

        instance = _build_instance(self._config, image, name, template)
        operation = await self._run(
            self._instances.insert,
            request=compute_v1.InsertInstanceRequest(
                project=self._config.project,
                zone=self._config.zone,
                instance_resource=instance,
            ),
        )
        await self._wait_for_operation(operation)
        log.info("Created {name} from {image}", name=name, image=image)
        return name

    @rethrow(GoogleAPICallError, _mutation_error)
    async def delete(self, instance_id: str) -> None:
        from google.cloud import compute_v1

        await self._run(
            self._instances.delete,
            request=compute_v1.DeleteInstanceRequest(
                project=self._config.project,
                zone=self._config.zone,
                instance=instance_id,
            ),
        )
        log.info("Requested deletion of {name}", name=instance_id)

    async def wait_for_status(self, instance_id: str, state: InstanceState) -> InstanceInfo:
        log.debug("Waiting for {name} to reach {state}", name=instance_id, state=state)
        return await wait_for_status(
            lambda: self._describe(instance_id), instance_id, state, self._policy,
        )

    @rethrow(GoogleAPICallError, _query_error)
    async def _describe(self, instance_id: str) -> InstanceInfo | None:
        from google.cloud import compute_v1

        try:
            gce_inst = await self._run(
                self._instances.get,
                request=compute_v1.GetInstanceRequest(
                    project=self._config.project,
                    zone=self._config.zone,
                    instance=instance_id,
                ),
            )
        except NotFound:
            return None
        return _parse_instance(gce_inst)

    async def _wait_for_operation(self, operation: object) -> None:
        result = getattr(operation, "result", None)
        if callable(result):
            await self._run(result)

    # -------------------------------------------------------------------------
    # Target pools
    # -------------------------------------------------------------------------

    async def get_load_balancer(self, load_balancer: str) -> LoadBalancerMembership:
        from google.cloud import compute_v1

        try:
            pool = await self._run(
                self._target_pools.get,
                request=compute_v1.GetTargetPoolRequest(
                    project=self._config.project,
                    region=self._config.region,
                    target_pool=load_balancer,
                ),
            )
        except NotFound as e:
            raise LoadBalancerNotFoundError(load_balancer) from e
        except GoogleAPICallError as e:
            raise _query_error(e) from e

        return LoadBalancerMembership(
            load_balancer=load_balancer,
            instance_ids=frozenset(_last_segment(url) for url in pool.instances),
        )

    async def set_load_balancer_members(
        self, load_balancer: str, instance_ids: Set[str],
    ) -> None:
        from google.cloud import compute_v1

        current = (await self.get_load_balancer(load_balancer)).instance_ids
        to_add = sorted(set(instance_ids) - current)
        to_remove = sorted(current - set(instance_ids))

        try:
            if to_add:
                operation = await self._run(
                    self._target_pools.add_instance,
                    request=compute_v1.AddInstanceTargetPoolRequest(
                        project=self._config.project,
                        region=self._config.region,
                        target_pool=load_balancer,
                        target_pools_add_instance_request_resource=compute_v1.TargetPoolsAddInstanceRequest(
                            instances=[self._reference(name) for name in to_add],
                        ),
                    ),
                )
                await self._wait_for_operation(operation)
            if to_remove:
                operation = await self._run(
                    self._target_pools.remove_instance,
                    request=compute_v1.RemoveInstanceTargetPoolRequest(
                        project=self._config.project,
                        region=self._config.region,
                        target_pool=load_balancer,
                        target_pools_remove_instance_request_resource=compute_v1.TargetPoolsRemoveInstanceRequest(
                            instances=[self._reference(name) for name in to_remove],
                        ),
                    ),
                )
                await self._wait_for_operation(operation)
        except GoogleAPICallError as e:
            raise _mutation_error(e) from e

        log.info(
            "Target pool {lb}: added {added}, removed {removed}",
            lb=load_balancer, added=to_add, removed=to_remove,
        )

    def _reference(self, name: str) -> Any:
        from google.cloud import compute_v1

        return compute_v1.InstanceReference(
            instance=instance_url(self._config.project, self._config.zone, name),
        )

    async def close(self) -> None:
        self._pool.shutdown(wait=False)


# =============================================================================
# Pure helper functions (no GCP API calls)
# =============================================================================


def instance_url(project: str, zone: str, name: str) -> str:
    return f"{COMPUTE_API}/projects/{project}/zones/{zone}/instances/{name}"


def _last_segment(url: str) -> str:
    """Resource name from a self-link ('.../machineTypes/e2-medium' -> 'e2-medium')."""
    return url.rstrip("/").rsplit("/", 1)[-1]


def _parse_instance(gce_inst: Any) -> InstanceInfo:
    """Build an InstanceInfo from a GCE instance object."""
    interfaces = list(getattr(gce_inst, "network_interfaces", None) or [])
    subnet = getattr(interfaces[0], "subnetwork", "") if interfaces else ""
    tags = getattr(getattr(gce_inst, "tags", None), "items", None) or []

    return InstanceInfo(
        instance_id=gce_inst.name,
        name=gce_inst.name,
        instance_type=_last_segment(gce_inst.machine_type or ""),
        state=_STATES.get(gce_inst.status or "", InstanceState.PENDING),
        block_devices=tuple(
            BlockDeviceMapping(
                device_name=disk.device_name,
                volume_size_gb=int(disk.disk_size_gb or 0),
                delete_on_termination=bool(disk.auto_delete),
                volume_id=_last_segment(disk.source) if disk.source else None,
            )
            for disk in getattr(gce_inst, "disks", None) or []
        ),
        subnet_id=subnet or None,
        security_group_ids=tuple(tags),
    )


def _build_instance(config: GCP, image: str, name: str, template: InstanceInfo) -> Any:
    """Compute Engine instance resource for a replacement of ``template``.

    The first block device becomes the boot disk initialised from ``image``;
    the others are recreated blank at their original size, since a disk
    cannot be attached read-write to two instances.
    """
    from google.cloud import compute_v1

    disks = []
    for index, bd in enumerate(template.block_devices):
        params: dict[str, Any] = {}
        if index == 0:
            params["source_image"] = image
        if bd.volume_size_gb:
            params["disk_size_gb"] = bd.volume_size_gb
        disks.append(
            compute_v1.AttachedDisk(
                boot=index == 0,
                auto_delete=bd.delete_on_termination,
                device_name=bd.device_name,
                initialize_params=compute_v1.AttachedDiskInitializeParams(**params),
            ),
        )
    if not disks:
        disks = [
            compute_v1.AttachedDisk(
                boot=True,
                auto_delete=True,
                initialize_params=compute_v1.AttachedDiskInitializeParams(source_image=image),
            ),
        ]

    interfaces = (
        [compute_v1.NetworkInterface(subnetwork=template.subnet_id)]
        if template.subnet_id
        else [compute_v1.NetworkInterface(network="global/networks/default")]
    )

    return compute_v1.Instance(
        name=name,
        machine_type=f"zones/{config.zone}/machineTypes/{template.instance_type}",
        disks=disks,
        network_interfaces=interfaces,
        tags=compute_v1.Tags(items=list(template.security_group_ids)),
    )
