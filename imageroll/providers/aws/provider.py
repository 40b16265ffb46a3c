"""AWS backend: EC2 instances behind classic Elastic Load Balancers."""

from __future__ import annotations

from collections.abc import Set
from dataclasses import replace
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from injector import Injector
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
    LoadBalancerNotFoundError,
    MissingCredentialError,
)
from imageroll.internal.rethrow import rethrow
from imageroll.providers.wait import WaitPolicy, wait_for_status

from .clients import AWSModule, EC2ClientFactory, ELBClientFactory
from .config import AWS

log = logger.bind(provider="aws")

_AWS_ERRORS = (ClientError, BotoCoreError)

_STATES: dict[str, InstanceState] = {
    "pending": InstanceState.PENDING,
    "running": InstanceState.RUNNING,
    "stopping": InstanceState.STOPPING,
    "shutting-down": InstanceState.STOPPING,
    "stopped": InstanceState.STOPPED,
    "terminated": InstanceState.TERMINATED,
}


def _query_error(e: Exception) -> BackendQueryError:
    return BackendQueryError(f"AWS request failed: {e}")


def _mutation_error(e: Exception) -> BackendMutationError:
    return BackendMutationError(f"AWS request failed: {e}")


class AWSBackend:
    """Stateless EC2 backend. Holds only immutable config + client factories.

    Instances are identified by their EC2 instance ID and named by their
    ``Name`` tag. A replacement reuses the tag, so names need not be unique.
    """

    def __init__(
        self,
        config: AWS,
        ec2: EC2ClientFactory,
        elb: ELBClientFactory,
        policy: WaitPolicy | None = None,
    ) -> None:
        self._config = config
        self._ec2 = ec2
        self._elb = elb
        self._policy = policy or config.wait_policy

    @classmethod
    async def create(cls, config: AWS, injector: Injector | None = None) -> AWSBackend:
        if missing := config.missing_credentials():
            raise MissingCredentialError("aws", missing)

        injector = injector or Injector([AWSModule()])
        injector.binder.bind(AWS, to=config)
        log.debug("AWS backend ready for region {region}", region=config.region)
        return cls(
            config=config,
            ec2=injector.get(EC2ClientFactory),
            elb=injector.get(ELBClientFactory),
        )

    @property
    def name(self) -> str:
        return "aws"

    @property
    def requires_unique_names(self) -> bool:
        return False

    @property
    def name_separator(self) -> str:
        return "_"

    @property
    def max_name_length(self) -> int | None:
        return None

    # -------------------------------------------------------------------------
    # Instances
    # -------------------------------------------------------------------------

    @rethrow(_AWS_ERRORS, _query_error)
    async def list_instances(self, page_token: str | None = None) -> InstancePage:
        params: dict[str, Any] = {
            "Filters": [
                {"Name": "instance-state-name", "Values": list(self._config.listed_states)},
            ],
            "MaxResults": self._config.page_size,
        }
        if page_token:
            params["NextToken"] = page_token

        async with self._ec2() as ec2:
            resp = await ec2.describe_instances(**params)

        instances = tuple(
            _parse_instance(raw)
            for reservation in resp.get("Reservations", [])
            for raw in reservation.get("Instances", [])
        )
        return InstancePage(instances=instances, next_token=resp.get("NextToken") or None)

    async def get_info(self, instance_id: str) -> InstanceInfo:
        info = await self._describe(instance_id)
        if info is None:
            raise BackendQueryError(f"instance {instance_id} not found", identifier=instance_id)
        return await self._with_volume_sizes(info)

    @rethrow(_AWS_ERRORS, _mutation_error)
    async def stop(self, instance_id: str) -> None:
        async with self._ec2() as ec2:
            await ec2.stop_instances(InstanceIds=[instance_id])
        log.info("Requested stop of {iid}", iid=instance_id)

    @rethrow(_AWS_ERRORS, _mutation_error)
    async def create(self, image: str, name: str, template: InstanceInfo) -> str:
        params: dict[str, Any] = {
            "ImageId": image,
            "InstanceType": template.instance_type,
            "MinCount": 1,
            "MaxCount": 1,
            "BlockDeviceMappings": [_block_device_param(bd) for bd in template.block_devices],
            "TagSpecifications": [
                {"ResourceType": "instance", "Tags": [{"Key": "Name", "Value": name}]},
            ],
        }
        if template.key_name:
            params["KeyName"] = template.key_name
        if template.subnet_id:
            params["SubnetId"] = template.subnet_id
        if template.security_group_ids:
            params["SecurityGroupIds"] = list(template.security_group_ids)

        async with self._ec2() as ec2:
            resp = await ec2.run_instances(**params)

        instance_id = resp["Instances"][0]["InstanceId"]
        log.info("Launched {iid} ({name}) from {image}", iid=instance_id, name=name, image=image)
        return instance_id

    @rethrow(_AWS_ERRORS, _mutation_error)
    async def delete(self, instance_id: str) -> None:
        async with self._ec2() as ec2:
            await ec2.terminate_instances(InstanceIds=[instance_id])
        log.info("Requested termination of {iid}", iid=instance_id)

    async def wait_for_status(self, instance_id: str, state: InstanceState) -> InstanceInfo:
        log.debug("Waiting for {iid} to reach {state}", iid=instance_id, state=state)
        return await wait_for_status(
            lambda: self._describe(instance_id), instance_id, state, self._policy,
        )

    @rethrow(_AWS_ERRORS, _query_error)
    async def _describe(self, instance_id: str) -> InstanceInfo | None:
        """Describe one instance; None while EC2 has not caught up with it."""
        try:
            async with self._ec2() as ec2:
                resp = await ec2.describe_instances(InstanceIds=[instance_id])
        except ClientError as e:
            if _error_code(e) == "InvalidInstanceID.NotFound":
                return None
            raise

        for reservation in resp.get("Reservations", []):
            for raw in reservation.get("Instances", []):
                return _parse_instance(raw)
        return None

    @rethrow(_AWS_ERRORS, _query_error)
    async def _with_volume_sizes(self, info: InstanceInfo) -> InstanceInfo:
        volume_ids = [bd.volume_id for bd in info.block_devices if bd.volume_id]
        if not volume_ids:
            return info

        async with self._ec2() as ec2:
            resp = await ec2.describe_volumes(VolumeIds=volume_ids)
        volumes = {v["VolumeId"]: v for v in resp.get("Volumes", [])}

        devices = tuple(
            _sized(bd, volumes.get(bd.volume_id or "")) for bd in info.block_devices
        )
        return info.with_block_devices(devices)

    # -------------------------------------------------------------------------
    # Load balancers
    # -------------------------------------------------------------------------

    async def get_load_balancer(self, load_balancer: str) -> LoadBalancerMembership:
        try:
            async with self._elb() as elb:
                resp = await elb.describe_load_balancers(LoadBalancerNames=[load_balancer])
        except ClientError as e:
            if _error_code(e) in ("LoadBalancerNotFound", "AccessPointNotFound"):
                raise LoadBalancerNotFoundError(load_balancer) from e
            raise _query_error(e) from e
        except BotoCoreError as e:
            raise _query_error(e) from e

        descriptions = resp.get("LoadBalancerDescriptions", [])
        if not descriptions:
            raise LoadBalancerNotFoundError(load_balancer)

        return LoadBalancerMembership(
            load_balancer=load_balancer,
            instance_ids=frozenset(i["InstanceId"] for i in descriptions[0].get("Instances", [])),
        )

    async def set_load_balancer_members(
        self, load_balancer: str, instance_ids: Set[str],
    ) -> None:
        current = (await self.get_load_balancer(load_balancer)).instance_ids
        to_register = sorted(set(instance_ids) - current)
        to_deregister = sorted(current - set(instance_ids))

        try:
            async with self._elb() as elb:
                if to_register:
                    await elb.register_instances_with_load_balancer(
                        LoadBalancerName=load_balancer,
                        Instances=[{"InstanceId": iid} for iid in to_register],
                    )
                if to_deregister:
                    await elb.deregister_instances_from_load_balancer(
                        LoadBalancerName=load_balancer,
                        Instances=[{"InstanceId": iid} for iid in to_deregister],
                    )
        except _AWS_ERRORS as e:
            raise _mutation_error(e) from e

        log.info(
            "Load balancer {lb}: registered {reg}, deregistered {dereg}",
            lb=load_balancer, reg=to_register, dereg=to_deregister,
        )

    async def close(self) -> None:
        return None


# =============================================================================
# Pure helper functions (no AWS API calls)
# =============================================================================


def _error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "")


def _tag(raw: dict[str, Any], key: str) -> str:
    for tag in raw.get("Tags", []):
        if tag.get("Key") == key:
            return tag.get("Value", "")
    return ""


def _parse_instance(raw: dict[str, Any]) -> InstanceInfo:
    """Build an InstanceInfo from a DescribeInstances entry.

    Volume sizes are not part of DescribeInstances; they stay 0 until
    ``get_info`` fills them from DescribeVolumes.
    """
    state = raw.get("State", {}).get("Name", "pending")
    return InstanceInfo(
        instance_id=raw["InstanceId"],
        name=_tag(raw, "Name"),
        instance_type=raw.get("InstanceType", ""),
        state=_STATES.get(state, InstanceState.PENDING),
        image=raw.get("ImageId"),
        block_devices=tuple(
            BlockDeviceMapping(
                device_name=bd["DeviceName"],
                volume_size_gb=0,
                delete_on_termination=bd.get("Ebs", {}).get("DeleteOnTermination", True),
                volume_id=bd.get("Ebs", {}).get("VolumeId"),
            )
            for bd in raw.get("BlockDeviceMappings", [])
        ),
        key_name=raw.get("KeyName"),
        subnet_id=raw.get("SubnetId"),
        security_group_ids=tuple(sg["GroupId"] for sg in raw.get("SecurityGroups", [])),
    )


def _sized(bd: BlockDeviceMapping, volume: dict[str, Any] | None) -> BlockDeviceMapping:
    if volume is None:
        return bd
    return replace(
        bd,
        volume_size_gb=volume.get("Size", bd.volume_size_gb),
        volume_type=volume.get("VolumeType", bd.volume_type),
    )


def _block_device_param(bd: BlockDeviceMapping) -> dict[str, Any]:
    ebs: dict[str, Any] = {"DeleteOnTermination": bd.delete_on_termination}
    if bd.volume_size_gb:
        ebs["VolumeSize"] = bd.volume_size_gb
    if bd.volume_type:
        ebs["VolumeType"] = bd.volume_type
    return {"DeviceName": bd.device_name, "Ebs": ebs}
