"""AWS backend configuration.

Immutable configuration dataclass for the AWS backend.
"""

from __future__ import annotations

import typing
from dataclasses import dataclass
from typing import ClassVar

from imageroll.api.provider import BackendConfig
from imageroll.providers.wait import WaitPolicy

if typing.TYPE_CHECKING:
    from imageroll.providers.aws.provider import AWSBackend


@dataclass(frozen=True, slots=True)
class AWS(BackendConfig):
    """AWS backend configuration.

    Defines how to reach EC2 and Elastic Load Balancing. Credential fields
    are required; everything else has a default.

    Example:
        >>> from imageroll.providers.aws import AWS
        >>> config = AWS(access_key_id="AKIA...", secret_access_key="...", region="us-west-2")

    Args:
        access_key_id: IAM access key ID.
        secret_access_key: IAM secret access key.
        region: AWS region for EC2 and ELB calls.
        session_token: Optional STS session token.
        listed_states: Instance states considered when resolving identifiers.
        page_size: Instances requested per DescribeInstances page.
        wait_attempts: State polls before giving up on a transition.
        wait_interval: Seconds between state polls.
    """

    CREDENTIAL_FIELDS: ClassVar[tuple[str, ...]] = (
        "access_key_id",
        "secret_access_key",
        "region",
    )
    ENV: ClassVar[dict[str, str]] = {
        "access_key_id": "AWS_ACCESS_KEY_ID",
        "secret_access_key": "AWS_SECRET_ACCESS_KEY",
        "region": "AWS_DEFAULT_REGION",
        "session_token": "AWS_SESSION_TOKEN",
    }

    access_key_id: str = ""
    secret_access_key: str = ""
    region: str = ""
    session_token: str | None = None
    listed_states: tuple[str, ...] = ("pending", "running")
    page_size: int = 100
    wait_attempts: int = 60
    wait_interval: float = 5.0

    def __post_init__(self) -> None:
        WaitPolicy(attempts=self.wait_attempts, interval=self.wait_interval)

    @property
    def type(self) -> str: return "aws"

    @property
    def wait_policy(self) -> WaitPolicy:
        return WaitPolicy(attempts=self.wait_attempts, interval=self.wait_interval)

    def missing_credentials(self) -> tuple[str, ...]:
        return tuple(name for name in self.CREDENTIAL_FIELDS if not getattr(self, name))

    async def create_backend(self) -> AWSBackend:
        from imageroll.providers.aws.provider import AWSBackend
        return await AWSBackend.create(self)
