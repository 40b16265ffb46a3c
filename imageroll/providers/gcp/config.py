"""GCP backend configuration.

Immutable configuration dataclass for the GCP Compute Engine backend.
"""

from __future__ import annotations

import typing
from dataclasses import dataclass
from typing import ClassVar

from imageroll.api.provider import BackendConfig
from imageroll.providers.wait import WaitPolicy

if typing.TYPE_CHECKING:
    from imageroll.providers.gcp.provider import GCPBackend


@dataclass(frozen=True, slots=True)
class GCP(BackendConfig):
    """GCP Compute Engine backend configuration.

    Instances live in a single zone; network load balancers are target
    pools in that zone's region.

    Example:
        >>> from imageroll.providers.gcp import GCP
        >>> config = GCP(project="my-project", zone="us-central1-a",
        ...              credentials_file="/secrets/sa.json")

    Args:
        project: GCP project ID.
        zone: Compute Engine zone holding the instances.
        credentials_file: Path to a service account key file.
        listed_states: Instance states considered when resolving identifiers.
        page_size: Instances requested per list page.
        wait_attempts: State polls before giving up on a transition.
        wait_interval: Seconds between state polls.
        thread_pool_size: Worker threads for the blocking GCP clients.
    """

    CREDENTIAL_FIELDS: ClassVar[tuple[str, ...]] = ("project", "zone", "credentials_file")
    ENV: ClassVar[dict[str, str]] = {
        "project": "GOOGLE_CLOUD_PROJECT",
        "credentials_file": "GOOGLE_APPLICATION_CREDENTIALS",
    }

    project: str = ""
    zone: str = ""
    credentials_file: str = ""
    listed_states: tuple[str, ...] = ("pending", "running")
    page_size: int = 100
    wait_attempts: int = 60
    wait_interval: float = 5.0
    thread_pool_size: int = 4

    def __post_init__(self) -> None:
        WaitPolicy(attempts=self.wait_attempts, interval=self.wait_interval)

    @property
    def type(self) -> str: return "gcp"

    @property
    def region(self) -> str:
        """Region of the configured zone ('us-central1-a' -> 'us-central1')."""
        return self.zone.rsplit("-", 1)[0]

    @property
    def wait_policy(self) -> WaitPolicy:
        return WaitPolicy(attempts=self.wait_attempts, interval=self.wait_interval)

    def missing_credentials(self) -> tuple[str, ...]:
        return tuple(name for name in self.CREDENTIAL_FIELDS if not getattr(self, name))

    async def create_backend(self) -> GCPBackend:
        from imageroll.providers.gcp.provider import GCPBackend
        return await GCPBackend.create(self)
