"""Backend registry.

Selects the backend implementation for a configuration object. Uses lazy
loading to avoid importing heavy SDK dependencies until needed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from imageroll.core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from .aws.config import AWS
    from .gcp.config import GCP
    from .provider import ComputeBackend

log = logger.bind(component="registry")

type BackendConfig = AWS | GCP


async def create_backend(config: BackendConfig) -> ComputeBackend:
    """Create a ComputeBackend for a configuration object.

    Credentials are validated here, before any SDK client is built.

    Raises:
        MissingCredentialError: If any required credential field is empty.
        ConfigurationError: If no backend handles the configuration type.
    """
    from .aws.config import AWS
    from .gcp.config import GCP

    log.debug("Creating backend for config={config_type}", config_type=type(config).__name__)

    match config:
        case AWS():
            from .aws.provider import AWSBackend
            return await AWSBackend.create(config)
        case GCP():
            from .gcp.provider import GCPBackend
            return await GCPBackend.create(config)
        case _:
            raise ConfigurationError(
                f"No backend registered for {type(config).__name__}. "
                f"Available backends: AWS, GCP"
            )


def backend_types() -> dict[str, type]:
    from .aws.config import AWS
    from .gcp.config import GCP

    return {"aws": AWS, "gcp": GCP}
