"""imageroll - Replace cloud instances with freshly imaged ones.

Example:

    from imageroll import AWS, Client

    async with await Client.connect(AWS(region="us-east-1", ...)) as client:
        new_id = await client.replace("web-01", "ami-999")
        await client.swap_load_balancer("lb-1", ["web-01", "web-02"])
"""

from imageroll.api.model import (
    BlockDeviceMapping,
    InstanceInfo,
    InstancePage,
    InstanceState,
    LoadBalancerMembership,
    MatchResult,
)
from imageroll.api.predicate import (
    ExactFilter,
    NameFilter,
    PrefixFilter,
    RegexFilter,
    name_filter,
)
from imageroll.client import Client
from imageroll.config import Settings, resolve_settings
from imageroll.core.exceptions import (
    AmbiguousMatchError,
    BackendMembershipError,
    BackendMutationError,
    BackendQueryError,
    ConfigurationError,
    ImagerollError,
    LoadBalancerNotFoundError,
    MissingCredentialError,
    NoMatchError,
    ResolutionError,
    StateTransitionTimeoutError,
)
from imageroll.observability.logging import LogConfig, setup_logging, teardown_logging
from imageroll.providers import AWS, GCP, ComputeBackend, create_backend
from imageroll.replacement import ReplacementOrchestrator, ReplacementRun, ReplacementState
from imageroll.resolver import InstanceResolver
from imageroll.swap import LoadBalancerSwapOrchestrator

__version__ = "0.1.0"

__all__ = [
    # Facade
    "Client",
    "Settings",
    "resolve_settings",
    # Backends
    "AWS",
    "GCP",
    "ComputeBackend",
    "create_backend",
    # Model
    "BlockDeviceMapping",
    "InstanceInfo",
    "InstancePage",
    "InstanceState",
    "LoadBalancerMembership",
    "MatchResult",
    # Filters
    "NameFilter",
    "RegexFilter",
    "ExactFilter",
    "PrefixFilter",
    "name_filter",
    # Orchestration
    "InstanceResolver",
    "ReplacementOrchestrator",
    "ReplacementRun",
    "ReplacementState",
    "LoadBalancerSwapOrchestrator",
    # Logging
    "LogConfig",
    "setup_logging",
    "teardown_logging",
    # Errors
    "ImagerollError",
    "ConfigurationError",
    "MissingCredentialError",
    "ResolutionError",
    "NoMatchError",
    "AmbiguousMatchError",
    "BackendQueryError",
    "BackendMutationError",
    "StateTransitionTimeoutError",
    "LoadBalancerNotFoundError",
    "BackendMembershipError",
]
