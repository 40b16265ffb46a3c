"""User-facing data model, name filters and backend configuration protocol."""

from .model import BlockDeviceMapping as BlockDeviceMapping
from .model import InstanceInfo as InstanceInfo
from .model import InstancePage as InstancePage
from .model import InstanceState as InstanceState
from .model import LoadBalancerMembership as LoadBalancerMembership
from .model import MatchResult as MatchResult
from .predicate import (
    ExactFilter,
    FilterKind,
    NameFilter,
    PrefixFilter,
    RegexFilter,
    name_filter,
)
from .provider import BackendConfig

__all__ = [
    "BlockDeviceMapping",
    "InstanceInfo",
    "InstancePage",
    "InstanceState",
    "LoadBalancerMembership",
    "MatchResult",
    "ExactFilter",
    "FilterKind",
    "NameFilter",
    "PrefixFilter",
    "RegexFilter",
    "name_filter",
    "BackendConfig",
]
