"""Custom exception hierarchy for imageroll.

All imageroll-specific exceptions inherit from ImagerollError, enabling
callers to catch every failure with a single except clause. Each error
carries the step that failed and the identifier it was acting on, attached
by the orchestrators as the error propagates.
"""

from __future__ import annotations

from collections.abc import Iterable


class ImagerollError(Exception):
    """Base exception for all imageroll errors."""

    def __init__(
        self,
        message: str,
        *,
        step: str | None = None,
        identifier: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.step = step
        self.identifier = identifier

    def with_context(self, step: str, identifier: str) -> ImagerollError:
        """Attach operation context unless an inner step already did."""
        if self.step is None:
            self.step = step
        if self.identifier is None:
            self.identifier = identifier
        return self

    def __str__(self) -> str:
        match (self.step, self.identifier):
            case (None, None):
                return self.message
            case (step, None):
                return f"{step}: {self.message}"
            case (None, identifier):
                return f"[{identifier}] {self.message}"
            case (step, identifier):
                return f"{step} [{identifier}]: {self.message}"


class ConfigurationError(ImagerollError):
    """Raised for invalid configuration or missing required settings."""


class MissingCredentialError(ConfigurationError):
    """Raised at backend construction when credential fields are empty."""

    def __init__(self, provider: str, fields: Iterable[str]) -> None:
        self.provider = provider
        self.fields = tuple(fields)
        super().__init__(
            f"missing {provider} credentials: {', '.join(self.fields)}",
            step="construct",
        )


class ResolutionError(ImagerollError):
    """Raised when an identifier does not resolve to exactly one instance."""


class NoMatchError(ResolutionError):
    """No instance name matches the identifier."""

    def __init__(self, identifier: str) -> None:
        super().__init__(
            "no instance names match the provided identifier",
            identifier=identifier,
        )


class AmbiguousMatchError(ResolutionError):
    """More than one instance name matches the identifier."""

    def __init__(self, identifier: str, matches: Iterable[str]) -> None:
        self.matches = tuple(matches)
        super().__init__(
            f"multiple instance names match the provided identifier: {', '.join(self.matches)}",
            identifier=identifier,
        )


class BackendQueryError(ImagerollError):
    """Raised when a read against the compute backend fails."""


class BackendMutationError(ImagerollError):
    """Raised when a stop, create or delete call fails."""


class StateTransitionTimeoutError(ImagerollError):
    """Raised when an instance does not reach a target state in time."""

    def __init__(
        self,
        instance_id: str,
        target: str,
        *,
        last_state: str | None = None,
        attempts: int | None = None,
        reason: str | None = None,
    ) -> None:
        self.instance_id = instance_id
        self.target = target
        self.last_state = last_state
        self.attempts = attempts
        budget = f" after {attempts} attempts" if attempts is not None else ""
        reason = reason or f"last observed: {last_state or 'unknown'}"
        super().__init__(f"instance {instance_id} did not reach {target}{budget} ({reason})")


class LoadBalancerNotFoundError(ImagerollError):
    """Raised when a load balancer identifier does not resolve."""

    def __init__(self, load_balancer: str) -> None:
        self.load_balancer = load_balancer
        super().__init__(f"load balancer {load_balancer} not found", identifier=load_balancer)


class BackendMembershipError(ImagerollError):
    """Raised when a target member cannot be validated as a live instance."""
