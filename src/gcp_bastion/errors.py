"""Error taxonomy for bastion reconciliation.

Everything raised by the core derives from BastionError so the
orchestrator can turn it into a Failed verdict. "Not ready yet" is a
verdict, not an exception.
"""

from __future__ import annotations


class BastionError(Exception):
    """Base class for bastion reconciliation errors."""

    pass


class InvalidIntentError(BastionError):
    """Raised when the declared intent or cluster context is malformed."""

    pass


class ProviderQueryError(BastionError):
    """Raised when a lookup against the provider fails or finds nothing usable."""

    pass


class ProviderRequestError(BastionError):
    """Raised when a Compute API call fails.

    Wraps transport and provider-reported errors alike with the operation
    and resource it was issued for.
    """

    def __init__(self, operation: str, resource: str, cause: Exception) -> None:
        self.operation = operation
        self.resource = resource
        self.cause = cause
        super().__init__(f"failed to {operation} {resource}: {cause}")


class ResourceCreateError(BastionError):
    """Raised when a resource is still absent after a successful create call."""

    pass


class EndpointError(BastionError):
    """Base class for structural problems with a bastion instance."""

    pass


class InstanceNotRunningError(EndpointError):
    """Raised when the bastion instance is not in RUNNING state."""

    def __init__(self, name: str, status: str) -> None:
        self.name = name
        self.status = status
        super().__init__(f"instance {name} not running, status: {status or 'unknown'}")


class NoNetworkInterfaceError(EndpointError):
    """Raised when the bastion instance has no network interface."""

    pass


class NoAccessConfigError(EndpointError):
    """Raised when the first network interface has no external access config."""

    pass


class StatusUpdateError(BastionError):
    """Raised when the status transaction gives up."""

    pass
