"""Derive reachability endpoints from a bastion instance.

The private endpoint is what the worker-side firewall must admit SSH from;
the public endpoint is where the user connects.
"""

from __future__ import annotations

from dataclasses import dataclass

from google.cloud import compute_v1

from .errors import InstanceNotRunningError, NoAccessConfigError, NoNetworkInterfaceError
from .models import Ingress

INSTANCE_STATUS_RUNNING = "RUNNING"


def ingress_ready(ingress: Ingress | None) -> bool:
    """True if the ingress carries an IP, a hostname, or both."""
    return ingress is not None and ingress.ready


def address_to_ingress(hostname: str | None, ip: str | None) -> Ingress | None:
    """Build an Ingress, or None when neither part is given."""
    if hostname is None and ip is None:
        return None
    return Ingress(hostname=hostname or "", ip=ip or "")


@dataclass(frozen=True)
class BastionEndpoints:
    """Private and public endpoints of a bastion."""

    private: Ingress | None = None
    public: Ingress | None = None

    @property
    def ready(self) -> bool:
        return ingress_ready(self.private) and ingress_ready(self.public)


def get_instance_endpoints(instance: compute_v1.Instance | None) -> BastionEndpoints:
    """Read the endpoints of a running instance.

    A running instance whose addresses are not assigned yet yields endpoints
    that are not ready; that is a normal provisioning state, not an error.

    Raises:
        ValueError: If instance is None.
        InstanceNotRunningError: If the instance is not RUNNING.
        NoNetworkInterfaceError: If the instance has no network interface.
        NoAccessConfigError: If the first interface has no external access config.
    """
    if instance is None:
        raise ValueError("compute instance can't be None")

    if instance.status != INSTANCE_STATUS_RUNNING:
        raise InstanceNotRunningError(instance.name, instance.status)

    if not instance.network_interfaces:
        raise NoNetworkInterfaceError(f"no network interfaces found: {instance.name}")

    interface = instance.network_interfaces[0]
    if not interface.access_configs:
        raise NoAccessConfigError(
            f"no access config found for network interface: {instance.name}"
        )

    # GCE assigns no public DNS name, so the public endpoint is IP only
    return BastionEndpoints(
        private=address_to_ingress(None, interface.network_i_p),
        public=address_to_ingress(None, interface.access_configs[0].nat_i_p),
    )
