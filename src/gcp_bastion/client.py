"""Compute Engine capability interface and its google-cloud-compute binding.

The reconciler only depends on ComputeClient. GoogleComputeClient is the
production implementation; tests use the in-memory double in gcp_mock.

All calls are synchronous. The reconciler dispatches them to an executor.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from google.api_core.exceptions import NotFound
from google.cloud import compute_v1

from .config import DEFAULT_OPERATION_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class ComputeClient(Protocol):
    """Getters, inserters, patchers and deleters per resource kind.

    Getters return None when the resource does not exist. Deleters return
    False when there was nothing to delete. Any other failure raises.
    """

    def get_firewall_rule(self, project: str, name: str) -> compute_v1.Firewall | None: ...

    def insert_firewall_rule(self, project: str, firewall: compute_v1.Firewall) -> None: ...

    def patch_firewall_rule(
        self, project: str, name: str, firewall: compute_v1.Firewall
    ) -> None: ...

    def delete_firewall_rule(self, project: str, name: str) -> bool: ...

    def get_disk(self, project: str, zone: str, name: str) -> compute_v1.Disk | None: ...

    def insert_disk(self, project: str, zone: str, disk: compute_v1.Disk) -> None: ...

    def delete_disk(self, project: str, zone: str, name: str) -> bool: ...

    def get_instance(self, project: str, zone: str, name: str) -> compute_v1.Instance | None: ...

    def insert_instance(self, project: str, zone: str, instance: compute_v1.Instance) -> None: ...

    def delete_instance(self, project: str, zone: str, name: str) -> bool: ...

    def list_zones(self, project: str, region: str) -> list[compute_v1.Zone]: ...


def zone_region(zone: compute_v1.Zone) -> str:
    """Region name of a zone, from its region URL."""
    return zone.region.rsplit("/", 1)[-1] if zone.region else ""


class GoogleComputeClient:
    """ComputeClient backed by the google-cloud-compute SDK.

    Mutating calls block until the returned extended operation completes,
    bounded by operation_timeout_seconds, so that a follow-up get observes
    the result.
    """

    def __init__(
        self,
        *,
        firewalls: Any | None = None,
        disks: Any | None = None,
        instances: Any | None = None,
        zones: Any | None = None,
        operation_timeout_seconds: int = DEFAULT_OPERATION_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize with SDK clients.

        Args:
            firewalls: compute_v1.FirewallsClient, created with default
                credentials when omitted. Same for the other clients.
            operation_timeout_seconds: Wait limit for mutating operations.
        """
        self._firewalls = firewalls or compute_v1.FirewallsClient()
        self._disks = disks or compute_v1.DisksClient()
        self._instances = instances or compute_v1.InstancesClient()
        self._zones = zones or compute_v1.ZonesClient()
        self._operation_timeout = operation_timeout_seconds

    def _wait(self, operation: Any, description: str) -> None:
        result = getattr(operation, "result", None)
        if callable(result):
            result(timeout=self._operation_timeout)
        logger.debug("Operation completed", extra={"operation": description})

    # Firewall rules

    def get_firewall_rule(self, project: str, name: str) -> compute_v1.Firewall | None:
        try:
            return self._firewalls.get(project=project, firewall=name)
        except NotFound:
            return None

    def insert_firewall_rule(self, project: str, firewall: compute_v1.Firewall) -> None:
        operation = self._firewalls.insert(project=project, firewall_resource=firewall)
        self._wait(operation, f"insert firewall {firewall.name}")

    def patch_firewall_rule(self, project: str, name: str, firewall: compute_v1.Firewall) -> None:
        operation = self._firewalls.patch(project=project, firewall=name, firewall_resource=firewall)
        self._wait(operation, f"patch firewall {name}")

    def delete_firewall_rule(self, project: str, name: str) -> bool:
        try:
            operation = self._firewalls.delete(project=project, firewall=name)
        except NotFound:
            return False
        self._wait(operation, f"delete firewall {name}")
        return True

    # Disks

    def get_disk(self, project: str, zone: str, name: str) -> compute_v1.Disk | None:
        try:
            return self._disks.get(project=project, zone=zone, disk=name)
        except NotFound:
            return None

    def insert_disk(self, project: str, zone: str, disk: compute_v1.Disk) -> None:
        operation = self._disks.insert(project=project, zone=zone, disk_resource=disk)
        self._wait(operation, f"insert disk {disk.name}")

    def delete_disk(self, project: str, zone: str, name: str) -> bool:
        try:
            operation = self._disks.delete(project=project, zone=zone, disk=name)
        except NotFound:
            return False
        self._wait(operation, f"delete disk {name}")
        return True

    # Instances

    def get_instance(self, project: str, zone: str, name: str) -> compute_v1.Instance | None:
        try:
            return self._instances.get(project=project, zone=zone, instance=name)
        except NotFound:
            return None

    def insert_instance(self, project: str, zone: str, instance: compute_v1.Instance) -> None:
        operation = self._instances.insert(project=project, zone=zone, instance_resource=instance)
        self._wait(operation, f"insert instance {instance.name}")

    def delete_instance(self, project: str, zone: str, name: str) -> bool:
        try:
            operation = self._instances.delete(project=project, zone=zone, instance=name)
        except NotFound:
            return False
        self._wait(operation, f"delete instance {name}")
        return True

    # Zones

    def list_zones(self, project: str, region: str) -> list[compute_v1.Zone]:
        pager = self._zones.list(request=compute_v1.ListZonesRequest(project=project))
        return [zone for zone in pager if zone_region(zone) == region]
