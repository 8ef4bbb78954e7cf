"""Derive per-pass operational options from intent and cluster context.

ResolvedOptions is recomputed on every reconciliation and never persisted.
Given the same intent, cluster and provider zone listing it is always the
same value.
"""

from __future__ import annotations

import hashlib
import ipaddress
import logging
from dataclasses import dataclass, replace

from .client import ComputeClient
from .errors import InvalidIntentError, ProviderQueryError
from .models import BastionIntent, ClusterContext

logger = logging.getLogger(__name__)

# GCE resource names are limited to 63 characters. The longest derived name
# is "{base}-egress-worker" where base is "{static}-bastion-{hash5}".
MAX_LENGTH_FOR_BASE_NAME = 33
BASE_NAME_HASH_LENGTH = 5

ZONE_STATUS_UP = "UP"


@dataclass(frozen=True)
class ResolvedOptions:
    """Concrete configuration for one reconciliation pass."""

    project_id: str
    region: str
    zone: str
    network: str
    subnetwork: str
    cidrs: tuple[str, ...]
    workers_cidr: str
    bastion_instance_name: str
    disk_name: str
    firewall_ingress_name: str
    firewall_egress_deny_name: str
    firewall_egress_allow_name: str

    @property
    def firewall_names(self) -> tuple[str, str, str]:
        return (
            self.firewall_ingress_name,
            self.firewall_egress_deny_name,
            self.firewall_egress_allow_name,
        )

    def with_zone(self, zone: str) -> ResolvedOptions:
        return replace(self, zone=zone)


def generate_base_resource_name(cluster_name: str, bastion_name: str) -> str:
    """Build the shared prefix for all resources of one bastion.

    The readable part is truncated to fit GCE name limits; the hash suffix is
    taken from the untruncated name so long names stay unique.
    """
    if not cluster_name:
        raise InvalidIntentError("cluster name must not be empty")
    if not bastion_name:
        raise InvalidIntentError("bastion name must not be empty")

    static_name = f"{cluster_name}-{bastion_name}"
    digest = hashlib.sha256(static_name.encode("utf-8")).hexdigest()
    return f"{static_name[:MAX_LENGTH_FOR_BASE_NAME]}-bastion-{digest[:BASE_NAME_HASH_LENGTH]}"


def firewall_ingress_allow_ssh_name(base_name: str) -> str:
    return f"{base_name}-allow-ssh"


def firewall_egress_deny_all_name(base_name: str) -> str:
    return f"{base_name}-deny-all"


def firewall_egress_allow_only_name(base_name: str) -> str:
    return f"{base_name}-egress-worker"


def disk_resource_name(base_name: str) -> str:
    return f"{base_name}-disk"


def normalize_cidrs(cidrs: list[str]) -> tuple[str, ...]:
    """Validate and normalise the ingress allow-list, keeping declared order.

    IPv6 blocks are accepted but skipped; GCE firewall rules for the bastion
    are IPv4 only.

    Raises:
        InvalidIntentError: On a malformed CIDR or when no IPv4 block remains.
    """
    normalized: list[str] = []
    for cidr in cidrs:
        try:
            network = ipaddress.ip_network(cidr.strip(), strict=False)
        except ValueError as e:
            raise InvalidIntentError(f"invalid ingress CIDR {cidr!r}: {e}") from e

        if network.version == 4:
            normalized.append(str(network))
        else:
            logger.info("Skipping IPv6 ingress CIDR", extra={"cidr": cidr})

    if not normalized:
        raise InvalidIntentError("at least one IPv4 CIDR is required in the bastion ingress")
    return tuple(normalized)


def determine_options(
    intent: BastionIntent, cluster: ClusterContext, project_id: str
) -> ResolvedOptions:
    """Derive options without talking to the provider.

    The zone is the intent's hint, or empty when the provider has to choose.

    Raises:
        InvalidIntentError: If CIDRs are malformed or required fields are absent.
    """
    missing = [
        label
        for label, value in (
            ("project id", project_id),
            ("cluster name", cluster.name),
            ("cluster region", cluster.region),
            ("cluster workers CIDR", cluster.workers_cidr),
        )
        if not value
    ]
    if missing:
        raise InvalidIntentError(f"missing required fields: {', '.join(missing)}")

    region = intent.region or cluster.region
    if intent.zone and not intent.zone.startswith(f"{region}-"):
        raise InvalidIntentError(f"zone {intent.zone} is not in region {region}")

    cidrs = normalize_cidrs(list(intent.ingress))

    try:
        workers_cidr = str(ipaddress.ip_network(cluster.workers_cidr, strict=False))
    except ValueError as e:
        raise InvalidIntentError(f"invalid workers CIDR {cluster.workers_cidr!r}: {e}") from e

    base_name = generate_base_resource_name(cluster.name, intent.name)

    return ResolvedOptions(
        project_id=project_id,
        region=region,
        zone=intent.zone or "",
        network=f"projects/{project_id}/global/networks/{cluster.vpc_name}",
        subnetwork=f"regions/{region}/subnetworks/{cluster.nodes_subnetwork_name}",
        cidrs=cidrs,
        workers_cidr=workers_cidr,
        bastion_instance_name=base_name,
        disk_name=disk_resource_name(base_name),
        firewall_ingress_name=firewall_ingress_allow_ssh_name(base_name),
        firewall_egress_deny_name=firewall_egress_deny_all_name(base_name),
        firewall_egress_allow_name=firewall_egress_allow_only_name(base_name),
    )


def get_default_zone(client: ComputeClient, project_id: str, region: str) -> str:
    """Pick a usable zone of the region.

    The choice is the lexicographically first zone reporting UP, so the same
    listing always yields the same zone.

    Raises:
        ProviderQueryError: If the listing fails or no zone is usable.
    """
    try:
        zones = client.list_zones(project_id, region)
    except Exception as e:
        raise ProviderQueryError(f"failed to list zones in region {region}: {e}") from e

    candidates = sorted(zone.name for zone in zones if zone.name and zone.status == ZONE_STATUS_UP)
    if not candidates:
        raise ProviderQueryError(f"no available zones found in region {region}")

    logger.info(
        "Selected default zone",
        extra={"region": region, "zone": candidates[0], "candidates": len(candidates)},
    )
    return candidates[0]


def resolve_options(
    intent: BastionIntent,
    cluster: ClusterContext,
    project_id: str,
    client: ComputeClient,
) -> ResolvedOptions:
    """Resolve options, querying the provider for a zone only when needed."""
    opt = determine_options(intent, cluster, project_id)
    if opt.zone:
        return opt
    return opt.with_zone(get_default_zone(client, project_id, opt.region))
