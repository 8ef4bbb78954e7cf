"""Compute resource descriptors for a bastion.

Pure builders: no I/O, a fresh object on every call. The ensurer compares
them against provider state by name and, for the SSH ingress rule, by
source ranges.
"""

from __future__ import annotations

from google.cloud import compute_v1

from .options import ResolvedOptions

SSH_PORT = 22

INGRESS_ALLOW_SSH_PRIORITY = 50
EGRESS_ALLOW_ONLY_PRIORITY = 60
EGRESS_DENY_ALL_PRIORITY = 1000

DISK_DESCRIPTION = "Bastion disk"
INSTANCE_DESCRIPTION = "Bastion Instance"

METADATA_STARTUP_SCRIPT = "startup-script"
METADATA_BLOCK_PROJECT_SSH_KEYS = "block-project-ssh-keys"


def ingress_allow_ssh(opt: ResolvedOptions) -> compute_v1.Firewall:
    """Allow SSH into the bastion from the declared CIDRs only."""
    return compute_v1.Firewall(
        name=opt.firewall_ingress_name,
        description="SSH access for Bastion",
        network=opt.network,
        direction="INGRESS",
        priority=INGRESS_ALLOW_SSH_PRIORITY,
        allowed=[compute_v1.Allowed(I_p_protocol="tcp", ports=[str(SSH_PORT)])],
        source_ranges=list(opt.cidrs),
        target_tags=[opt.bastion_instance_name],
    )


def egress_deny_all(opt: ResolvedOptions) -> compute_v1.Firewall:
    """Deny all outbound traffic from the bastion by default."""
    return compute_v1.Firewall(
        name=opt.firewall_egress_deny_name,
        description="Bastion egress deny",
        network=opt.network,
        direction="EGRESS",
        priority=EGRESS_DENY_ALL_PRIORITY,
        denied=[compute_v1.Denied(I_p_protocol="all")],
        destination_ranges=["0.0.0.0/0"],
        target_tags=[opt.bastion_instance_name],
    )


def egress_allow_only(opt: ResolvedOptions) -> compute_v1.Firewall:
    """Allow SSH from the bastion to the worker nodes, above the deny-all rule."""
    return compute_v1.Firewall(
        name=opt.firewall_egress_allow_name,
        description="Allow Bastion egress to Shoot workers",
        network=opt.network,
        direction="EGRESS",
        priority=EGRESS_ALLOW_ONLY_PRIORITY,
        allowed=[compute_v1.Allowed(I_p_protocol="tcp", ports=[str(SSH_PORT)])],
        destination_ranges=[opt.workers_cidr],
        target_tags=[opt.bastion_instance_name],
    )


def firewall_rules(opt: ResolvedOptions) -> list[compute_v1.Firewall]:
    """All rules of a bastion, in creation order."""
    return [ingress_allow_ssh(opt), egress_deny_all(opt), egress_allow_only(opt)]


def source_ranges_patch(opt: ResolvedOptions) -> compute_v1.Firewall:
    """Partial firewall carrying only the desired source ranges."""
    return compute_v1.Firewall(source_ranges=list(opt.cidrs))


def disk_define(opt: ResolvedOptions, size_gb: int, source_image: str) -> compute_v1.Disk:
    return compute_v1.Disk(
        name=opt.disk_name,
        description=DISK_DESCRIPTION,
        zone=opt.zone,
        size_gb=size_gb,
        source_image=source_image,
    )


def disk_source(opt: ResolvedOptions) -> str:
    return f"projects/{opt.project_id}/zones/{opt.zone}/disks/{opt.disk_name}"


def attached_disks_define(opt: ResolvedOptions, size_gb: int) -> list[compute_v1.AttachedDisk]:
    return [
        compute_v1.AttachedDisk(
            auto_delete=True,
            boot=True,
            disk_size_gb=size_gb,
            source=disk_source(opt),
            mode="READ_WRITE",
        )
    ]


def network_interfaces_define(opt: ResolvedOptions) -> list[compute_v1.NetworkInterface]:
    return [
        compute_v1.NetworkInterface(
            network=opt.network,
            subnetwork=opt.subnetwork,
            access_configs=[compute_v1.AccessConfig(name="External NAT", type_="ONE_TO_ONE_NAT")],
        )
    ]


def metadata_define(user_data: str) -> compute_v1.Metadata:
    # Only the keys injected by the bastion's own user data may log in
    return compute_v1.Metadata(
        items=[
            compute_v1.Items(key=METADATA_STARTUP_SCRIPT, value=user_data),
            compute_v1.Items(key=METADATA_BLOCK_PROJECT_SSH_KEYS, value="TRUE"),
        ]
    )


def machine_type_define(opt: ResolvedOptions, machine_type: str) -> str:
    return f"zones/{opt.zone}/machineTypes/{machine_type}"


def instance_define(
    opt: ResolvedOptions,
    user_data: str,
    *,
    machine_type: str,
    disk_size_gb: int,
) -> compute_v1.Instance:
    """Instance booting from the ensured disk, tagged for its firewall rules."""
    return compute_v1.Instance(
        name=opt.bastion_instance_name,
        description=INSTANCE_DESCRIPTION,
        zone=opt.zone,
        machine_type=machine_type_define(opt, machine_type),
        deletion_protection=False,
        disks=attached_disks_define(opt, disk_size_gb),
        network_interfaces=network_interfaces_define(opt),
        tags=compute_v1.Tags(items=[opt.bastion_instance_name]),
        metadata=metadata_define(user_data),
    )
