"""Idempotent get-or-create for the bastion's Compute resources.

Each ensure step fetches by name, creates when absent, then fetches again
rather than trusting the create call. A resource that is still missing after
a successful create is reported as ResourceCreateError and picked up by the
next pass. The remove steps mirror this for teardown.

Every Compute call is a separate awaitable with its own timeout, so a
cancelled pass stops at the next call boundary.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from google.cloud import compute_v1

from .client import ComputeClient
from .config import Config
from .errors import BastionError, ProviderRequestError, ResourceCreateError
from .options import ResolvedOptions
from .resources import (
    disk_define,
    firewall_rules,
    ingress_allow_ssh,
    instance_define,
    source_ranges_patch,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResourceEnsurer:
    """Drives firewall rules, disk and instance of one bastion to existence.

    Holds no per-bastion state; one instance can serve any number of
    concurrent passes for different bastions.
    """

    def __init__(self, client: ComputeClient, config: Config) -> None:
        self._client = client
        self._config = config

    async def call(
        self,
        operation: str,
        resource: str,
        fn: Callable[..., T],
        *args: Any,
        timeout: float | None = None,
    ) -> T:
        """Run a blocking Compute call in the default executor with a timeout.

        Args:
            timeout: Seconds to wait; API_TIMEOUT_SECONDS when omitted.

        Raises:
            ProviderRequestError: On any provider, transport or timeout failure.
                BastionError raised by fn itself propagates unchanged.
        """
        if timeout is None:
            timeout = self._config.api_timeout_seconds
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, lambda: fn(*args)),
                timeout=timeout,
            )
        except TimeoutError as e:
            logger.error(
                "Compute API call timed out",
                extra={"operation": operation, "resource": resource, "timeout_seconds": timeout},
            )
            raise ProviderRequestError(
                operation, resource, TimeoutError(f"timed out after {timeout}s")
            ) from e
        except BastionError:
            raise
        except Exception as e:
            raise ProviderRequestError(operation, resource, e) from e

    async def mutate(
        self,
        operation: str,
        resource: str,
        fn: Callable[..., T],
        *args: Any,
    ) -> T:
        """Like call, for inserts, patches and deletes.

        These block until the Compute operation completes, so they get the
        request timeout plus the operation wait.
        """
        return await self.call(
            operation, resource, fn, *args, timeout=self._config.mutation_timeout_seconds
        )

    # =========================================================================
    # Firewall rules
    # =========================================================================

    async def _get_firewall_rule(self, opt: ResolvedOptions, name: str) -> compute_v1.Firewall | None:
        return await self.call(
            "get firewall rule", name, self._client.get_firewall_rule, opt.project_id, name
        )

    async def ensure_firewall_rules(self, opt: ResolvedOptions) -> None:
        """Create missing rules and heal drift of the SSH ingress allow-list.

        Raises:
            ProviderRequestError: If a Compute call fails.
            ResourceCreateError: If the SSH ingress rule is missing after creation.
        """
        for rule in firewall_rules(opt):
            if await self._get_firewall_rule(opt, rule.name) is not None:
                continue

            logger.info("Creating firewall rule", extra={"firewall": rule.name})
            await self.mutate(
                "create firewall rule",
                rule.name,
                self._client.insert_firewall_rule,
                opt.project_id,
                rule,
            )

        ingress_name = ingress_allow_ssh(opt).name
        current = await self._get_firewall_rule(opt, ingress_name)
        if current is None:
            raise ResourceCreateError(f"could not get firewall rule {ingress_name} after creation")

        current_cidrs = list(current.source_ranges)
        wanted_cidrs = list(opt.cidrs)
        if current_cidrs != wanted_cidrs:
            logger.info(
                "Patching firewall rule source ranges",
                extra={
                    "firewall": ingress_name,
                    "current_cidrs": current_cidrs,
                    "wanted_cidrs": wanted_cidrs,
                },
            )
            await self.mutate(
                "patch firewall rule",
                ingress_name,
                self._client.patch_firewall_rule,
                opt.project_id,
                ingress_name,
                source_ranges_patch(opt),
            )

    # =========================================================================
    # Disk
    # =========================================================================

    async def _get_disk(self, opt: ResolvedOptions) -> compute_v1.Disk | None:
        return await self.call(
            "get disk", opt.disk_name, self._client.get_disk, opt.project_id, opt.zone, opt.disk_name
        )

    async def ensure_disk(self, opt: ResolvedOptions) -> compute_v1.Disk:
        """Get or create the boot disk.

        Raises:
            ProviderRequestError: If a Compute call fails.
            ResourceCreateError: If the disk is missing after creation.
        """
        disk = await self._get_disk(opt)
        if disk is not None:
            return disk

        logger.info("Creating bastion disk", extra={"disk": opt.disk_name, "zone": opt.zone})
        await self.mutate(
            "create disk",
            opt.disk_name,
            self._client.insert_disk,
            opt.project_id,
            opt.zone,
            disk_define(opt, self._config.disk_size_gb, self._config.disk_image),
        )

        disk = await self._get_disk(opt)
        if disk is None:
            raise ResourceCreateError(f"disk {opt.disk_name} not found after creation")
        return disk

    # =========================================================================
    # Instance
    # =========================================================================

    async def _get_instance(self, opt: ResolvedOptions) -> compute_v1.Instance | None:
        return await self.call(
            "get instance",
            opt.bastion_instance_name,
            self._client.get_instance,
            opt.project_id,
            opt.zone,
            opt.bastion_instance_name,
        )

    async def ensure_instance(self, opt: ResolvedOptions, user_data: str) -> compute_v1.Instance:
        """Get or create the bastion instance.

        Raises:
            ProviderRequestError: If a Compute call fails.
            ResourceCreateError: If the instance is missing after creation.
        """
        instance = await self._get_instance(opt)
        if instance is not None:
            return instance

        logger.info(
            "Creating bastion instance",
            extra={"instance": opt.bastion_instance_name, "zone": opt.zone},
        )
        await self.mutate(
            "create instance",
            opt.bastion_instance_name,
            self._client.insert_instance,
            opt.project_id,
            opt.zone,
            instance_define(
                opt,
                user_data,
                machine_type=self._config.machine_type,
                disk_size_gb=self._config.disk_size_gb,
            ),
        )

        instance = await self._get_instance(opt)
        if instance is None:
            raise ResourceCreateError(
                f"instance {opt.bastion_instance_name} not found after creation"
            )
        return instance

    # =========================================================================
    # Teardown
    # =========================================================================

    async def remove_instance(self, opt: ResolvedOptions) -> bool:
        deleted = await self.mutate(
            "delete instance",
            opt.bastion_instance_name,
            self._client.delete_instance,
            opt.project_id,
            opt.zone,
            opt.bastion_instance_name,
        )
        self._log_removal("instance", opt.bastion_instance_name, deleted)
        return deleted

    async def remove_disk(self, opt: ResolvedOptions) -> bool:
        deleted = await self.mutate(
            "delete disk",
            opt.disk_name,
            self._client.delete_disk,
            opt.project_id,
            opt.zone,
            opt.disk_name,
        )
        self._log_removal("disk", opt.disk_name, deleted)
        return deleted

    async def remove_firewall_rules(self, opt: ResolvedOptions) -> int:
        removed = 0
        for name in opt.firewall_names:
            deleted = await self.mutate(
                "delete firewall rule",
                name,
                self._client.delete_firewall_rule,
                opt.project_id,
                name,
            )
            self._log_removal("firewall rule", name, deleted)
            removed += int(deleted)
        return removed

    def _log_removal(self, kind: str, name: str, deleted: bool) -> None:
        if deleted:
            logger.info(f"Deleted bastion {kind}", extra={"resource": name})
        else:
            logger.debug(f"Bastion {kind} already gone", extra={"resource": name})
