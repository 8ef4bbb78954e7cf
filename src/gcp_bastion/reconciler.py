"""Bastion reconciliation and teardown.

A reconcile pass walks these stages, recomputed from provider truth every
time (nothing is persisted between passes):

    OPTIONS_UNRESOLVED -> ZONE_RESOLVED -> FIREWALL_ENSURED -> DISK_ENSURED
        -> INSTANCE_ENSURED -> ENDPOINTS_PENDING | ENDPOINTS_READY

The zone is written to status as soon as it is known so observers can find
the bastion before it is reachable. The public endpoint is written only
once both endpoints are ready. ENDPOINTS_PENDING yields RequeueAfter; any
exception yields Failed.

Teardown removes the instance first, then the disk it boots from, then the
firewall rules, ignoring anything already gone.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from .client import ComputeClient
from .config import Config
from .endpoints import BastionEndpoints, get_instance_endpoints
from .ensure import ResourceEnsurer
from .errors import BastionError, EndpointError, InvalidIntentError, ProviderRequestError
from .models import BastionIntent, BastionStatus, ClusterContext, Ingress, ProviderStatus
from .options import ResolvedOptions, resolve_options
from .status import StatusStore, try_update_status
from .verdict import Failed, RequeueAfter, Success, Verdict

logger = logging.getLogger(__name__)


class ReconcileStage(str, Enum):
    """Furthest point a reconcile pass reached."""

    OPTIONS_UNRESOLVED = "OptionsUnresolved"
    ZONE_RESOLVED = "ZoneResolved"
    FIREWALL_ENSURED = "FirewallEnsured"
    DISK_ENSURED = "DiskEnsured"
    INSTANCE_ENSURED = "InstanceEnsured"
    ENDPOINTS_PENDING = "EndpointsPending"
    ENDPOINTS_READY = "EndpointsReady"


@dataclass
class ReconcilePass:
    """Bookkeeping for one pass, used for logging only."""

    bastion: str
    stage: ReconcileStage = ReconcileStage.OPTIONS_UNRESOLVED
    zone: str = ""
    endpoints: BastionEndpoints | None = None
    started: float = field(default_factory=time.monotonic)

    @property
    def duration_seconds(self) -> float:
        return time.monotonic() - self.started


def status_key(intent: BastionIntent) -> str:
    """Key of the bastion's status in the status store."""
    return intent.name


class BastionActuator:
    """Reconciles and tears down bastions against Compute Engine.

    Stateless between calls: distinct bastions may be reconciled
    concurrently through the same actuator.
    """

    def __init__(self, config: Config, client: ComputeClient, status_store: StatusStore) -> None:
        """Initialize actuator.

        Args:
            config: Validated operator configuration.
            client: Compute capability used for all provider calls.
            status_store: Versioned store receiving zone and endpoint updates.
        """
        self._config = config
        self._client = client
        self._status_store = status_store
        self._ensurer = ResourceEnsurer(client, config)

    @property
    def config(self) -> Config:
        return self._config

    async def _resolve_options(
        self, intent: BastionIntent, cluster: ClusterContext
    ) -> ResolvedOptions:
        # Zone lookup is a provider round-trip, so it runs like any other call
        return await self._ensurer.call(
            "resolve options",
            intent.name,
            resolve_options,
            intent,
            cluster,
            self._config.project_id,
            self._client,
        )

    async def reconcile(self, intent: BastionIntent, cluster: ClusterContext) -> Verdict:
        """Drive the bastion one step closer to ready.

        Returns:
            Success once the public endpoint is published, RequeueAfter while
            the instance is still acquiring addresses, Failed on any error.
        """
        current = ReconcilePass(bastion=intent.name)
        key = status_key(intent)

        try:
            opt = await self._resolve_options(intent, cluster)
            current.zone = opt.zone

            await try_update_status(
                self._status_store,
                key,
                lambda status: _set_zone(status, opt.zone),
                self._config.status_backoff,
            )
            current.stage = ReconcileStage.ZONE_RESOLVED

            await self._ensurer.ensure_firewall_rules(opt)
            current.stage = ReconcileStage.FIREWALL_ENSURED

            await self._ensurer.ensure_disk(opt)
            current.stage = ReconcileStage.DISK_ENSURED

            instance = await self._ensurer.ensure_instance(opt, intent.user_data)
            current.stage = ReconcileStage.INSTANCE_ENSURED

            endpoints = get_instance_endpoints(instance)
            current.endpoints = endpoints

            if not endpoints.ready:
                current.stage = ReconcileStage.ENDPOINTS_PENDING
                verdict: Verdict = RequeueAfter(
                    delay_seconds=self._config.requeue_after_seconds,
                    reason="bastion instance has no public/private endpoints yet",
                )
            else:
                public = endpoints.public
                await try_update_status(
                    self._status_store,
                    key,
                    lambda status: _set_ingress(status, public),
                    self._config.status_backoff,
                )
                current.stage = ReconcileStage.ENDPOINTS_READY
                verdict = Success()

        except InvalidIntentError as e:
            logger.error("Invalid bastion intent", extra={"bastion": intent.name, "error": str(e)})
            verdict = Failed(e)
        except EndpointError as e:
            logger.error(
                "Bastion instance is unusable",
                extra={"bastion": intent.name, "error": str(e), "error_type": type(e).__name__},
            )
            verdict = Failed(e)
        except ProviderRequestError as e:
            logger.error(
                "Compute API error",
                extra={"bastion": intent.name, "operation": e.operation, "error": str(e.cause)},
            )
            verdict = Failed(e)
        except BastionError as e:
            logger.error(
                "Bastion reconciliation error",
                extra={"bastion": intent.name, "error": str(e), "error_type": type(e).__name__},
            )
            verdict = Failed(e)
        except Exception as e:
            logger.exception("Unexpected error during bastion reconciliation")
            verdict = Failed(e)

        self._log_result(current, verdict)
        return verdict

    async def delete(self, intent: BastionIntent, cluster: ClusterContext) -> None:
        """Remove every resource of the bastion. Safe to repeat.

        Without a zone hint the zone is picked again from the region's zone
        list, not read from status. If that list changed since creation, the
        instance and disk are looked up in the wrong zone and left behind;
        the chosen zone is logged so such leftovers can be traced.

        Raises:
            InvalidIntentError: If the intent or cluster context is malformed.
            ProviderQueryError: If no zone can be determined.
            ProviderRequestError: If a delete call fails for a reason other
                than the resource being absent.
        """
        opt = await self._resolve_options(intent, cluster)
        logger.info(
            "Deleting bastion",
            extra={
                "bastion": intent.name,
                "instance": opt.bastion_instance_name,
                "zone": opt.zone,
                "zone_source": "intent" if intent.zone else "region default",
            },
        )

        await self._ensurer.remove_instance(opt)
        await self._ensurer.remove_disk(opt)
        await self._ensurer.remove_firewall_rules(opt)

        logger.info("Bastion deleted", extra={"bastion": intent.name})

    def _log_result(self, current: ReconcilePass, verdict: Verdict) -> None:
        extra: dict[str, object] = {
            "bastion": current.bastion,
            "stage": current.stage.value,
            "zone": current.zone,
            "duration_seconds": round(current.duration_seconds, 3),
        }

        match verdict:
            case Success():
                if current.endpoints is not None and current.endpoints.public is not None:
                    extra["public_ip"] = current.endpoints.public.ip
                logger.info("Bastion ready", extra=extra)
            case RequeueAfter(delay_seconds=delay, reason=reason):
                extra["requeue_after_seconds"] = delay
                extra["reason"] = reason
                logger.info("Bastion not ready, requeueing", extra=extra)
            case Failed(error=error):
                extra["error"] = str(error)
                logger.warning("Bastion reconciliation failed", extra=extra)


def _set_zone(status: BastionStatus, zone: str) -> None:
    status.provider_status = ProviderStatus(zone=zone)


def _set_ingress(status: BastionStatus, public: Ingress | None) -> None:
    status.ingress = public
    status.observed_at = datetime.now(UTC)
