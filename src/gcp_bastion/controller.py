"""Bounded-concurrency scheduler for bastion reconciliation.

Runs one worker per bastion. Each worker reconciles, then sleeps for as long
as the verdict asks:

- RequeueAfter: the delay the actuator returned
- Failed: exponential backoff from ERROR_BACKOFF_SECONDS, capped
- Success: RESYNC_INTERVAL_SECONDS, to pick up drift

A semaphore caps how many passes run at once across all bastions, and a
per-bastion lock keeps two passes for the same bastion from overlapping.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import UTC, datetime

from .config import Config
from .errors import StatusUpdateError
from .models import BastionIntent, BastionStatus, ClusterContext, LastError
from .reconciler import BastionActuator, status_key
from .status import StatusStore, StatusStoreError, try_update_status
from .verdict import Failed, RequeueAfter, Success, Verdict

logger = logging.getLogger(__name__)


class BastionController:
    """Schedules reconcile and delete passes for the bastions of one cluster."""

    def __init__(
        self,
        actuator: BastionActuator,
        status_store: StatusStore,
        cluster: ClusterContext,
    ) -> None:
        self._actuator = actuator
        self._status_store = status_store
        self._cluster = cluster
        self._config = actuator.config

        self._semaphore = asyncio.Semaphore(self._config.max_concurrent_reconciles)
        self._key_locks: dict[str, asyncio.Lock] = {}
        self._failures: dict[str, int] = {}
        self._shutdown_event = asyncio.Event()

    @property
    def config(self) -> Config:
        return self._config

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._key_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._key_locks[key] = lock
        return lock

    async def reconcile(self, intent: BastionIntent) -> Verdict:
        """Run one reconcile pass and record its outcome on status."""
        key = status_key(intent)
        async with self._lock_for(key), self._semaphore:
            verdict = await self._actuator.reconcile(intent, self._cluster)
            await self._record_outcome(key, verdict)

        match verdict:
            case Failed():
                self._failures[key] = self._failures.get(key, 0) + 1
            case _:
                self._failures.pop(key, None)

        return verdict

    async def delete(self, intent: BastionIntent) -> None:
        """Tear the bastion down. Errors propagate to the caller."""
        key = status_key(intent)
        async with self._lock_for(key), self._semaphore:
            await self._actuator.delete(intent, self._cluster)
        self._failures.pop(key, None)

    async def reconcile_all(self, intents: Iterable[BastionIntent]) -> dict[str, Verdict]:
        """Run a single pass for every intent, concurrently within the limit."""
        intents = list(intents)
        verdicts = await asyncio.gather(*(self.reconcile(intent) for intent in intents))
        return {intent.name: verdict for intent, verdict in zip(intents, verdicts, strict=True)}

    async def wait_ready(self, intent: BastionIntent, timeout_seconds: float) -> Verdict:
        """Reconcile until Success or Failed, honouring RequeueAfter delays.

        Returns the last verdict, which is RequeueAfter if the timeout ran out.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_seconds

        while True:
            verdict = await self.reconcile(intent)
            match verdict:
                case RequeueAfter(delay_seconds=delay):
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        return verdict
                    await asyncio.sleep(min(delay, remaining))
                case _:
                    return verdict

    def next_delay(self, key: str, verdict: Verdict) -> float:
        """Seconds to wait before the next pass for key."""
        match verdict:
            case RequeueAfter(delay_seconds=delay):
                return delay
            case Failed():
                failures = max(self._failures.get(key, 1), 1)
                backoff = self._config.error_backoff_seconds * (2 ** (failures - 1))
                return float(min(backoff, self._config.max_error_backoff_seconds))
            case _:
                return float(self._config.resync_interval_seconds)

    async def run(self, intents: Iterable[BastionIntent]) -> None:
        """Reconcile every intent until shutdown() is called."""
        intents = list(intents)
        logger.info(
            "Starting bastion controller",
            extra={
                "cluster": self._cluster.name,
                "bastions": [intent.name for intent in intents],
                "max_concurrent_reconciles": self._config.max_concurrent_reconciles,
            },
        )

        await asyncio.gather(*(self._worker(intent) for intent in intents))

        logger.info("Bastion controller shutdown complete", extra={"cluster": self._cluster.name})

    def shutdown(self) -> None:
        """Signal workers to stop after their current pass."""
        logger.info("Shutdown requested", extra={"cluster": self._cluster.name})
        self._shutdown_event.set()

    async def _worker(self, intent: BastionIntent) -> None:
        key = status_key(intent)
        while not self._shutdown_event.is_set():
            verdict = await self.reconcile(intent)
            delay = self.next_delay(key, verdict)
            logger.debug("Next pass scheduled", extra={"bastion": key, "delay_seconds": delay})

            # Wait for next pass or shutdown
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=delay)
            except TimeoutError:
                pass

    async def _record_outcome(self, key: str, verdict: Verdict) -> None:
        match verdict:
            case Failed(error=error):
                last_error: LastError | None = LastError(
                    message=str(error), timestamp=datetime.now(UTC)
                )
            case Success():
                last_error = None
            case _:
                return

        def mutate(status: BastionStatus) -> None:
            status.last_error = last_error

        try:
            await try_update_status(self._status_store, key, mutate, self._config.status_backoff)
        except (StatusUpdateError, StatusStoreError) as e:
            # The verdict still stands; the next pass records it again
            logger.warning(
                "Failed to record reconcile outcome", extra={"bastion": key, "error": str(e)}
            )
