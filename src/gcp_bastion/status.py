"""Bastion status persistence with optimistic concurrency.

The status object may be written by other controllers at the same time.
Writers never lock: they read a versioned copy, mutate it, and write it
back conditioned on the version they read. A conflict means "re-read and
re-apply", which try_update_status does with a bounded backoff.
"""

from __future__ import annotations

import asyncio
import logging
import os
import random
import tempfile
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

import yaml
from pydantic import ValidationError

from .config import MAX_STATUS_FILE_SIZE_BYTES, RetryBackoff
from .errors import StatusUpdateError
from .models import BastionStatus

logger = logging.getLogger(__name__)


class StatusConflictError(Exception):
    """Raised when a write is based on a stale version."""

    pass


class StatusStoreError(Exception):
    """Raised when stored status cannot be read or written."""

    pass


class StatusStore(Protocol):
    """Versioned status storage keyed by bastion name."""

    def read(self, key: str) -> tuple[BastionStatus, int]:
        """Return a private copy of the status and its version (0 if never written)."""
        ...

    def write(self, key: str, status: BastionStatus, expected_version: int) -> int:
        """Store status if the current version is expected_version.

        Returns:
            The new version.

        Raises:
            StatusConflictError: If the stored version moved on.
        """
        ...


class InMemoryStatusStore:
    """Thread-safe in-process status store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: dict[str, tuple[BastionStatus, int]] = {}

    def read(self, key: str) -> tuple[BastionStatus, int]:
        with self._lock:
            status, version = self._items.get(key, (BastionStatus(), 0))
            return status.model_copy(deep=True), version

    def write(self, key: str, status: BastionStatus, expected_version: int) -> int:
        with self._lock:
            _, current = self._items.get(key, (None, 0))
            if current != expected_version:
                raise StatusConflictError(
                    f"status of {key} changed: expected version {expected_version}, found {current}"
                )
            self._items[key] = (status.model_copy(deep=True), current + 1)
            return current + 1

    def get(self, key: str) -> BastionStatus | None:
        """Current status for inspection, or None if never written."""
        with self._lock:
            item = self._items.get(key)
            return item[0].model_copy(deep=True) if item else None


class YamlStatusStore:
    """Status store keeping one YAML document per bastion in a directory.

    Document shape::

        resourceVersion: 3
        status:
          providerStatus: {zone: europe-west1-b}
          ingress: {ip: 34.1.2.3}
    """

    def __init__(self, directory: Path) -> None:
        self._directory = directory
        self._lock = threading.Lock()
        directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        return self._directory / f"{key}.status.yaml"

    def _load(self, key: str) -> tuple[BastionStatus, int]:
        path = self.path_for(key)
        if not path.exists():
            return BastionStatus(), 0

        try:
            if path.stat().st_size > MAX_STATUS_FILE_SIZE_BYTES:
                raise StatusStoreError(f"Status file exceeds maximum size: {path}")
            raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise StatusStoreError(f"Failed to read status file {path}: {e}") from e

        if not isinstance(raw, dict):
            raise StatusStoreError(f"Status file must contain a YAML mapping: {path}")

        try:
            status = BastionStatus.model_validate(raw.get("status") or {})
        except ValidationError as e:
            raise StatusStoreError(f"Invalid status in {path}: {e}") from e

        return status, int(raw.get("resourceVersion", 0))

    def read(self, key: str) -> tuple[BastionStatus, int]:
        with self._lock:
            return self._load(key)

    def write(self, key: str, status: BastionStatus, expected_version: int) -> int:
        with self._lock:
            _, current = self._load(key)
            if current != expected_version:
                raise StatusConflictError(
                    f"status of {key} changed: expected version {expected_version}, found {current}"
                )

            new_version = current + 1
            document = {"resourceVersion": new_version, "status": status.to_wire()}
            path = self.path_for(key)

            # Write-then-rename so readers never see a partial document
            fd, tmp_name = tempfile.mkstemp(dir=self._directory, prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    yaml.safe_dump(document, fh, sort_keys=True)
                os.replace(tmp_name, path)
            except OSError as e:
                Path(tmp_name).unlink(missing_ok=True)
                raise StatusStoreError(f"Failed to write status file {path}: {e}") from e

            return new_version


async def try_update_status(
    store: StatusStore,
    key: str,
    mutate: Callable[[BastionStatus], None],
    backoff: RetryBackoff | None = None,
) -> BastionStatus:
    """Apply mutate to the latest status, re-reading on every conflict.

    Args:
        store: Versioned status store.
        key: Bastion name.
        mutate: Changes the status in place. Called once per attempt on a
            fresh copy, so it must not depend on earlier attempts.
        backoff: Retry policy; defaults to 4 attempts starting at 10ms.

    Returns:
        The status as written.

    Raises:
        StatusUpdateError: If every attempt conflicted.
    """
    backoff = backoff or RetryBackoff()
    delays = backoff.delays()
    last_error: StatusConflictError | None = None
    loop = asyncio.get_running_loop()

    for attempt in range(1, backoff.steps + 1):
        # Store I/O may touch the filesystem; keep it off the event loop
        status, version = await loop.run_in_executor(None, store.read, key)
        mutate(status)
        try:
            await loop.run_in_executor(None, store.write, key, status, version)
            return status
        except StatusConflictError as e:
            last_error = e
            if attempt < backoff.steps:
                delay = delays[attempt - 1]
                wait_time = delay + random.uniform(0, delay * backoff.jitter)
                logger.debug(
                    "Status update conflict, retrying",
                    extra={"bastion": key, "attempt": attempt, "wait_seconds": wait_time},
                )
                await asyncio.sleep(wait_time)

    raise StatusUpdateError(
        f"failed to update status of {key} after {backoff.steps} attempts: {last_error}"
    ) from last_error
