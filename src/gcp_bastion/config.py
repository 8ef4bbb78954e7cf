"""Operator settings from the environment.

Operational settings are loaded once at process start and passed to the
actuator and controller by constructor. Nothing here is mutated at runtime.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Defaults and bounds
DEFAULT_REQUEUE_AFTER_SECONDS = 5
MIN_REQUEUE_AFTER_SECONDS = 1
MAX_REQUEUE_AFTER_SECONDS = 60

DEFAULT_MAX_CONCURRENT_RECONCILES = 5
MAX_CONCURRENT_RECONCILES_LIMIT = 50

DEFAULT_API_TIMEOUT_SECONDS = 120
DEFAULT_OPERATION_TIMEOUT_SECONDS = 300

DEFAULT_RESYNC_INTERVAL_SECONDS = 300
DEFAULT_ERROR_BACKOFF_SECONDS = 5
DEFAULT_MAX_ERROR_BACKOFF_SECONDS = 300

DEFAULT_MACHINE_TYPE = "n1-standard-1"
DEFAULT_DISK_SIZE_GB = 10
DEFAULT_DISK_IMAGE = "projects/debian-cloud/global/images/family/debian-11"

# Status update retry, mirrors client-go retry.DefaultBackoff
STATUS_RETRY_STEPS = 4
STATUS_RETRY_INITIAL_SECONDS = 0.01
STATUS_RETRY_FACTOR = 5.0
STATUS_RETRY_JITTER = 0.1

MAX_SPEC_FILE_SIZE_BYTES = 256 * 1024
MAX_STATUS_FILE_SIZE_BYTES = 256 * 1024

# GCP project ids: 6-30 chars, lowercase letters, digits and hyphens
VALID_PROJECT_ID_PATTERN = r"^[a-z][a-z0-9-]{4,28}[a-z0-9]$"
VALID_MACHINE_TYPE_PATTERN = r"^[a-z][a-z0-9-]*$"


@dataclass(frozen=True)
class RetryBackoff:
    """Bounded exponential backoff for optimistic status updates."""

    steps: int = STATUS_RETRY_STEPS
    initial_seconds: float = STATUS_RETRY_INITIAL_SECONDS
    factor: float = STATUS_RETRY_FACTOR
    jitter: float = STATUS_RETRY_JITTER

    def delays(self) -> list[float]:
        """Base delays between attempts, without jitter."""
        return [self.initial_seconds * (self.factor**i) for i in range(max(self.steps - 1, 0))]


@dataclass(frozen=True)
class Config:
    """Operator configuration. Invalid values raise ConfigurationError on construction."""

    # Required fields
    project_id: str

    # Paths
    specs_dir: Path = field(default_factory=lambda: Path("/specs"))
    cluster_file: Path = field(default_factory=lambda: Path("/specs/cluster.yaml"))
    status_dir: Path | None = None

    # Timing
    requeue_after_seconds: int = DEFAULT_REQUEUE_AFTER_SECONDS
    api_timeout_seconds: int = DEFAULT_API_TIMEOUT_SECONDS
    operation_timeout_seconds: int = DEFAULT_OPERATION_TIMEOUT_SECONDS
    resync_interval_seconds: int = DEFAULT_RESYNC_INTERVAL_SECONDS
    error_backoff_seconds: int = DEFAULT_ERROR_BACKOFF_SECONDS
    max_error_backoff_seconds: int = DEFAULT_MAX_ERROR_BACKOFF_SECONDS

    # Scheduling
    max_concurrent_reconciles: int = DEFAULT_MAX_CONCURRENT_RECONCILES

    # Bastion host shape
    machine_type: str = DEFAULT_MACHINE_TYPE
    disk_size_gb: int = DEFAULT_DISK_SIZE_GB
    disk_image: str = DEFAULT_DISK_IMAGE

    status_backoff: RetryBackoff = field(default_factory=RetryBackoff)

    enable_json_logging: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.project_id:
            errors.append("GCP_PROJECT_ID is required")
        elif not re.match(VALID_PROJECT_ID_PATTERN, self.project_id):
            errors.append(f"GCP_PROJECT_ID must be a valid project id: {self.project_id}")

        if not (
            MIN_REQUEUE_AFTER_SECONDS <= self.requeue_after_seconds <= MAX_REQUEUE_AFTER_SECONDS
        ):
            errors.append(
                f"REQUEUE_AFTER_SECONDS must be between {MIN_REQUEUE_AFTER_SECONDS} "
                f"and {MAX_REQUEUE_AFTER_SECONDS} seconds"
            )

        if not (1 <= self.max_concurrent_reconciles <= MAX_CONCURRENT_RECONCILES_LIMIT):
            errors.append(
                f"MAX_CONCURRENT_RECONCILES must be between 1 and {MAX_CONCURRENT_RECONCILES_LIMIT}"
            )

        if self.api_timeout_seconds < 1:
            errors.append("API_TIMEOUT_SECONDS must be at least 1")

        if self.operation_timeout_seconds < 1:
            errors.append("OPERATION_TIMEOUT_SECONDS must be at least 1")

        if self.error_backoff_seconds < 1:
            errors.append("ERROR_BACKOFF_SECONDS must be at least 1")
        elif self.max_error_backoff_seconds < self.error_backoff_seconds:
            errors.append("MAX_ERROR_BACKOFF_SECONDS must not be lower than ERROR_BACKOFF_SECONDS")

        if self.resync_interval_seconds < self.requeue_after_seconds:
            errors.append("RESYNC_INTERVAL_SECONDS must not be lower than REQUEUE_AFTER_SECONDS")

        if not re.match(VALID_MACHINE_TYPE_PATTERN, self.machine_type):
            errors.append(f"MACHINE_TYPE is not a valid machine type name: {self.machine_type}")

        # GCE boot disks need at least 10GB for public images
        if not (10 <= self.disk_size_gb <= 200):
            errors.append("DISK_SIZE_GB must be between 10 and 200")

        if not self.disk_image:
            errors.append("DISK_IMAGE is required")

        if self.status_backoff.steps < 1:
            errors.append("status retry steps must be at least 1")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def mutation_timeout_seconds(self) -> int:
        """Bound on an insert, patch or delete including its operation wait."""
        return self.api_timeout_seconds + self.operation_timeout_seconds

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            GCP_PROJECT_ID: Project hosting the bastions (falls back to GOOGLE_CLOUD_PROJECT)
            SPECS_DIR: Directory with Bastion intent YAML files (default: /specs)
            CLUSTER_FILE: Cluster context YAML (default: /specs/cluster.yaml)
            STATUS_DIR: Directory for persisted status files (default: in-memory)
            REQUEUE_AFTER_SECONDS: Delay before re-checking a pending bastion (default: 5)
            MAX_CONCURRENT_RECONCILES: Worker limit (default: 5)
            API_TIMEOUT_SECONDS: Timeout for a single Compute API call (default: 120)
            OPERATION_TIMEOUT_SECONDS: Wait on Compute operations (default: 300)
            RESYNC_INTERVAL_SECONDS: Re-check interval for ready bastions (default: 300)
            ERROR_BACKOFF_SECONDS: First retry delay after a failure (default: 5)
            MAX_ERROR_BACKOFF_SECONDS: Retry delay cap (default: 300)
            MACHINE_TYPE: Bastion machine type (default: n1-standard-1)
            DISK_SIZE_GB: Boot disk size (default: 10)
            DISK_IMAGE: Boot disk source image
            ENABLE_JSON_LOGGING: JSON log output (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        status_dir = os.environ.get("STATUS_DIR")

        return cls(
            project_id=os.environ.get("GCP_PROJECT_ID") or os.environ.get("GOOGLE_CLOUD_PROJECT", ""),
            specs_dir=Path(os.environ.get("SPECS_DIR", "/specs")),
            cluster_file=Path(os.environ.get("CLUSTER_FILE", "/specs/cluster.yaml")),
            status_dir=Path(status_dir) if status_dir else None,
            requeue_after_seconds=get_int("REQUEUE_AFTER_SECONDS", DEFAULT_REQUEUE_AFTER_SECONDS),
            max_concurrent_reconciles=get_int(
                "MAX_CONCURRENT_RECONCILES", DEFAULT_MAX_CONCURRENT_RECONCILES
            ),
            api_timeout_seconds=get_int("API_TIMEOUT_SECONDS", DEFAULT_API_TIMEOUT_SECONDS),
            operation_timeout_seconds=get_int(
                "OPERATION_TIMEOUT_SECONDS", DEFAULT_OPERATION_TIMEOUT_SECONDS
            ),
            resync_interval_seconds=get_int(
                "RESYNC_INTERVAL_SECONDS", DEFAULT_RESYNC_INTERVAL_SECONDS
            ),
            error_backoff_seconds=get_int("ERROR_BACKOFF_SECONDS", DEFAULT_ERROR_BACKOFF_SECONDS),
            max_error_backoff_seconds=get_int(
                "MAX_ERROR_BACKOFF_SECONDS", DEFAULT_MAX_ERROR_BACKOFF_SECONDS
            ),
            machine_type=os.environ.get("MACHINE_TYPE", DEFAULT_MACHINE_TYPE),
            disk_size_gb=get_int("DISK_SIZE_GB", DEFAULT_DISK_SIZE_GB),
            disk_image=os.environ.get("DISK_IMAGE", DEFAULT_DISK_IMAGE),
            enable_json_logging=get_bool("ENABLE_JSON_LOGGING", True),
        )
