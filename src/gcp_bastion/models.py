"""Pydantic models for bastion intents, cluster context and status.

These models provide:
1. Type-safe YAML parsing
2. Validation at the boundary (fail fast, fail loudly)
3. A stable camelCase wire shape for persisted status
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator

# GCE rejects metadata values above 256KB
MAX_USER_DATA_BYTES = 256 * 1024

VALID_BASTION_NAME_PATTERN = r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"


# =============================================================================
# Declared Intent
# =============================================================================


class BastionIntent(BaseModel):
    """User-declared bastion request.

    Immutable once accepted. CIDR syntax is checked by the options resolver,
    not here, so a malformed allow-list surfaces as InvalidIntentError on the
    reconcile path instead of a load failure.
    """

    model_config = {"extra": "ignore", "frozen": True, "populate_by_name": True}

    name: Annotated[str, Field(min_length=1, max_length=63, pattern=VALID_BASTION_NAME_PATTERN)]
    ingress: list[str] = Field(default_factory=list)
    user_data: str = Field("", alias="userData")
    zone: str | None = None
    region: str | None = None

    @field_validator("ingress", mode="before")
    @classmethod
    def flatten_ingress(cls, v: Any) -> Any:
        # Accept both plain CIDR strings and {ipBlock: {cidr: ...}} entries
        if not isinstance(v, list):
            return v
        flattened: list[Any] = []
        for entry in v:
            if isinstance(entry, dict):
                block = entry.get("ipBlock", entry)
                if not isinstance(block, dict) or "cidr" not in block:
                    raise ValueError("ingress entries must be a CIDR or {ipBlock: {cidr: ...}}")
                flattened.append(block["cidr"])
            else:
                flattened.append(entry)
        return flattened

    @field_validator("user_data")
    @classmethod
    def validate_user_data_size(cls, v: str) -> str:
        if len(v.encode("utf-8")) > MAX_USER_DATA_BYTES:
            raise ValueError(f"userData exceeds {MAX_USER_DATA_BYTES} bytes")
        return v


class ClusterContext(BaseModel):
    """Read-only facts about the cluster hosting the bastion.

    Required fields default to empty so that construction never fails here;
    the options resolver reports missing values as InvalidIntentError.
    """

    model_config = {"extra": "ignore", "frozen": True, "populate_by_name": True}

    name: str = ""
    region: str = ""
    network_name: str | None = Field(None, alias="networkName")
    subnetwork_name: str | None = Field(None, alias="subnetworkName")
    workers_cidr: str = Field("", alias="workersCIDR")

    @property
    def vpc_name(self) -> str:
        return self.network_name or self.name

    @property
    def nodes_subnetwork_name(self) -> str:
        return self.subnetwork_name or f"{self.name}-nodes"


# =============================================================================
# Status
# =============================================================================


class Ingress(BaseModel):
    """A reachability endpoint: IP, hostname, or both."""

    model_config = {"extra": "ignore", "frozen": True}

    hostname: str = ""
    ip: str = ""

    @property
    def ready(self) -> bool:
        return bool(self.hostname or self.ip)


class ProviderStatus(BaseModel):
    """Provider specific status, currently only where the bastion lives."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    zone: str


class LastError(BaseModel):
    """Last reconciliation failure as shown to operators."""

    model_config = {"extra": "ignore"}

    message: str
    timestamp: datetime


class BastionStatus(BaseModel):
    """Externally persisted bastion status.

    Written only through the optimistic status transaction; the reconciler
    never reads it back.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    provider_status: ProviderStatus | None = Field(None, alias="providerStatus")
    ingress: Ingress | None = None
    last_error: LastError | None = Field(None, alias="lastError")
    observed_at: datetime | None = Field(None, alias="observedAt")

    def to_wire(self) -> dict[str, Any]:
        """Serialize using camelCase keys, omitting unset sections."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
