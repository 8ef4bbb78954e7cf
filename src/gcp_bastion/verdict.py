"""Outcome of a single reconciliation pass."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Success:
    """The bastion is reachable and its endpoint is published."""


@dataclass(frozen=True)
class RequeueAfter:
    """Nothing failed, but the bastion is not ready yet. Retry after delay."""

    delay_seconds: float
    reason: str = ""


@dataclass(frozen=True)
class Failed:
    """The pass stopped on an error."""

    error: Exception

    @property
    def message(self) -> str:
        return str(self.error)


Verdict = Success | RequeueAfter | Failed
