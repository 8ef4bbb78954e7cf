"""Compute Engine mock for integration testing.

In-memory implementation of the ComputeClient capability so the
reconciler can be exercised end to end without GCP connectivity.

Key Features:
- Real compute_v1 messages, copied on every boundary
- Instance provisioning simulation (PROVISIONING → RUNNING, late addresses)
- Error injection per client method
- Call recording for idempotence assertions
- A status store that loses write races on demand

Usage:
    from gcp_mock import MockComputeClient, MockComputeState

    state = MockComputeState()
    actuator = BastionActuator(config, MockComputeClient(state), store)
    await actuator.reconcile(intent, cluster)

    assert state.instance_names == [...]
"""

from .client import MockComputeClient
from .context import MockGcpContext
from .state import MockCall, MockComputeState, copy_message, make_zone
from .status import ContendedStatusStore

__all__ = [
    "ContendedStatusStore",
    "MockCall",
    "MockComputeClient",
    "MockComputeState",
    "MockGcpContext",
    "copy_message",
    "make_zone",
]
