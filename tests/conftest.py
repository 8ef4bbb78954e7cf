"""Pytest configuration and fixtures."""

import logging
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for gcp_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from gcp_mock import MockComputeClient, MockComputeState  # noqa: E402

from gcp_bastion.config import Config, RetryBackoff  # noqa: E402
from gcp_bastion.models import BastionIntent, ClusterContext  # noqa: E402
from gcp_bastion.reconciler import BastionActuator  # noqa: E402
from gcp_bastion.status import InMemoryStatusStore  # noqa: E402

PROJECT_ID = "test-project"


@pytest.fixture
def restore_root_logging() -> Iterator[None]:
    """Undo handlers and level installed by setup_logging during a test."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
    root.setLevel(level)


@pytest.fixture
def config() -> Config:
    """Config with a fast status retry so conflict tests stay quick."""
    return Config(
        project_id=PROJECT_ID,
        requeue_after_seconds=1,
        resync_interval_seconds=1,
        api_timeout_seconds=5,
        status_backoff=RetryBackoff(steps=4, initial_seconds=0.001, factor=2.0, jitter=0.0),
    )


@pytest.fixture
def cluster() -> ClusterContext:
    return ClusterContext(name="shoot--dev--demo", region="europe-west1", workers_cidr="10.250.0.0/16")


@pytest.fixture
def intent() -> BastionIntent:
    return BastionIntent(
        name="bastion-abc",
        ingress=["203.0.113.0/24", "198.51.100.7/32"],
        user_data="#!/bin/sh\necho hello\n",
    )


@pytest.fixture
def compute_state() -> MockComputeState:
    return MockComputeState()


@pytest.fixture
def compute_client(compute_state: MockComputeState) -> MockComputeClient:
    return MockComputeClient(compute_state)


@pytest.fixture
def status_store() -> InMemoryStatusStore:
    return InMemoryStatusStore()


@pytest.fixture
def actuator(
    config: Config, compute_client: MockComputeClient, status_store: InMemoryStatusStore
) -> BastionActuator:
    return BastionActuator(config, compute_client, status_store)
