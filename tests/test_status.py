"""Tests for status stores and the optimistic update transaction."""

import threading
from pathlib import Path

import pytest
import yaml
from gcp_mock import ContendedStatusStore

from gcp_bastion.config import RetryBackoff
from gcp_bastion.errors import StatusUpdateError
from gcp_bastion.models import BastionStatus, Ingress, ProviderStatus
from gcp_bastion.status import (
    InMemoryStatusStore,
    StatusConflictError,
    StatusStoreError,
    YamlStatusStore,
    try_update_status,
)

FAST_BACKOFF = RetryBackoff(steps=4, initial_seconds=0.001, factor=2.0, jitter=0.0)


class ThreadRecordingStore(InMemoryStatusStore):
    """Records the thread each store call ran on."""

    def __init__(self) -> None:
        super().__init__()
        self.threads: list[int] = []

    def read(self, key: str) -> tuple[BastionStatus, int]:
        self.threads.append(threading.get_ident())
        return super().read(key)

    def write(self, key: str, status: BastionStatus, expected_version: int) -> int:
        self.threads.append(threading.get_ident())
        return super().write(key, status, expected_version)


def set_zone(zone: str):
    def mutate(status: BastionStatus) -> None:
        status.provider_status = ProviderStatus(zone=zone)

    return mutate


class TestInMemoryStatusStore:
    """Tests for InMemoryStatusStore."""

    def test_read_unwritten(self) -> None:
        status, version = InMemoryStatusStore().read("b")

        assert status == BastionStatus()
        assert version == 0

    def test_write_bumps_version(self) -> None:
        store = InMemoryStatusStore()

        assert store.write("b", BastionStatus(), 0) == 1
        assert store.write("b", BastionStatus(), 1) == 2

    def test_stale_write_conflicts(self) -> None:
        store = InMemoryStatusStore()
        store.write("b", BastionStatus(), 0)

        with pytest.raises(StatusConflictError):
            store.write("b", BastionStatus(), 0)

    def test_reads_are_private_copies(self) -> None:
        store = InMemoryStatusStore()
        store.write("b", BastionStatus(provider_status=ProviderStatus(zone="z-1")), 0)

        status, _ = store.read("b")
        status.provider_status = ProviderStatus(zone="changed")

        stored = store.get("b")
        assert stored is not None
        assert stored.provider_status == ProviderStatus(zone="z-1")


class TestYamlStatusStore:
    """Tests for YamlStatusStore."""

    def test_round_trip_on_disk(self, tmp_path: Path) -> None:
        store = YamlStatusStore(tmp_path)
        status = BastionStatus(
            provider_status=ProviderStatus(zone="europe-west1-b"), ingress=Ingress(ip="34.1.2.3")
        )

        version = store.write("bastion-1", status, 0)

        document = yaml.safe_load(store.path_for("bastion-1").read_text(encoding="utf-8"))
        assert document["resourceVersion"] == version == 1
        assert document["status"]["providerStatus"] == {"zone": "europe-west1-b"}

        read_back, read_version = YamlStatusStore(tmp_path).read("bastion-1")
        assert read_back == status
        assert read_version == 1

    def test_conflict(self, tmp_path: Path) -> None:
        store = YamlStatusStore(tmp_path)
        store.write("b", BastionStatus(), 0)

        with pytest.raises(StatusConflictError):
            store.write("b", BastionStatus(), 0)

    def test_corrupt_file(self, tmp_path: Path) -> None:
        store = YamlStatusStore(tmp_path)
        store.path_for("b").write_text("- not\n- a mapping\n", encoding="utf-8")

        with pytest.raises(StatusStoreError):
            store.read("b")


class TestTryUpdateStatus:
    """Tests for the compare-and-retry transaction."""

    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self) -> None:
        store = InMemoryStatusStore()

        result = await try_update_status(store, "b", set_zone("z-1"), FAST_BACKOFF)

        assert result.provider_status == ProviderStatus(zone="z-1")
        assert store.read("b")[1] == 1

    @pytest.mark.asyncio
    async def test_conflict_is_retried_on_fresh_read(self) -> None:
        """Test that a lost race is re-applied on top of the competing write."""
        store = ContendedStatusStore(contended_writes=2)

        await try_update_status(store, "b", set_zone("z-1"), FAST_BACKOFF)

        assert store.write_attempts == 3
        stored = store.get("b")
        assert stored is not None
        assert stored.provider_status == ProviderStatus(zone="z-1")

    @pytest.mark.asyncio
    async def test_preserves_fields_set_by_others(self) -> None:
        store = InMemoryStatusStore()
        store.write("b", BastionStatus(ingress=Ingress(ip="34.1.2.3")), 0)

        await try_update_status(store, "b", set_zone("z-1"), FAST_BACKOFF)

        stored = store.get("b")
        assert stored is not None
        assert stored.ingress == Ingress(ip="34.1.2.3")
        assert stored.provider_status == ProviderStatus(zone="z-1")

    @pytest.mark.asyncio
    async def test_gives_up_after_all_steps(self) -> None:
        store = ContendedStatusStore(contended_writes=10)

        with pytest.raises(StatusUpdateError) as exc_info:
            await try_update_status(store, "b", set_zone("z-1"), FAST_BACKOFF)

        assert store.write_attempts == FAST_BACKOFF.steps
        assert "after 4 attempts" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, StatusConflictError)

    @pytest.mark.asyncio
    async def test_store_io_runs_off_event_loop(self) -> None:
        store = ThreadRecordingStore()

        await try_update_status(store, "b", set_zone("z-1"), FAST_BACKOFF)

        assert len(store.threads) == 2
        assert threading.get_ident() not in store.threads

    @pytest.mark.asyncio
    async def test_yaml_store(self, tmp_path: Path) -> None:
        store = YamlStatusStore(tmp_path)

        await try_update_status(store, "b", set_zone("z-1"), FAST_BACKOFF)
        await try_update_status(store, "b", set_zone("z-2"), FAST_BACKOFF)

        status, version = store.read("b")
        assert status.provider_status == ProviderStatus(zone="z-2")
        assert version == 2
