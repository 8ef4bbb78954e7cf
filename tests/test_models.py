"""Tests for the Pydantic models."""

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from gcp_bastion.models import (
    MAX_USER_DATA_BYTES,
    BastionIntent,
    BastionStatus,
    ClusterContext,
    Ingress,
    LastError,
    ProviderStatus,
)


class TestBastionIntent:
    """Tests for BastionIntent model."""

    def test_valid_intent(self) -> None:
        """Test parsing a valid intent with camelCase keys."""
        intent = BastionIntent.model_validate(
            {
                "name": "bastion-1",
                "ingress": ["10.0.0.0/8", "192.168.1.1/32"],
                "userData": "#!/bin/sh",
                "zone": "europe-west1-b",
            }
        )

        assert intent.name == "bastion-1"
        assert intent.ingress == ["10.0.0.0/8", "192.168.1.1/32"]
        assert intent.user_data == "#!/bin/sh"
        assert intent.zone == "europe-west1-b"
        assert intent.region is None

    def test_ingress_ip_block_entries(self) -> None:
        """Test that {ipBlock: {cidr}} entries are flattened in order."""
        intent = BastionIntent.model_validate(
            {
                "name": "bastion-1",
                "ingress": [{"ipBlock": {"cidr": "1.2.3.4/32"}}, "5.6.7.0/24", {"cidr": "::/0"}],
            }
        )

        assert intent.ingress == ["1.2.3.4/32", "5.6.7.0/24", "::/0"]

    def test_ingress_malformed_entry(self) -> None:
        with pytest.raises(ValidationError):
            BastionIntent.model_validate({"name": "b", "ingress": [{"ipBlock": {"from": "x"}}]})

    def test_invalid_name(self) -> None:
        """Test that names must be DNS labels."""
        with pytest.raises(ValidationError) as exc_info:
            BastionIntent(name="Bastion_1")

        assert "name" in str(exc_info.value)

    def test_user_data_too_large(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            BastionIntent(name="b", user_data="x" * (MAX_USER_DATA_BYTES + 1))

        assert "userData" in str(exc_info.value)

    def test_immutable(self) -> None:
        intent = BastionIntent(name="b")

        with pytest.raises(ValidationError):
            intent.name = "other"  # type: ignore[misc]

    def test_extra_fields_ignored(self) -> None:
        intent = BastionIntent.model_validate({"name": "b", "sshPublicKey": "ssh-ed25519 AAAA"})

        assert intent.name == "b"


class TestClusterContext:
    """Tests for ClusterContext model."""

    def test_defaults_from_cluster_name(self) -> None:
        """Test that VPC and subnetwork default to the cluster's own network."""
        cluster = ClusterContext.model_validate(
            {"name": "shoot--a--b", "region": "us-east1", "workersCIDR": "10.250.0.0/16"}
        )

        assert cluster.vpc_name == "shoot--a--b"
        assert cluster.nodes_subnetwork_name == "shoot--a--b-nodes"
        assert cluster.workers_cidr == "10.250.0.0/16"

    def test_explicit_network(self) -> None:
        cluster = ClusterContext.model_validate(
            {"name": "c", "networkName": "shared-vpc", "subnetworkName": "workers"}
        )

        assert cluster.vpc_name == "shared-vpc"
        assert cluster.nodes_subnetwork_name == "workers"

    def test_missing_fields_do_not_fail_construction(self) -> None:
        """Test that absent required facts are left for the options resolver."""
        cluster = ClusterContext()

        assert cluster.name == ""
        assert cluster.region == ""


class TestIngress:
    """Tests for Ingress readiness."""

    @pytest.mark.parametrize(
        ("hostname", "ip", "ready"),
        [
            ("", "", False),
            ("", "34.1.2.3", True),
            ("bastion.example.com", "", True),
            ("bastion.example.com", "34.1.2.3", True),
        ],
    )
    def test_ready(self, hostname: str, ip: str, ready: bool) -> None:
        assert Ingress(hostname=hostname, ip=ip).ready is ready


class TestBastionStatus:
    """Tests for BastionStatus wire format."""

    def test_empty_status_wire(self) -> None:
        assert BastionStatus().to_wire() == {}

    def test_wire_uses_camel_case(self) -> None:
        """Test that status serializes with camelCase keys and omits unset fields."""
        timestamp = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
        status = BastionStatus(
            provider_status=ProviderStatus(zone="europe-west1-b"),
            ingress=Ingress(ip="34.1.2.3"),
            last_error=LastError(message="boom", timestamp=timestamp),
        )

        wire = status.to_wire()

        assert wire["providerStatus"] == {"zone": "europe-west1-b"}
        assert wire["ingress"] == {"hostname": "", "ip": "34.1.2.3"}
        assert wire["lastError"]["message"] == "boom"
        assert "observedAt" not in wire

    def test_wire_parses_back(self) -> None:
        status = BastionStatus(provider_status=ProviderStatus(zone="us-east1-c"))

        parsed = BastionStatus.model_validate(status.to_wire())

        assert parsed.provider_status is not None
        assert parsed.provider_status.zone == "us-east1-c"
