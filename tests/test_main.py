"""Tests for the operator entry point and logging setup."""

import json
import logging
import os
import sys
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
import yaml
from gcp_mock import MockGcpContext

from gcp_bastion.config import Config
from gcp_bastion.main import JsonFormatter, build_status_store, main
from gcp_bastion.status import InMemoryStatusStore, YamlStatusStore

pytestmark = pytest.mark.usefixtures("restore_root_logging")


@pytest.fixture
def specs_dir(tmp_path: Path) -> Path:
    (tmp_path / "cluster.yaml").write_text(
        yaml.safe_dump(
            {
                "apiVersion": "v1",
                "kind": "Cluster",
                "metadata": {"name": "shoot--dev--main"},
                "spec": {"region": "europe-west1", "workersCIDR": "10.250.0.0/16"},
            }
        ),
        encoding="utf-8",
    )
    (tmp_path / "bastion.yaml").write_text(
        yaml.safe_dump({"name": "main-bastion", "ingress": ["0.0.0.0/0"]}), encoding="utf-8"
    )
    return tmp_path


def operator_env(specs_dir: Path) -> dict[str, str]:
    return {
        "GCP_PROJECT_ID": "test-project",
        "SPECS_DIR": str(specs_dir),
        "CLUSTER_FILE": str(specs_dir / "cluster.yaml"),
        "ENABLE_JSON_LOGGING": "false",
    }


class TestJsonFormatter:
    """Tests for structured log output."""

    def test_extra_fields_included(self) -> None:
        record = logging.LogRecord("gcp_bastion.test", logging.INFO, __file__, 1, "Bastion ready", None, None)
        record.bastion = "b-1"
        record.zone = "europe-west1-b"

        data = json.loads(JsonFormatter().format(record))

        assert data["message"] == "Bastion ready"
        assert data["level"] == "INFO"
        assert data["logger"] == "gcp_bastion.test"
        assert data["bastion"] == "b-1"
        assert data["zone"] == "europe-west1-b"
        assert data["timestamp"].endswith("Z")

    def test_exception_included(self) -> None:
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord(
                "gcp_bastion.test", logging.ERROR, __file__, 1, "failed", None, sys.exc_info()
            )

        data = json.loads(JsonFormatter().format(record))

        assert "RuntimeError: boom" in data["exception"]


class TestBuildStatusStore:
    """Tests for status store selection."""

    def test_in_memory_by_default(self) -> None:
        assert isinstance(build_status_store(Config(project_id="test-project")), InMemoryStatusStore)

    def test_yaml_with_status_dir(self, tmp_path: Path) -> None:
        config = Config(project_id="test-project", status_dir=tmp_path / "status")

        assert isinstance(build_status_store(config), YamlStatusStore)


class TestMain:
    """Tests for main()."""

    @pytest.mark.asyncio
    async def test_configuration_error(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            assert await main() == 1

    @pytest.mark.asyncio
    async def test_missing_cluster_file(self, tmp_path: Path) -> None:
        env = operator_env(tmp_path)

        with patch.dict(os.environ, env, clear=True):
            assert await main() == 1

    @pytest.mark.asyncio
    async def test_no_intents(self, specs_dir: Path) -> None:
        (specs_dir / "bastion.yaml").unlink()

        with patch.dict(os.environ, operator_env(specs_dir), clear=True):
            assert await main() == 0

    @pytest.mark.asyncio
    async def test_runs_controller(self, specs_dir: Path) -> None:
        run = AsyncMock(return_value=None)

        with (
            patch.dict(os.environ, operator_env(specs_dir), clear=True),
            MockGcpContext(),
            patch("gcp_bastion.main.BastionController.run", run),
        ):
            assert await main() == 0

        intents = run.await_args.args[0]
        assert [intent.name for intent in intents] == ["main-bastion"]

    @pytest.mark.asyncio
    async def test_controller_crash(self, specs_dir: Path) -> None:
        run = AsyncMock(side_effect=RuntimeError("unexpected"))

        with (
            patch.dict(os.environ, operator_env(specs_dir), clear=True),
            MockGcpContext(),
            patch("gcp_bastion.main.BastionController.run", run),
        ):
            assert await main() == 1
