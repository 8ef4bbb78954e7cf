"""Bastion CLI (bastionctl).

One-shot operations against a single bastion, for debugging and scripting.

Usage:
    bastionctl reconcile -i bastion.yaml -c cluster.yaml --wait
    bastionctl delete -i bastion.yaml -c cluster.yaml
    bastionctl names -i bastion.yaml -c cluster.yaml
    bastionctl status -i bastion.yaml --status-dir ./status
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import click
import yaml

from .client import ComputeClient, GoogleComputeClient
from .config import Config, ConfigurationError
from .controller import BastionController
from .errors import BastionError
from .main import build_status_store, setup_logging
from .models import BastionIntent, ClusterContext
from .options import determine_options
from .reconciler import BastionActuator
from .spec_loader import SpecLoadError, load_cluster, load_intent
from .status import StatusStoreError, YamlStatusStore
from .verdict import Failed, RequeueAfter, Success

DEFAULT_WAIT_TIMEOUT_SECONDS = 600

intent_option = click.option(
    "--intent",
    "-i",
    "intent_file",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Bastion intent YAML",
)
cluster_option = click.option(
    "--cluster",
    "-c",
    "cluster_file",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Cluster context YAML",
)


def build_client(config: Config) -> ComputeClient:
    """Compute client for CLI commands, using default credentials."""
    return GoogleComputeClient(operation_timeout_seconds=config.operation_timeout_seconds)


def load_inputs(intent_file: Path, cluster_file: Path) -> tuple[BastionIntent, ClusterContext]:
    try:
        return load_intent(intent_file), load_cluster(cluster_file)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e


def make_config(ctx: click.Context) -> Config:
    try:
        return Config(project_id=ctx.obj["project"] or "", status_dir=ctx.obj["status_dir"])
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


def make_controller(config: Config, cluster: ClusterContext) -> BastionController:
    store = build_status_store(config)
    actuator = BastionActuator(config, build_client(config), store)
    return BastionController(actuator, store, cluster)


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="bastionctl")
@click.option("--project", envvar="GCP_PROJECT_ID", help="GCP project id")
@click.option(
    "--status-dir",
    envvar="STATUS_DIR",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory for persisted status files (default: in-memory)",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.pass_context
def cli(ctx: click.Context, project: str | None, status_dir: Path | None, verbose: bool) -> None:
    """Bastion CLI (bastionctl).

    Create, inspect and remove SSH bastion hosts on Compute Engine.
    """
    ctx.ensure_object(dict)
    ctx.obj["project"] = project
    ctx.obj["status_dir"] = status_dir
    setup_logging(json_output=False, level=logging.DEBUG if verbose else logging.WARNING)


# =============================================================================
# Commands
# =============================================================================


@cli.command()
@intent_option
@cluster_option
@click.option("--wait", "-w", is_flag=True, help="Repeat until the bastion is ready")
@click.option(
    "--timeout",
    "timeout_seconds",
    default=DEFAULT_WAIT_TIMEOUT_SECONDS,
    show_default=True,
    type=click.IntRange(min=1),
    help="Wait limit in seconds",
)
@click.pass_context
def reconcile(
    ctx: click.Context,
    intent_file: Path,
    cluster_file: Path,
    wait: bool,
    timeout_seconds: int,
) -> None:
    """Create or repair a bastion."""
    intent, cluster = load_inputs(intent_file, cluster_file)
    config = make_config(ctx)
    controller = make_controller(config, cluster)

    click.echo(f"Reconciling bastion {intent.name}...")
    if wait:
        verdict = asyncio.run(controller.wait_ready(intent, timeout_seconds))
    else:
        verdict = asyncio.run(controller.reconcile(intent))

    match verdict:
        case Success():
            click.secho(f"✓ Bastion {intent.name} is ready", fg="green")
        case RequeueAfter(reason=reason):
            if wait:
                raise click.ClickException(
                    f"Bastion {intent.name} not ready after {timeout_seconds}s: {reason}"
                )
            click.secho(f"… Bastion {intent.name} not ready yet: {reason}", fg="yellow")
        case Failed(error=error):
            raise click.ClickException(f"Reconciliation failed: {error}")


@cli.command()
@intent_option
@cluster_option
@click.pass_context
def delete(ctx: click.Context, intent_file: Path, cluster_file: Path) -> None:
    """Remove a bastion and all its resources."""
    intent, cluster = load_inputs(intent_file, cluster_file)
    config = make_config(ctx)
    controller = make_controller(config, cluster)

    click.echo(f"Deleting bastion {intent.name}...")
    try:
        asyncio.run(controller.delete(intent))
    except BastionError as e:
        raise click.ClickException(f"Deletion failed: {e}") from e
    click.secho(f"✓ Bastion {intent.name} deleted", fg="green")


@cli.command()
@intent_option
@cluster_option
@click.pass_context
def names(ctx: click.Context, intent_file: Path, cluster_file: Path) -> None:
    """Print the resource names a bastion would use, without calling GCP."""
    intent, cluster = load_inputs(intent_file, cluster_file)
    config = make_config(ctx)

    try:
        opt = determine_options(intent, cluster, config.project_id)
    except BastionError as e:
        raise click.ClickException(str(e)) from e

    click.echo(
        yaml.safe_dump(
            {
                "instance": opt.bastion_instance_name,
                "disk": opt.disk_name,
                "firewallRules": list(opt.firewall_names),
                "network": opt.network,
                "subnetwork": opt.subnetwork,
                "zone": opt.zone or "(chosen by provider)",
            },
            sort_keys=False,
        ).rstrip()
    )


@cli.command()
@intent_option
@click.pass_context
def status(ctx: click.Context, intent_file: Path) -> None:
    """Show the persisted status of a bastion."""
    status_dir: Path | None = ctx.obj["status_dir"]
    if status_dir is None:
        raise click.ClickException("--status-dir (or STATUS_DIR) is required to read status")

    try:
        intent = load_intent(intent_file)
        current, version = YamlStatusStore(status_dir).read(intent.name)
    except (SpecLoadError, StatusStoreError) as e:
        raise click.ClickException(str(e)) from e

    if version == 0:
        click.echo(f"No status recorded for bastion {intent.name}")
        return

    click.echo(
        yaml.safe_dump(
            {"name": intent.name, "resourceVersion": version, "status": current.to_wire()},
            sort_keys=False,
        ).rstrip()
    )


if __name__ == "__main__":
    cli()
