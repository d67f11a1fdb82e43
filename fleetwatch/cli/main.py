"""Click commands for fleetwatch.

Usage::

    fleetwatch run
    fleetwatch check-config /etc/fleetwatch/alertmanager.yml
    fleetwatch discover --dry-run
"""

from __future__ import annotations

import asyncio
import sys

import click

from fleetwatch import __version__
from fleetwatch.alerting import RoutingConfigError, load_routing_config
from fleetwatch.alerting.matchers import format_matchers
from fleetwatch.alerting.routing import RouteNode


@click.group()
@click.version_option(__version__, prog_name="fleetwatch")
def cli() -> None:
    """ECS scrape-target discovery and alert routing."""


@cli.command()
def run() -> None:
    """Run the daemon until SIGTERM/SIGINT (SIGHUP reloads routing)."""
    from fleetwatch.app import main

    asyncio.run(main())


def _render_routes(root: RouteNode) -> None:
    for depth, node in root.walk(depth=1):
        indent = "  " * depth
        matchers = format_matchers(node.matchers) if node.matchers else "{}"
        flags = " continue" if node.continue_to_siblings else ""
        click.echo(
            f"{indent}- {matchers} -> {node.receiver}"
            f" group_by={list(node.group_by)}"
            f" wait={int(node.group_wait.total_seconds())}s"
            f" interval={int(node.group_interval.total_seconds())}s"
            f" repeat={int(node.repeat_interval.total_seconds())}s{flags}"
        )


@cli.command("check-config")
@click.argument("path", type=click.Path(dir_okay=False))
def check_config(path: str) -> None:
    """Validate a routing configuration file and print its route tree."""
    from fleetwatch.observability.logging import setup_logging

    setup_logging("warning", json_output=False)
    try:
        config = load_routing_config(path)
    except RoutingConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(click.style(f"{path}: OK", fg="green"))
    click.echo(f"resolve_timeout: {int(config.resolve_timeout.total_seconds())}s")
    click.echo(f"receivers: {', '.join(sorted(config.receivers))}")
    click.echo(f"inhibit_rules: {len(config.inhibit_rules)}")
    click.echo("routes:")
    _render_routes(config.route)


@cli.command()
@click.option("--dry-run", is_flag=True, help="Print the target set instead of publishing it.")
def discover(dry_run: bool) -> None:
    """Run a single discovery cycle using FLEETWATCH_* settings."""
    from fleetwatch.config import load_config
    from fleetwatch.discovery import (
        DiscoveryReconciler,
        EcsOrchestratorClient,
        QueryError,
        TargetStore,
        build_target_set,
        serialize_targets,
    )
    from fleetwatch.observability.logging import setup_logging

    try:
        config = load_config()
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    setup_logging(config.log.level, json_output=False)

    discovery = config.discovery
    client = EcsOrchestratorClient(
        region=discovery.region,
        target_port=discovery.target_port,
        container_name=discovery.container_name,
        timeout_seconds=discovery.interval_seconds,
    )

    if dry_run:

        async def _query() -> str:
            ids = await client.list_running_tasks(discovery.cluster, discovery.service_name)
            tasks = await client.describe_tasks(discovery.cluster, list(dict.fromkeys(ids))) if ids else []
            return serialize_targets(build_target_set(tasks, config.target_labels))

        try:
            click.echo(asyncio.run(_query()), nl=False)
        except QueryError as exc:
            raise click.ClickException(f"discovery query failed: {exc}") from exc
        return

    reconciler = DiscoveryReconciler(
        client=client,
        store=TargetStore(discovery.targets_file),
        cluster=discovery.cluster,
        service=discovery.service_name,
        labels=config.target_labels,
        interval_seconds=discovery.interval_seconds,
    )
    result = asyncio.run(reconciler.run_cycle())
    if not result.ok:
        click.echo(f"discovery cycle failed ({result.outcome}): {result.error}", err=True)
        sys.exit(1)
    state = "written" if result.published else "unchanged"
    click.echo(f"{result.target_count} targets, {discovery.targets_file} {state}")
