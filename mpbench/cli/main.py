#!/usr/bin/env python3
"""
Main CLI Entry Point for mpbench.

Provides command-line interface for benchmark operations:
- Running a topology for a duration and reporting per-endpoint statistics
- Validating topology documents without running them
- Listing the message and service types available to topologies
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import NoReturn

import click
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..core.config import BenchmarkSettings
from ..core.events import EventsLogger
from ..core.logging import configure_logging
from ..core.model import BenchmarkError, EndpointRole
from ..core.registry import create_message_registry, create_service_registry
from ..core.reporting import RunSummary, render_table, write_csv, write_json
from ..core.resource_usage import ResourceUsageLogger
from ..core.scheduler import ExecutorPool
from ..core.system import BenchmarkSystem
from ..core.topology import TopologyBuilder
from ..core.transport.inprocess import InProcessTransport

console = Console()


def _fail(message: str) -> NoReturn:
    console.print(f"[red]Error:[/red] {escape(message)}")
    sys.exit(1)


def _load_settings(settings_path: str | None) -> BenchmarkSettings:
    if settings_path is None:
        return BenchmarkSettings()
    try:
        return BenchmarkSettings.from_path(settings_path)
    except (OSError, ValueError, TypeError) as e:
        _fail(f"Cannot load settings from {settings_path}: {e}")


plugin_option = click.option(
    "--plugin",
    "plugins",
    multiple=True,
    help="Plugin module registering extra message/service types (repeatable)",
)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--log-level", default="INFO", show_default=True, help="Log level")
@click.option(
    "--debug-scope",
    "debug_scopes",
    multiple=True,
    help="Module scope to log at DEBUG (repeatable), e.g. 'tracker'",
)
@click.pass_context
def cli(ctx, verbose: bool, log_level: str, debug_scopes: tuple[str, ...]):
    """
    mpbench Middleware Benchmark CLI.

    Runs publish/subscribe and request/response topologies and reports
    latency, throughput and message loss per endpoint.
    """
    configure_logging("DEBUG" if verbose else log_level, debug_scopes=debug_scopes)
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@cli.command()
@click.argument("topology", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--settings",
    "settings_path",
    type=click.Path(exists=True, dir_okay=False),
    help="Settings file (.toml or .json)",
)
@click.option("--duration", "-d", type=float, help="Run duration in seconds")
@click.option("--report-interval", type=float, help="Seconds between report logs, 0 disables")
@click.option("--service-timeout", type=float, help="Service availability probe timeout")
@click.option("--events-file", type=click.Path(dir_okay=False), help="Write events here")
@click.option("--results-dir", type=click.Path(file_okay=False), help="Write results here")
@click.option(
    "--no-resource-usage", is_flag=True, help="Disable CPU/memory sampling"
)
@click.option(
    "--output",
    "-o",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
@plugin_option
@click.pass_context
def run(
    ctx,
    topology: str,
    settings_path: str | None,
    duration: float | None,
    report_interval: float | None,
    service_timeout: float | None,
    events_file: str | None,
    results_dir: str | None,
    no_resource_usage: bool,
    output: str,
    plugins: tuple[str, ...],
):
    """Run a topology and report per-endpoint statistics."""
    settings = _load_settings(settings_path)
    try:
        settings = settings.merged(
            topology_path=Path(topology),
            duration=duration,
            report_interval=report_interval,
            service_timeout=service_timeout,
            events_file=Path(events_file) if events_file else None,
            results_dir=Path(results_dir) if results_dir else None,
            plugins=settings.plugins + plugins if plugins else None,
            resource_usage_enabled=False if no_resource_usage else None,
        )
    except ValueError as e:
        _fail(str(e))

    if settings_path is not None and not ctx.obj.get("verbose"):
        configure_logging(settings.log_level, debug_scopes=settings.log_debug_scopes)

    events = EventsLogger(settings.events_file) if settings.events_file else None
    resource_usage = None
    if settings.resource_usage_enabled:
        resource_usage = ResourceUsageLogger(
            settings.resource_usage_interval,
            path=settings.results_dir / "resource_usage.tsv"
            if settings.results_dir
            else None,
        )

    system = BenchmarkSystem(
        events=events,
        report_interval=settings.report_interval,
        resource_usage=resource_usage,
    )
    builder = system.topology_builder(
        message_registry=create_message_registry(settings.plugins),
        service_registry=create_service_registry(settings.plugins),
        tracking_options=settings.tracking,
        service_timeout=settings.service_timeout,
    )

    async def _run() -> RunSummary:
        async with system:
            return await system.run(settings.duration)

    try:
        try:
            system.add_nodes(builder.build_from_path(topology))
        except (BenchmarkError, ValueError) as e:
            _fail(str(e))
        summary = asyncio.run(_run())
    finally:
        if events is not None:
            events.close()

    if settings.results_dir is not None:
        write_json(summary, settings.results_dir / "results.json")
        write_csv(summary.endpoints, settings.results_dir / "results.csv")
        logger.info(f"Results written to {settings.results_dir}")

    if output == "json":
        click.echo(summary.model_dump_json(indent=2))
        return

    console.print(render_table(summary.endpoints, summary.total))
    lost_events = summary.events.get("lost_messages", 0)
    console.print(
        f"Ran {summary.duration:.2f}s: {summary.total.count} samples, "
        f"{summary.total.lost_count} lost, {lost_events} loss events"
    )


@cli.command()
@click.argument("topology", type=click.Path(exists=True, dir_okay=False))
@plugin_option
def validate(topology: str, plugins: tuple[str, ...]):
    """Validate a topology by building it without running it."""
    transport = InProcessTransport()
    builder = TopologyBuilder(
        transport,
        ExecutorPool(),
        message_registry=create_message_registry(plugins),
        service_registry=create_service_registry(plugins),
    )
    try:
        nodes = builder.build_from_path(topology)
    except BenchmarkError as e:
        _fail(str(e))

    table = Table(title="Topology")
    table.add_column("Node", style="cyan", no_wrap=True)
    table.add_column("Executor", justify="right")
    for role in EndpointRole:
        table.add_column(f"{role.value.capitalize()}s", justify="right")

    for node in nodes:
        table.add_row(
            node.full_name,
            str(node.executor_id),
            str(len(node.publishers)),
            str(len(node.subscribers)),
            str(len(node.clients)),
            str(len(node.servers)),
        )
        node.destroy()
    transport.close()

    console.print(table)
    console.print(f"[green]Topology is valid:[/green] {len(nodes)} nodes")


@cli.command()
@click.option(
    "--output",
    "-o",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
@plugin_option
def types(output: str, plugins: tuple[str, ...]):
    """List available message and service types."""
    message_registry = create_message_registry(plugins)
    service_registry = create_service_registry(plugins)
    message_registry.discover()
    service_registry.discover()

    rows = []
    for name, builder in message_registry.builders().items():
        message_type = builder.message_type
        rows.append(
            {
                "kind": "message",
                "name": name,
                "payload": message_type.kind.value,
                "size": message_type.fixed_size,
                "description": message_type.description,
            }
        )
    for name, builder in service_registry.builders().items():
        service_type = builder.service_type
        rows.append(
            {
                "kind": "service",
                "name": name,
                "payload": service_type.request.kind.value,
                "size": service_type.request.fixed_size,
                "description": service_type.description,
            }
        )

    if output == "json":
        click.echo(json.dumps(rows, indent=2))
        return

    table = Table(title="Endpoint Types")
    table.add_column("Kind", style="magenta")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Payload", style="green")
    table.add_column("Size (B)", justify="right")
    table.add_column("Description")
    for row in rows:
        table.add_row(
            row["kind"],
            row["name"],
            row["payload"],
            str(row["size"]) if row["payload"] == "fixed" else "-",
            row["description"],
        )
    console.print(table)


def main():
    """Main CLI entry point."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]Run cancelled by user[/yellow]")
        sys.exit(1)


if __name__ == "__main__":
    main()
