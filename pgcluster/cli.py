"""Main CLI entry point for cluster orchestration."""

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from pgcluster.exceptions import PgClusterError
from pgcluster.logging_config import get_logger, setup_logging

app = typer.Typer(
    name="pgcluster",
    help="PostgreSQL cluster orchestration CLI",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)

DEFAULT_CONFIG = "pgcluster.yml"


# Global callback to set up logging
@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: str | None = typer.Option(None, "--log-file", help="Path to log file"),
    config: str = typer.Option(
        DEFAULT_CONFIG, "--config", "-c", envvar="PGCLUSTER_CONFIG", help="Broker config file"
    ),
):
    """Global options for all commands."""
    log_path = Path(log_file) if log_file else None
    setup_logging(verbose=verbose, log_file=log_path)
    ctx.obj = {"config_path": config}
    logger.debug("Logging initialized")


def _load_config(ctx: typer.Context):
    from pgcluster.config import BrokerConfig

    return BrokerConfig.load(ctx.obj["config_path"])


def _load_broker(ctx: typer.Context):
    from pgcluster.broker import Broker

    return Broker.from_config(_load_config(ctx))


def _fail(e: PgClusterError) -> None:
    logger.error(f"{type(e).__name__}: {e.message}")
    console.print(f"[red]{type(e).__name__}:[/red] {e.message}")
    if e.details:
        console.print(f"\n{e.details}")
    raise typer.Exit(code=1)


def _parse_cells(cells: str | None) -> list[str]:
    if not cells:
        return []
    return [c.strip() for c in cells.split(",") if c.strip()]


def _finish(broker, operation, wait: bool) -> None:
    """Wait for a background operation, or report that it was accepted.

    The work runs in this process, so even without waiting the command only
    exits once the operation has finished; progress is recorded meanwhile.
    """
    try:
        if not wait:
            console.print(f"[yellow]Accepted[/yellow] {operation.name} of {operation.instance_id}")
            console.print(f"Follow progress with: pgcluster status {operation.instance_id}")
            return

        with console.status(f"Running {operation.name} of {operation.instance_id}..."):
            result = operation.wait()

        if isinstance(result, list):
            for error in result:
                console.print(f"[yellow]Warning:[/yellow] {error.message}")
        console.print(f"[green]✓[/green] {operation.name} of {operation.instance_id} completed")
    except PgClusterError as e:
        _fail(e)
    finally:
        broker.shutdown()


@app.command()
def version() -> None:
    """Show version information."""
    from pgcluster import __version__

    typer.echo(f"pgcluster version {__version__}")


@app.command()
def config_check(ctx: typer.Context) -> None:
    """
    Validate the broker configuration.

    Loads the configuration file and lists the backends and availability
    zones that new nodes can be placed on.
    """
    try:
        config = _load_config(ctx)
    except PgClusterError as e:
        _fail(e)

    table = Table(title="Configured Backends")
    table.add_column("GUID", style="cyan")
    table.add_column("Availability Zone", style="magenta")
    table.add_column("URI", style="green")
    for backend in sorted(config.backends, key=lambda b: (b.availability_zone, b.guid)):
        table.add_row(backend.guid, backend.availability_zone, backend.uri or "-")
    console.print(table)

    azs = sorted({b.availability_zone for b in config.backends})
    console.print(f"\n[bold]Availability zones:[/bold] {', '.join(azs) or 'none'}")
    console.print(
        f"[bold]Port range:[/bold] {config.routing.port_range_start}-"
        f"{config.routing.port_range_end}"
    )
    console.print(f"[bold]Store:[/bold] {config.store.kind} ({config.store.endpoint})")
    console.print(f"[bold]Removal policy:[/bold] {config.scheduler.removal_policy}")
    if not config.backends:
        console.print("[yellow]Warning:[/yellow] no backends configured")


@app.command()
def provision(
    ctx: typer.Context,
    instance_id: str = typer.Argument(..., help="Service instance ID"),
    service_id: str = typer.Option("", "--service-id", help="Service ID"),
    plan_id: str = typer.Option("", "--plan-id", help="Plan ID"),
    organization_guid: str = typer.Option("", "--org", help="Organization GUID"),
    space_guid: str = typer.Option("", "--space", help="Space GUID"),
    nodes: int = typer.Option(0, "--nodes", "-n", help="Node count (default: 2)"),
    cells: str | None = typer.Option(
        None, "--cells", help="Restrict placement to comma-separated backend GUIDs"
    ),
    name: str | None = typer.Option(None, "--name", help="Human readable instance name"),
    wait: bool = typer.Option(
        True, "--wait/--no-wait", help="Report the outcome, or only acceptance"
    ),
) -> None:
    """
    Provision a new PostgreSQL cluster.

    Without --service-id and --plan-id the instance is recreated from its
    backup instead.
    """
    from pgcluster.broker import ProvisionDetails

    details = ProvisionDetails(
        service_id=service_id,
        plan_id=plan_id,
        organization_guid=organization_guid,
        space_guid=space_guid,
        service_instance_name=name,
        parameters={"node-count": nodes, "cells": _parse_cells(cells)},
    )

    try:
        broker = _load_broker(ctx)
        operation = broker.provision(instance_id, details)
    except PgClusterError as e:
        _fail(e)
    _finish(broker, operation, wait)


@app.command()
def update(
    ctx: typer.Context,
    instance_id: str = typer.Argument(..., help="Service instance ID"),
    nodes: int = typer.Option(..., "--nodes", "-n", help="Desired node count"),
    cells: str | None = typer.Option(
        None, "--cells", help="Restrict placement to comma-separated backend GUIDs"
    ),
    wait: bool = typer.Option(
        True, "--wait/--no-wait", help="Report the outcome, or only acceptance"
    ),
) -> None:
    """Resize an existing cluster."""
    try:
        broker = _load_broker(ctx)
        operation = broker.update(
            instance_id, {"node-count": nodes, "cells": _parse_cells(cells)}
        )
    except PgClusterError as e:
        _fail(e)
    _finish(broker, operation, wait)


@app.command()
def deprovision(
    ctx: typer.Context,
    instance_id: str = typer.Argument(..., help="Service instance ID"),
    service_id: str = typer.Option(..., "--service-id", help="Service ID"),
    plan_id: str = typer.Option(..., "--plan-id", help="Plan ID"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation prompt"),
    wait: bool = typer.Option(
        True, "--wait/--no-wait", help="Report the outcome, or only acceptance"
    ),
) -> None:
    """
    Tear down a cluster.

    Every node is removed (best effort), the instance state is deleted and its
    public port is released.
    """
    if not force:
        console.print(f"[yellow]Warning:[/yellow] About to delete every node of '{instance_id}'")
        if not typer.confirm("Are you sure you want to continue?"):
            console.print("Operation cancelled")
            raise typer.Exit(code=0)

    try:
        broker = _load_broker(ctx)
        operation = broker.deprovision(instance_id, service_id, plan_id)
    except PgClusterError as e:
        _fail(e)
    _finish(broker, operation, wait)


@app.command()
def recreate(
    ctx: typer.Context,
    instance_id: str = typer.Argument(..., help="Service instance ID"),
    wait: bool = typer.Option(
        True, "--wait/--no-wait", help="Report the outcome, or only acceptance"
    ),
) -> None:
    """Recreate a lost cluster from its recreation backup."""
    try:
        broker = _load_broker(ctx)
        operation = broker.recreate(instance_id)
    except PgClusterError as e:
        _fail(e)
    _finish(broker, operation, wait)


def _show_instances(broker) -> None:
    instance_ids = broker.state_store.list_clusters()
    if not instance_ids:
        console.print("[yellow]No service instances found[/yellow]")
        return

    table = Table(title="Service Instances")
    table.add_column("Instance", style="cyan")
    table.add_column("Nodes", style="magenta")
    table.add_column("Port", style="green")
    table.add_column("Status")
    table.add_column("Last Message")
    for instance_id in instance_ids:
        try:
            cluster = broker.state_store.load_cluster(instance_id)
        except PgClusterError as e:
            table.add_row(instance_id, "-", "-", "[red]unreadable[/red]", e.message)
            continue
        info = cluster.scheduling_info
        table.add_row(
            instance_id,
            str(cluster.node_count()),
            str(cluster.allocated_port),
            _styled_status(info.status),
            info.last_message,
        )
    console.print(table)


def _styled_status(status: str) -> str:
    colors = {"success": "green", "failed": "red", "in-progress": "yellow"}
    color = colors.get(status, "dim")
    return f"[{color}]{status}[/{color}]"


@app.command()
def status(
    ctx: typer.Context,
    instance_id: str | None = typer.Argument(None, help="Service instance ID (omit to list)"),
) -> None:
    """Show cluster status: scheduling progress, nodes and member health."""
    try:
        broker = _load_broker(ctx)
        if instance_id is None:
            _show_instances(broker)
            return
        cluster = broker.state_store.load_cluster(instance_id)
    except PgClusterError as e:
        _fail(e)

    info = cluster.scheduling_info
    console.print(f"[bold]Instance:[/bold] {cluster.instance_id}")
    if cluster.service_instance_name:
        console.print(f"[bold]Name:[/bold] {cluster.service_instance_name}")
    console.print(f"[bold]Port:[/bold] {broker.router.assigned_port(instance_id) or '-'}")
    console.print(
        f"[bold]Scheduling:[/bold] {_styled_status(info.status)} "
        f"({info.completed_steps}/{info.steps} steps) {info.last_message}"
    )

    table = Table(title="Nodes")
    table.add_column("Node", style="cyan")
    table.add_column("Role", style="magenta")
    table.add_column("Backend", style="green")
    table.add_column("AZ")
    for node in cluster.nodes:
        backend = broker.backends.get(node.backend_id)
        az = backend.availability_zone if backend else "[red]unknown backend[/red]"
        table.add_row(node.id, node.role, node.backend_id, az)
    console.print(table)

    try:
        summary, all_running = broker.status.member_status(instance_id)
        marker = "[green]✓[/green]" if all_running else "[yellow]…[/yellow]"
        console.print(f"{marker} Members: {summary}")
    except PgClusterError as e:
        console.print(f"[yellow]Members:[/yellow] {e.message}")


@app.command()
def placement(
    ctx: typer.Context,
    instance_id: str = typer.Argument(..., help="Service instance ID"),
    cells: str | None = typer.Option(None, "--cells", help="Restrict to these backend GUIDs"),
) -> None:
    """Show where the next node of a cluster would be placed."""
    try:
        broker = _load_broker(ctx)
        cell_guids = _parse_cells(cells)
        ranking = broker.placement.rank_azs_by_unusedness(instance_id, cell_guids)
        used = broker.placement.used_backend_guids(instance_id)
        backend = broker.placement.select_backend(instance_id, cell_guids)
    except PgClusterError as e:
        _fail(e)

    table = Table(title=f"AZ ranking for {instance_id}")
    table.add_column("Rank", style="cyan")
    table.add_column("Availability Zone", style="magenta")
    table.add_column("Nodes", style="green")
    az_of = {b.guid: b.availability_zone for b in broker.backends}
    for rank, az in enumerate(ranking, start=1):
        count = sum(1 for guid in used if az_of.get(guid) == az)
        table.add_row(str(rank), az, str(count))
    console.print(table)
    console.print(f"[bold]Next node:[/bold] {backend.guid} ({backend.availability_zone})")
