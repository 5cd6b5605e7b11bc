"""
Display utilities for presenting fleet state and upgrade results.
"""

from rich.console import Console
from rich.table import Table

from ..models import UpgradeConfig, UpgradeReport

console = Console()


def display_configuration_info(config: UpgradeConfig) -> None:
    """Display the effective run configuration."""
    console.print("[bold]Configuration:[/bold]")
    console.print(f"  • Fleet: {config.fleet_name}")
    console.print(f"  • Cluster: {config.cluster_name}")
    console.print(f"  • Mode: launch {config.launch_kind.value}")
    console.print(f"  • Region: {config.aws.region or '(environment)'}")
    console.print(f"  • Image filter: {config.image.name_pattern} ({config.image.virtualization_type})")
    console.print(
        f"  • Health gate: {config.health_policy.max_attempts} x {config.health_policy.interval:.0f}s"
    )
    if config.dry_run:
        console.print("  • [yellow]DRY RUN[/yellow]: no changes will be made")


def display_report(report: UpgradeReport) -> None:
    """Display the outcome of an upgrade run."""
    table = Table(title=f"Upgrade summary - {report.fleet_name}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="magenta")

    table.add_row("Cluster", report.cluster_name)
    table.add_row("Phase", report.phase.value)
    table.add_row("Previous launch definition", str(report.old_identifier))
    table.add_row("New launch definition", str(report.new_identifier))
    table.add_row(
        "Baseline capacity",
        str(report.baseline_desired) if report.baseline_desired is not None else "N/A",
    )
    table.add_row("Drained", ", ".join(report.drained_members) or "-")
    if report.undrained_members:
        table.add_row("[yellow]Still running tasks[/yellow]", ", ".join(report.undrained_members))
    duration = report.duration_seconds
    table.add_row("Duration", f"{duration:.0f}s" if duration is not None else "N/A")
    if report.error:
        table.add_row("[red]Error[/red]", report.error)
    console.print(table)


def display_error(message: str) -> None:
    """Display error message."""
    console.print(f"[red]{message}[/red]")


def display_warning(message: str) -> None:
    """Display warning message."""
    console.print(f"[yellow]{message}[/yellow]")


def display_success(message: str) -> None:
    """Display success message."""
    console.print(f"[green]{message}[/green]")
