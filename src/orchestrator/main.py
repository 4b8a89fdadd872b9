"""CLI entry point for the scrape orchestrator.

This module provides the command-line interface for running scheduled
batches, inspecting the budget and serving the HTTP trigger surface.
"""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from src.models.config import ConfigManager, OrchestratorConfig
from src.models.data_models import BatchReport, BudgetPeriod
from src.models.errors import OrchestratorError
from src.orchestrator.output import JSONOutputFormatter
from src.orchestrator.runtime import build_runtime


console = Console()


def _load_config(config_path: Path, cli_overrides: dict) -> OrchestratorConfig:
    return ConfigManager(config_path).load_config(cli_overrides)


@click.group()
@click.version_option(version="1.0.0", prog_name="scrape-orchestrator")
def cli() -> None:
    """
    Scrape Orchestrator - budget-governed multi-method pricing scraper.

    Examples:

        # Run one scheduled batch with default configuration
        $ python -m src.orchestrator.main run-batch

        # Smaller batch, fewer workers, no progress bars
        $ python -m src.orchestrator.main run-batch --max-vendors 3 --workers 2 --no-progress

        # Show the budget ledger
        $ python -m src.orchestrator.main budget-status
    """


@cli.command("run-batch")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default="config/config.yaml",
    help="Path to configuration YAML file",
)
@click.option("--max-vendors", "-m", type=int, help="Vendors pulled in this batch (overrides config)")
@click.option("--workers", "-w", type=int, help="Worker pool size (overrides config)")
@click.option("--time-budget", "-t", type=float, help="Batch wall-clock budget in seconds (overrides config)")
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Output JSON file path (overrides config)")
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level (overrides config)",
)
@click.option("--seed", type=int, help="Seed for simulated executors")
@click.option("--no-progress", is_flag=True, help="Disable progress output (useful for CI/CD)")
def run_batch(
    config_path: Path,
    max_vendors: Optional[int],
    workers: Optional[int],
    time_budget: Optional[float],
    output: Optional[Path],
    log_level: Optional[str],
    seed: Optional[int],
    no_progress: bool,
) -> None:
    """Run one scheduled batch and write the session report."""
    try:
        config = _load_config(config_path, {
            "max_vendors_per_run": max_vendors,
            "queue.max_concurrent": workers,
            "batch_time_budget": time_budget,
            "log_level": log_level.upper() if log_level else None,
        })
        output_path = output if output else config.output_path

        _display_config_summary(config, no_progress)
        report = asyncio.run(_run_batch(config, seed, no_progress))

        JSONOutputFormatter().save(report, str(output_path))
        _display_results(report, output_path, no_progress)
        sys.exit(0)

    except KeyboardInterrupt:
        console.print("\n[yellow]Batch interrupted by user[/yellow]")
        sys.exit(130)
    except (OrchestratorError, ValueError) as e:
        console.print(f"\n[red]Error:[/red] {e}", style="bold red")
        sys.exit(1)


async def _run_batch(config: OrchestratorConfig, seed: Optional[int], no_progress: bool) -> BatchReport:
    runtime = await build_runtime(config, seed=seed)
    try:
        if no_progress:
            console.print("[cyan]Running batch...[/cyan]")
            return await runtime.orchestrator.run_scheduled_batch()

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task_id = progress.add_task("[cyan]Scraping due vendors...", total=None)
            report = await runtime.orchestrator.run_scheduled_batch()
            progress.update(task_id, completed=True, description="[green]Batch finished")
            return report
    finally:
        await runtime.aclose()


@cli.command("budget-status")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default="config/config.yaml",
    help="Path to configuration YAML file",
)
def budget_status(config_path: Path) -> None:
    """Show limits, usage and health of the budget ledger."""
    try:
        config = _load_config(config_path, {})
        snapshot = asyncio.run(_budget_snapshot(config))
    except (OrchestratorError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}", style="bold red")
        sys.exit(1)

    table = Table(title="Budget Status")
    table.add_column("Period", style="cyan")
    table.add_column("Limit", justify="right", style="green")
    table.add_column("Used", justify="right", style="yellow")
    table.add_column("Remaining", justify="right", style="magenta")
    for period in BudgetPeriod:
        table.add_row(
            period.value,
            f"${snapshot['budget']['limits'][period.value]:.2f}",
            f"${snapshot['budget']['usage'][period.value]:.2f}",
            f"${snapshot['health']['remaining'][period.value]:.2f}",
        )
    console.print(table)
    console.print(
        f"[bold]Health:[/bold] {snapshot['health']['status']} - {snapshot['health']['message']}"
    )
    console.print(f"[bold]Can scrape:[/bold] {snapshot['can_scrape']}")


async def _budget_snapshot(config: OrchestratorConfig) -> dict:
    runtime = await build_runtime(config, vendors=[])
    try:
        return runtime.ledger.status_snapshot()
    finally:
        await runtime.aclose()


@cli.command("emergency-shutdown")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default="config/config.yaml",
    help="Path to configuration YAML file",
)
@click.option("--reason", "-r", required=True, help="Reason recorded with the shutdown alert")
def emergency_shutdown(config_path: Path, reason: str) -> None:
    """Exhaust every budget period so only free methods run."""
    try:
        config = _load_config(config_path, {})
        asyncio.run(_shutdown(config, reason))
    except (OrchestratorError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}", style="bold red")
        sys.exit(1)
    console.print("[bold red]Paid scraping disabled until the next period reset[/bold red]")


async def _shutdown(config: OrchestratorConfig, reason: str) -> None:
    runtime = await build_runtime(config, vendors=[])
    try:
        await runtime.ledger.emergency_shutdown(reason)
    finally:
        await runtime.aclose()


@cli.command("serve")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default="config/config.yaml",
    help="Path to configuration YAML file",
)
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=8000, type=int, help="Bind port")
def serve(config_path: Path, host: str, port: int) -> None:
    """Serve the HTTP trigger surface with uvicorn."""
    import uvicorn

    from src.api.app import create_app

    config = _load_config(config_path, {})
    uvicorn.run(create_app(config=config), host=host, port=port, log_level=config.log_level.lower())


def _display_config_summary(config: OrchestratorConfig, no_progress: bool) -> None:
    """Display configuration summary before running."""
    if no_progress:
        return

    console.print("\n[bold cyan]Batch Configuration[/bold cyan]")
    console.print(f"  Environment: {config.environment}")
    console.print(f"  Max vendors: {config.max_vendors_per_run}")
    console.print(f"  Workers: {config.queue.max_concurrent}")
    console.print(f"  Time budget: {config.batch_time_budget}s")
    console.print(
        f"  Limits: ${config.budget_limits.daily:.2f} daily / "
        f"${config.budget_limits.weekly:.2f} weekly / ${config.budget_limits.monthly:.2f} monthly"
    )
    console.print()


def _display_results(report: BatchReport, output_path: Path, no_progress: bool) -> None:
    """Display final results summary."""
    session = report.session
    if no_progress:
        console.print(f"✓ Batch complete: {session.completed_jobs}/{session.total_jobs} jobs completed")
        console.print(f"✓ Output saved to: {output_path}")
        return

    console.print("\n[bold green]Batch Complete![/bold green]\n")

    summary_table = Table(title="Session Summary", show_header=False)
    summary_table.add_column("Metric", style="cyan")
    summary_table.add_column("Value", style="green")
    summary_table.add_row("Jobs", str(session.total_jobs))
    summary_table.add_row("Completed", str(session.completed_jobs))
    summary_table.add_row("Failed", str(session.failed_jobs))
    summary_table.add_row("Skipped", str(session.skipped_jobs))
    summary_table.add_row("Cancelled", str(session.cancelled_jobs))
    summary_table.add_row("Total Cost", f"${session.total_cost:.2f}")
    summary_table.add_row("Success Rate", f"{session.success_rate * 100:.1f}%")
    console.print(summary_table)
    console.print()

    if session.method_breakdown:
        method_table = Table(title="Attempts per Method")
        method_table.add_column("Method", style="cyan")
        method_table.add_column("Attempts", justify="right", style="green")
        for method, count in session.method_breakdown.items():
            method_table.add_row(method.value, str(count))
        console.print(method_table)
        console.print()

    console.print(f"[bold]Output saved to:[/bold] {output_path}")
    console.print()


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
