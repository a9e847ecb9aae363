"""Rich terminal output for lbcollect."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from lbcollect.coverage import CoverageTracker
from lbcollect.models import CollectionSummary

console = Console(stderr=True)


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Route every lbcollect logger through a RichHandler on stderr."""
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    handler = RichHandler(console=console, show_path=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_coverage_table(coverage: CoverageTracker) -> Table:
    """One row per colocation: balancers found and whether discovery is exhausted."""
    table = Table(show_header=True, border_style="bright_black", header_style="bold", expand=False)
    table.add_column("Colocation", style="bold")
    table.add_column("Balancers", justify="right")
    table.add_column("Since last new", justify="right")
    table.add_column("Covered")

    for colo, stats in coverage.snapshot().items():
        covered = stats.is_covered(coverage.min_requests, coverage.growth_factor)
        table.add_row(
            colo,
            str(len(stats.unique_balancers)),
            str(stats.requests_since_last_new),
            "[green]yes[/green]" if covered else "[yellow]no[/yellow]",
        )
    return table


def render_summary(summary: CollectionSummary, coverage: CoverageTracker | None = None) -> None:
    """Print where the results went and what was discovered."""
    console.print()
    if coverage is not None and coverage.colocations():
        console.print(build_coverage_table(coverage))
        console.print(
            f"[bold]{coverage.total_balancers}[/bold] balancers in "
            f"[bold]{len(coverage.colocations())}[/bold] colocations"
        )
    console.print(f"[dim]{summary.rows_written} rows written to {summary.output_file}[/dim]")
    if summary.failed_locations:
        render_warning(f"Collection failed for: {', '.join(summary.failed_locations)}")


def render_error(message: str) -> None:
    """Display an error message."""
    console.print(f"[bold red]Error:[/bold red] {message}")


def render_warning(message: str) -> None:
    """Display a warning message."""
    console.print(f"[yellow]Warning:[/yellow] {message}")
