"""Rich Formatting Utilities for CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "pending": "blue",
    "processing": "yellow",
    "completed": "green",
    "failed": "red",
    "retrying": "magenta",
    "lease_lost": "dim",
}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def _styled_status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def create_jobs_table(jobs: list[dict[str, Any]], title: str = "Jobs") -> Table:
    """Create a formatted table for processed or listed jobs"""
    table = Table(title=title, box=box.ROUNDED)

    table.add_column("Job ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Attempts", justify="right")
    table.add_column("Error", justify="left", style="white")

    for job in jobs:
        error = job.get("error") or job.get("error_message") or "-"
        table.add_row(
            job.get("job_id", ""),
            job.get("job_type", ""),
            _styled_status(job.get("status", "")),
            str(job.get("attempts", "")),
            error[:60] + "..." if len(error) > 60 else error,
        )

    return table


def create_stats_panel(stats: dict[str, Any]) -> Panel:
    """Create formatted panel for queue statistics"""
    by_status = stats.get("by_status", {})
    status_lines = "\n".join(
        f"• {_styled_status(status)}: {count}" for status, count in by_status.items()
    )
    by_type = stats.get("by_type", {})
    type_lines = "\n".join(f"• {job_type}: {count}" for job_type, count in by_type.items())

    content = f"""
📊 [bold blue]Queue Statistics[/bold blue]

• Total jobs: [cyan]{stats.get("total_jobs", 0)}[/cyan]
• Queue depth: [yellow]{stats.get("queue_depth", 0)}[/yellow]
• Failed (last hour): [red]{stats.get("failed_last_hour", 0)}[/red]

[bold]By status[/bold]
{status_lines}

[bold]By type[/bold]
{type_lines or "• none"}
"""

    return Panel(content, title="Job Queue", border_style="green")
