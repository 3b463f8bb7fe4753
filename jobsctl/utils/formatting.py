"""Rich Formatting Utilities for CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "waiting": "yellow",
    "delayed": "yellow",
    "active": "cyan",
    "completed": "green",
    "failed": "red",
    "pending": "yellow",
    "retried": "green",
    "discarded": "dim",
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


def styled_status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def _truncate(text: str | None, length: int = 60) -> str:
    if not text:
        return "-"
    return text[:length] + "..." if len(text) > length else text


METRIC_COLUMNS = ("waiting", "delayed", "active", "completed", "failed")


def create_metrics_table(metrics: dict[str, Any]) -> Table:
    """Per-queue job counts with a totals row"""
    table = Table(title="Queue Metrics", box=box.ROUNDED)

    table.add_column("Queue", justify="left", style="cyan")
    for column in METRIC_COLUMNS:
        table.add_column(column.capitalize(), justify="right")

    for name, counts in sorted(metrics.get("queues", {}).items()):
        table.add_row(name, *(str(counts.get(c, 0)) for c in METRIC_COLUMNS))

    totals = metrics.get("totals", {})
    table.add_row(
        "[bold]total[/bold]", *(f"[bold]{totals.get(c, 0)}[/bold]" for c in METRIC_COLUMNS)
    )
    return table


def create_job_panel(job: dict[str, Any]) -> Panel:
    content = (
        f"• Queue: [cyan]{job.get('queue')}[/cyan]\n"
        f"• Type: [magenta]{job.get('type')}[/magenta]\n"
        f"• Status: {styled_status(job.get('status', ''))}\n"
        f"• Progress: [yellow]{job.get('progress', 0)}%[/yellow]\n"
        f"• Attempts: {job.get('attempts', 0)}/{job.get('maxAttempts', 0)}\n"
        f"• Created: [dim]{job.get('createdAt')}[/dim]\n"
        f"• Finished: [dim]{job.get('finishedAt') or '-'}[/dim]"
    )
    if job.get("error"):
        content += f"\n\n[red]{job['error']}[/red]"
    return Panel(content, title=f"Job {job.get('id')}", border_style="blue")


def create_dlq_table(entries: list[dict[str, Any]]) -> Table:
    """Dead letter entries list"""
    table = Table(title="Dead Letter Queue", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Queue", justify="left", style="magenta")
    table.add_column("Type", justify="left")
    table.add_column("Status", justify="center")
    table.add_column("Attempts", justify="right")
    table.add_column("Moved", justify="left", style="dim")
    table.add_column("Error", justify="left", style="white")

    for entry in entries:
        table.add_row(
            entry.get("id", "")[:8],
            entry.get("source_queue", ""),
            entry.get("job_type", ""),
            styled_status(entry.get("status", "")),
            f"{entry.get('attempts_made', 0)}/{entry.get('max_attempts', 0)}",
            entry.get("moved_at", ""),
            _truncate(entry.get("error")),
        )
    return table


def create_dlq_stats_panel(stats: dict[str, Any]) -> Panel:
    by_status = stats.get("by_status", {})
    by_queue = stats.get("by_queue", {})
    queues = "\n".join(f"  • {q}: [cyan]{n}[/cyan]" for q, n in sorted(by_queue.items()))
    content = (
        f"• Total: [bold]{stats.get('total', 0)}[/bold]\n"
        f"• Pending: [yellow]{by_status.get('pending', 0)}[/yellow]\n"
        f"• Retried: [green]{by_status.get('retried', 0)}[/green]\n"
        f"• Discarded: [dim]{by_status.get('discarded', 0)}[/dim]\n"
        f"• Oldest: [dim]{stats.get('oldest_entry') or '-'}[/dim]\n"
        f"• Newest: [dim]{stats.get('newest_entry') or '-'}[/dim]\n\n"
        f"[bold]By queue[/bold]\n{queues or '  -'}"
    )
    return Panel(content, title="Dead Letter Statistics", border_style="red")


def display_dlq_entry(entry: dict[str, Any]):
    console.print(
        Panel(
            f"• Queue: [magenta]{entry.get('source_queue')}[/magenta]\n"
            f"• Type: {entry.get('job_type')}\n"
            f"• Original job: [cyan]{entry.get('original_job_id')}[/cyan]\n"
            f"• Status: {styled_status(entry.get('status', ''))}\n"
            f"• Attempts: {entry.get('attempts_made')}/{entry.get('max_attempts')}\n"
            f"• Moved: [dim]{entry.get('moved_at')}[/dim]\n"
            f"• Retried job: [cyan]{entry.get('retried_job_id') or '-'}[/cyan]",
            title=f"Dead Letter {entry.get('id')}",
            border_style="red",
        )
    )
    console.print(Panel(str(entry.get("payload", {})), title="Payload", border_style="blue"))
    console.print(Panel(entry.get("error", ""), title="Error", border_style="red"))
    if entry.get("error_stack"):
        console.print(f"[dim]{entry['error_stack']}[/dim]")
