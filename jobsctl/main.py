"""EzSign Jobs CLI - Main Entry Point"""

import typer
from rich.console import Console
from rich.panel import Panel

from .client.endpoints import JobsClient
from .commands import config, dlq, jobs, worker
from .utils.config_manager import config as config_manager
from .utils.formatting import print_error, print_info

console = Console()

app = typer.Typer(
    name="jobsctl",
    help="🧰 EzSign Jobs - queue, dead letter and worker administration",
    rich_markup_mode="rich",
)

app.add_typer(jobs.app, name="jobs")
app.add_typer(dlq.app, name="dlq")
app.add_typer(worker.app, name="worker")
app.add_typer(config.app, name="config")


@app.command()
def status():
    """📊 Check API connectivity, store health and worker pools"""
    base_url = config_manager.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with JobsClient(base_url) as client:
            health = client.health_check()
    except Exception as e:
        print_error(f"Failed to connect: {e}")
        console.print(Panel(
            f"🚫 [red]Connection Failed[/red]\n\n"
            f"Make sure the EzSign Jobs API is running at:\n"
            f"[blue]{base_url}[/blue]\n\n"
            f"You can update the API URL with:\n"
            f"[cyan]jobsctl config set api.base_url <url>[/cyan]",
            title="Connection Error",
            border_style="red",
        ))
        raise typer.Exit(1) from None

    store = health.get("store") or {}
    store_state = "[green]connected[/green]" if store.get("connected") else "[red]down[/red]"
    pools = health.get("pools") or []
    console.print(Panel(
        f"🚀 [green]Connected Successfully![/green]\n\n"
        f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
        f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
        f"• Job store: {store.get('backend', 'unknown')} ({store_state})\n"
        f"• Worker pools: [cyan]{len(pools)}[/cyan] in this process\n"
        f"• API URL: [blue]{base_url}[/blue]",
        title="System Status",
        border_style="green",
    ))


@app.command()
def version():
    """📎 Show CLI version information"""
    from . import __version__

    console.print(Panel(
        f"🧰 [bold cyan]EzSign Jobs CLI[/bold cyan]\n\n"
        f"• Version: [green]{__version__}[/green]",
        title="Version Info",
        border_style="cyan",
    ))


@app.callback()
def main(
    version: bool | None = typer.Option(
        None, "--version", "-v", help="Show version and exit"
    ),
):
    """
    🧰 EzSign Jobs CLI

    Inspect jobs and queue metrics, triage the dead letter queue and run
    worker pools.
    """
    if version:
        from . import __version__

        console.print(f"EzSign Jobs CLI v{__version__}")
        raise typer.Exit()


if __name__ == "__main__":
    app()
