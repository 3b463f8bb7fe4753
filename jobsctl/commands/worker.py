"""Worker Commands - run worker pools in the foreground"""

import asyncio

import typer
from rich.console import Console
from rich.panel import Panel

from ezjobs.config.logging import setup_logging
from ezjobs.config.settings import get_settings
from ezjobs.context import build_context
from ezjobs.v1.infra.jobs.payloads import QueueName

from ..utils.formatting import print_error

console = Console()
app = typer.Typer(name="worker", help="Run job workers")


async def run_workers(queue_names: list[str] | None = None) -> bool:
    """Start pools and block until SIGINT or SIGTERM completes shutdown."""
    ctx = build_context(get_settings())
    ctx.shutdown.install_signal_handlers()
    await ctx.start_workers(queue_names)
    await ctx.shutdown.done.wait()
    return True


@app.command("run")
def run(
    queue: list[str] | None = typer.Option(
        None, "--queue", "-q", help="Only run these queues (repeatable)"
    ),
):
    """🛠️ Run worker pools until interrupted"""
    known = {name.value for name in QueueName}
    unknown = [name for name in queue or [] if name not in known]
    if unknown:
        print_error(f"Unknown queue(s): {', '.join(unknown)}")
        raise typer.Exit(1)

    setup_logging()
    console.print(Panel(
        f"🛠️ [bold cyan]Starting workers[/bold cyan]\n\n"
        f"• Queues: [green]{', '.join(queue) if queue else 'all'}[/green]\n"
        f"• Stop with [yellow]Ctrl+C[/yellow]",
        title="Worker",
        border_style="cyan",
    ))
    asyncio.run(run_workers(queue or None))
