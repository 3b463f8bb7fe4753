"""Job Commands - status and queue metrics"""

import typer
from rich.console import Console

from ..client.base import JobsAPIError
from ..client.endpoints import JobsClient
from ..utils.formatting import (
    create_job_panel,
    create_metrics_table,
    print_error,
    print_success,
)

console = Console()
app = typer.Typer(name="jobs", help="Job status and queue metrics")


@app.command("status")
def job_status(
    job_id: str = typer.Argument(..., help="Job ID"),
    queue: str | None = typer.Option(None, "--queue", "-q", help="Restrict to one queue"),
):
    """🔎 Show the status, progress and result of a job"""
    try:
        with JobsClient() as client:
            job = client.get_job(job_id, queue)
    except JobsAPIError as e:
        print_error(f"Failed to get job: {e}")
        raise typer.Exit(1) from None

    console.print(create_job_panel(job))
    if job.get("result"):
        console.print(job["result"])


@app.command("metrics")
def metrics():
    """📊 Show job counts for every queue"""
    try:
        with JobsClient() as client:
            data = client.get_metrics()
    except JobsAPIError as e:
        print_error(f"Failed to get metrics: {e}")
        raise typer.Exit(1) from None

    console.print(create_metrics_table(data))
    console.print(
        f"Dead letter backlog: [red]{data.get('dead_letter_pending', 0)}[/red] pending"
    )


@app.command("cleanup")
def cleanup(
    cleanup_type: str = typer.Argument(
        "full_cleanup",
        help="temp_files, orphaned_documents, orphaned_signatures or full_cleanup",
    ),
):
    """🧹 Enqueue a manual cleanup job"""
    try:
        with JobsClient() as client:
            data = client.trigger_cleanup(cleanup_type)
    except JobsAPIError as e:
        print_error(f"Failed to trigger cleanup: {e}")
        raise typer.Exit(1) from None

    print_success(f"Cleanup queued as job {data.get('job_id')}")
