"""Dead Letter Queue Commands - triage of exhausted jobs"""

import typer
from rich.console import Console
from rich.prompt import Confirm

from ..client.base import JobsAPIError
from ..client.endpoints import JobsClient
from ..utils.config_manager import config
from ..utils.formatting import (
    create_dlq_stats_panel,
    create_dlq_table,
    display_dlq_entry,
    print_error,
    print_info,
    print_success,
    print_warning,
)

console = Console()
app = typer.Typer(name="dlq", help="Dead letter queue administration")


@app.command("stats")
def stats():
    """📊 Show dead letter counts by status and queue"""
    try:
        with JobsClient() as client:
            data = client.dlq_stats()
    except JobsAPIError as e:
        print_error(f"Failed to get dead letter stats: {e}")
        raise typer.Exit(1) from None

    console.print(create_dlq_stats_panel(data))


@app.command("list")
def list_entries(
    queue: str | None = typer.Option(None, "--queue", "-q", help="Filter by source queue"),
    status: str | None = typer.Option(
        None, "--status", "-s", help="pending, retried or discarded"
    ),
    limit: int | None = typer.Option(None, "--limit", "-l", help="Maximum entries"),
    offset: int = typer.Option(0, "--offset", help="Results offset"),
):
    """📋 List dead letter entries"""
    limit = limit or config.get("display.page_size", 20)
    try:
        with JobsClient() as client:
            data = client.dlq_list(queue, status, limit, offset)
    except JobsAPIError as e:
        print_error(f"Failed to list dead letters: {e}")
        raise typer.Exit(1) from None

    entries = data.get("entries", [])
    if not entries:
        print_info("No dead letter entries found")
        return

    console.print(create_dlq_table(entries))
    console.print(f"Showing {len(entries)} of {data.get('total', len(entries))}")


@app.command("show")
def show(entry_id: str = typer.Argument(..., help="Dead letter entry ID")):
    """🔎 Show one entry with payload and error"""
    try:
        with JobsClient() as client:
            entry = client.dlq_get(entry_id)
    except JobsAPIError as e:
        print_error(f"Failed to get dead letter entry: {e}")
        raise typer.Exit(1) from None

    display_dlq_entry(entry)


@app.command("retry")
def retry(entry_ids: list[str] = typer.Argument(..., help="One or more entry IDs")):
    """🔁 Re-enqueue jobs from the dead letter queue"""
    try:
        with JobsClient() as client:
            if len(entry_ids) == 1:
                data = client.dlq_retry(entry_ids[0])
                print_success(f"Re-enqueued as job {data.get('job_id')}")
                return
            data = client.dlq_retry_batch(entry_ids)
    except JobsAPIError as e:
        print_error(f"Retry failed: {e}")
        raise typer.Exit(1) from None

    for entry_id, result in data.get("results", {}).items():
        if result.get("success"):
            print_success(f"{entry_id} → job {result.get('job_id')}")
        else:
            print_warning(f"{entry_id}: {result.get('error')}")


@app.command("discard")
def discard(
    entry_ids: list[str] = typer.Argument(..., help="One or more entry IDs"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """🗑️ Discard dead letter entries"""
    if not yes and not Confirm.ask(f"Discard {len(entry_ids)} entr(ies)?"):
        console.print("Discard cancelled.")
        return

    try:
        with JobsClient() as client:
            data = client.dlq_discard_batch(entry_ids)
    except JobsAPIError as e:
        print_error(f"Discard failed: {e}")
        raise typer.Exit(1) from None

    for entry_id, ok in data.get("results", {}).items():
        if ok:
            print_success(f"Discarded {entry_id}")
        else:
            print_warning(f"{entry_id}: not found or already resolved")


@app.command("cleanup")
def cleanup(
    older_than_days: int = typer.Option(30, "--older-than-days", "-d", min=1),
):
    """🧹 Purge retried and discarded entries"""
    try:
        with JobsClient() as client:
            data = client.dlq_cleanup(older_than_days)
    except JobsAPIError as e:
        print_error(f"Cleanup failed: {e}")
        raise typer.Exit(1) from None

    print_success(f"Deleted {data.get('deleted', 0)} entries older than {older_than_days} days")
