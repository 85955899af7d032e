"""Sync command - mirror the provider catalog into the library."""

import sys
import threading

import rich_click as click
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from ...models import SyncState
from ...sync.exceptions import SyncAlreadyRunningError, SyncSuppressedError
from ..core import SyncError, trigger_hook, with_engine
from ..display import console, format_run_result
from .common import error_message, info_message, warning_message


def _show_progress(engine, worker: threading.Thread):
    """Poll the engine's progress tracker until the run thread exits."""
    columns = (
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
    )
    with Progress(*columns, console=console, transient=True) as progress:
        task = progress.add_task("Starting", total=None)
        while worker.is_alive():
            snapshot = engine.progress.snapshot()
            progress.update(
                task,
                description=snapshot["phase"],
                total=snapshot["total_items"] or None,
                completed=snapshot["processed_items"],
            )
            worker.join(0.2)


@click.command()
@click.option(
    "--full",
    is_flag=True,
    help="Ignore the last snapshot and process every item",
)
@click.option(
    "--scheduled",
    is_flag=True,
    help="Mark this as an automatic run; refused while scheduled runs are suppressed",
)
@with_engine(test_connection=True)
def sync(engine, full, scheduled):
    """Sync movies and series from the provider into .strm files.

    Runs incrementally against the last snapshot unless --full is given or
    the library layout settings changed. Press Ctrl+C to cancel.
    """
    trigger = "scheduled" if scheduled else "manual"
    outcome = {}

    def run():
        try:
            outcome["result"] = engine.run(trigger=trigger, force_full=full)
        except (SyncAlreadyRunningError, SyncSuppressedError) as e:
            outcome["refused"] = e

    console.print(info_message(f"Starting {'full' if full else 'incremental'} sync…\n"))
    worker = threading.Thread(target=run, name="sync-run", daemon=True)
    worker.start()

    try:
        _show_progress(engine, worker)
    except KeyboardInterrupt:
        console.print(warning_message("Cancelling sync, waiting for workers to stop…"))
        engine.cancel()
        worker.join()

    refused = outcome.get("refused")
    if isinstance(refused, SyncSuppressedError):
        console.print(warning_message(str(refused)))
        return
    if refused is not None:
        console.print(error_message(str(refused)))
        sys.exit(SyncError.exit_code)

    result = outcome["result"]
    format_run_result(result)

    if result.state == SyncState.COMPLETE:
        trigger_hook(
            "sync_complete",
            movies_created=result.movies_created,
            episodes_created=result.episodes_created,
            files_deleted=result.files_deleted,
            failed=len(result.failed_items),
            duration_seconds=round(result.duration_seconds, 1),
        )
    elif result.state == SyncState.FAILED:
        trigger_hook("sync_error", error=result.error or "unknown error")
        sys.exit(SyncError.exit_code)


# Export for lazy loading
cli = sync
