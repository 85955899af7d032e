"""Retry command - reprocess the failed items of the last run."""

import sys

import rich_click as click

from ...models import SyncState
from ...sync.exceptions import SyncAlreadyRunningError
from ..core import SyncError, with_engine
from ..display import console, format_run_result
from .common import error_message, warning_message


@click.command()
@with_engine(test_connection=True)
def retry(engine):
    """Retry items that failed in the last run."""
    items = engine.failed_items()
    if not items:
        console.print("[green]✓[/green] No failed items to retry")
        return

    console.print(f"[cyan]Retrying {len(items)} failed item(s)…[/cyan]\n")
    try:
        result = engine.retry_failed()
    except SyncAlreadyRunningError as e:
        console.print(error_message(str(e)))
        sys.exit(SyncError.exit_code)
    except KeyboardInterrupt:
        engine.cancel()
        console.print(warning_message("Retry interrupted"))
        sys.exit(SyncError.exit_code)

    format_run_result(result, title="Retry Results")
    if result.state != SyncState.COMPLETE:
        sys.exit(SyncError.exit_code)


# Export for lazy loading
cli = retry
