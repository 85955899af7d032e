"""Clean command - reset sync state so the next run is a full sync."""

import rich_click as click

from ..core import with_engine
from ..display import console


@click.command()
@click.option(
    "--delete-files",
    is_flag=True,
    help="Also delete every .strm file in the Movies and Series folders",
)
@click.confirmation_option(prompt="Delete all snapshots and suppress scheduled syncs?")
@with_engine()
def clean(engine, delete_files):
    """Delete snapshots and suppress scheduled syncs until the next manual sync."""
    counts = engine.clean_library(delete_files=delete_files)

    console.print(f"[green]✓[/green] Deleted {counts['snapshots']} snapshot(s)")
    if delete_files:
        console.print(f"[green]✓[/green] Deleted {counts['files']} .strm file(s)")
    console.print("[yellow]Scheduled syncs are suppressed until you run 'strmarr sync'.[/yellow]")


# Export for lazy loading
cli = clean
