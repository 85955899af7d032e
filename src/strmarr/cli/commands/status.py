"""Status command - show engine state and the last run."""

import rich_click as click

from ..core import with_engine
from ..display import console, format_duration, format_timestamp
from .common import PREFIX_INFO, PREFIX_SUCCESS, PREFIX_WARNING


@click.command()
@with_engine()
def status(engine):
    """Show the last sync result, suppression and snapshot state."""
    info = engine.status()
    settings = engine.settings

    console.print(f"[cyan]Library:[/cyan] {settings.library_path}")
    console.print(f"[cyan]Provider:[/cyan] {settings.provider_url}")

    if info["has_snapshot"]:
        console.print(f"{PREFIX_SUCCESS} Snapshot present, next sync runs incrementally")
    else:
        console.print(f"{PREFIX_INFO} No snapshot, next sync runs in full")

    if info["is_suppressed"]:
        console.print(f"{PREFIX_WARNING} Scheduled syncs are suppressed until the next manual sync")

    last = info["last_result"]
    if last is None:
        console.print("\n[yellow]No sync has run yet. Run 'strmarr sync' first.[/yellow]")
        return

    console.print(f"\n[bold]Last run:[/bold] {format_timestamp(last.start_time)}")
    console.print(f"  State: {last.state.value}{' (retry)' if last.is_retry else ''}")
    console.print(f"  Duration: {format_duration(last.duration_seconds)}")
    console.print(
        f"  Movies: {last.movies_created} created, {last.movies_updated} updated, "
        f"{last.movies_skipped} skipped"
    )
    console.print(
        f"  Episodes: {last.episodes_created} created, {last.episodes_updated} updated, "
        f"{last.episodes_skipped} skipped"
    )
    console.print(f"  Failed items: {len(last.failed_items)}")
    if last.error:
        console.print(f"  [red]Error:[/red] {last.error}")


# Export for lazy loading
cli = status
