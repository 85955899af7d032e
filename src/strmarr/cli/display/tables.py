"""Table builders for CLI output.

Conventions:
- Functions named _render_*_table() for consistency
- Header style: "bold cyan"
- Primary column (first) styled as "bold"
"""

from rich.table import Table

from ...models import SyncState
from .formatters import format_duration, format_timestamp

STATE_STYLES = {
    SyncState.COMPLETE: "green",
    SyncState.CANCELLED: "yellow",
    SyncState.FAILED: "red",
}


def _render_run_summary_table(result, title="Sync Results"):
    """
    Create table of per-type counters for one run.

    Args:
        result: RunResult
        title: Table title

    Returns:
        Rich Table object
    """
    table = Table(title=title, header_style="bold cyan")
    table.add_column("Type", style="bold")
    table.add_column("Created", justify="right", style="green")
    table.add_column("Updated", justify="right", style="cyan")
    table.add_column("Skipped", justify="right", style="dim")

    table.add_row("Movies", str(result.movies_created), str(result.movies_updated), str(result.movies_skipped))
    table.add_row("Series", str(result.series_created), str(result.series_updated), str(result.series_skipped))
    table.add_row("Seasons", str(result.seasons_created), "-", str(result.seasons_skipped))
    table.add_row(
        "Episodes", str(result.episodes_created), str(result.episodes_updated), str(result.episodes_skipped)
    )

    return table


def _render_history_table(results, limit):
    """
    Create table for run history.

    Args:
        results: List of RunResult objects, newest first
        limit: Number of records shown

    Returns:
        Rich Table object
    """
    table = Table(title=f"Sync History (last {limit})", header_style="bold cyan")
    table.add_column("Started", style="bold")
    table.add_column("Kind")
    table.add_column("State")
    table.add_column("Duration", justify="right")
    table.add_column("Created", justify="right", style="green")
    table.add_column("Updated", justify="right", style="cyan")
    table.add_column("Deleted", justify="right")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Errors", justify="right", style="red")

    for result in results[:limit]:
        style = STATE_STYLES.get(result.state, "white")
        kind = "retry" if result.is_retry else "incremental" if result.was_incremental else "full"
        table.add_row(
            format_timestamp(result.start_time),
            kind,
            f"[{style}]{result.state.value.upper()}[/{style}]",
            format_duration(result.duration_seconds),
            str(result.movies_created + result.series_created + result.episodes_created),
            str(result.movies_updated + result.series_updated + result.episodes_updated),
            str(result.files_deleted),
            str(len(result.failed_items)),
            str(result.errors),
        )

    return table


def _render_failed_items_table(items):
    """
    Create table for failed items of the last run.

    Args:
        items: List of FailedItem objects

    Returns:
        Rich Table object
    """
    table = Table(title="Failed Items", header_style="bold cyan")
    table.add_column("Name", style="bold")
    table.add_column("Type")
    table.add_column("ID", justify="right")
    table.add_column("Episode")
    table.add_column("Error", style="red")
    table.add_column("When")

    for item in items:
        episode = ""
        if item.season_number is not None and item.episode_number is not None:
            episode = f"S{item.season_number:02d}E{item.episode_number:02d}"
        table.add_row(
            item.name,
            item.item_type.value,
            str(item.provider_id),
            episode,
            item.error,
            format_timestamp(item.timestamp),
        )

    return table


def _render_categories_table(categories, title="Categories"):
    """
    Create table for provider categories.

    Args:
        categories: List of Category objects
        title: Table title

    Returns:
        Rich Table object
    """
    table = Table(title=title, header_style="bold cyan")
    table.add_column("ID", style="bold", justify="right")
    table.add_column("Name")

    for category in sorted(categories, key=lambda c: c.name.lower()):
        table.add_row(str(category.category_id), category.name)

    return table
