"""Output formatters for CLI."""

from datetime import datetime
from typing import Optional

from .console import console


def format_duration(seconds: float) -> str:
    """Render a duration as "1h 02m", "3m 05s" or "12.3s"."""
    if seconds >= 3600:
        hours, rest = divmod(int(seconds), 3600)
        return f"{hours}h {rest // 60:02d}m"
    if seconds >= 60:
        minutes, secs = divmod(int(seconds), 60)
        return f"{minutes}m {secs:02d}s"
    return f"{seconds:.1f}s"


def format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return "N/A"
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def format_run_result(result, title="Sync Results"):
    """
    Display one run result with a counters table and summary.

    Args:
        result: RunResult
        title: Table title
    """
    from .tables import _render_run_summary_table

    console.print(_render_run_summary_table(result, title=title))

    state_style = {"complete": "green", "cancelled": "yellow", "failed": "red"}.get(
        result.state.value, "white"
    )
    kind = "retry" if result.is_retry else "incremental" if result.was_incremental else "full"

    console.print(f"\n[bold]Summary:[/bold]")
    console.print(f"  State: [{state_style}]{result.state.value}[/{state_style}] ({kind})")
    console.print(f"  Duration: {format_duration(result.duration_seconds)}")
    if result.delta is not None:
        delta = result.delta
        console.print(
            f"  Changes: {delta.new} new, {delta.modified} modified, {delta.removed} removed, "
            f"{delta.unchanged} unchanged ({delta.change_percentage:.1f}%)"
        )
    console.print(f"  Orphans deleted: {result.files_deleted}")
    console.print(
        f"  Metadata: [green]{result.metadata_matched}[/green] matched, "
        f"[yellow]{result.metadata_unmatched}[/yellow] unmatched"
    )
    console.print(f"  Failed items: [red]{len(result.failed_items)}[/red]")
    console.print(f"  Errors: [red]{result.errors}[/red]")
    if result.error:
        console.print(f"  [red]Error:[/red] {result.error}")
