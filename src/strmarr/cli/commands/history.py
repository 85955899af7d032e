"""History command - show past sync runs."""

import rich_click as click

from ..core import with_engine
from ..display import console, _render_history_table


@click.command()
@click.option(
    "--limit",
    "-n",
    default=10,
    help="Number of recent runs to show",
    show_default=True,
)
@with_engine()
def history(engine, limit):
    """Show sync history."""
    results = engine.history.all()

    if not results:
        console.print("[yellow]No sync history found. Run 'strmarr sync' first.[/yellow]")
        return

    console.print(_render_history_table(results, limit))


# Export for lazy loading
cli = history
