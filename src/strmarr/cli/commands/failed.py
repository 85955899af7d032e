"""Failed command - list items that failed in the last run."""

import rich_click as click

from ..core import with_engine
from ..display import console, _render_failed_items_table


@click.command()
@with_engine()
def failed(engine):
    """Show items that failed in the last run."""
    items = engine.failed_items()

    if not items:
        console.print("[green]✓[/green] No failed items")
        return

    console.print(_render_failed_items_table(items))
    console.print("\n[dim]Run 'strmarr retry' to reprocess them.[/dim]")


# Export for lazy loading
cli = failed
