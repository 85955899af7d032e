"""Categories command - list provider categories."""

import rich_click as click

from ...api.xtream import XtreamApiError
from ..core import ConnectionError, with_xtream
from ..display import console, _render_categories_table


@click.command()
@click.option(
    "--series",
    is_flag=True,
    help="List series categories instead of movie categories",
)
@with_xtream(test_connection=False)
def categories(xtream, series):
    """List provider categories with their IDs.

    Use the IDs in sync.selected_vod_categories, sync.selected_series_categories
    and the folder mappings.
    """
    try:
        items = xtream.get_series_categories() if series else xtream.get_vod_categories()
    except XtreamApiError as e:
        raise ConnectionError(f"Failed to fetch categories: {e}")

    if not items:
        console.print("[yellow]The provider returned no categories.[/yellow]")
        return

    title = "Series Categories" if series else "Movie Categories"
    console.print(_render_categories_table(items, title=title))


# Export for lazy loading
cli = categories
