"""Clear-cache command - forget all metadata lookups."""

import rich_click as click

from ...sync.metadata import MetadataCache
from ..core import with_database
from ..display import console


@click.command("clear-cache")
@click.confirmation_option(prompt="Clear the metadata lookup cache?")
@with_database
def clear_cache(database):
    """Clear cached TMDB/TVDB lookups so titles are searched again."""
    count = MetadataCache(database).clear()
    console.print(f"[green]✓[/green] Cleared {count} cached lookup(s)")


# Export for lazy loading
cli = clear_cache
