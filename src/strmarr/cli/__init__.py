"""strmarr CLI - mirror an Xtream catalog into a .strm media library."""

import os
import sys

# Configure rich-click BEFORE importing click
import rich_click as click

# Enable rich-click formatting
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.MAX_WIDTH = 100

from .. import __version__
from ..config import setup_logging
from .core import ConfigurationError, StrmarrContext, StrmarrGroup, get_hook_manager
from .display.console import console


@click.group(
    cls=StrmarrGroup,
    commands_package='strmarr.cli.commands',
    context_settings=dict(
        auto_envvar_prefix='STRMARR',
        help_option_names=['-h', '--help'],
    ),
)
@click.version_option(version=__version__, help='Show the version and exit.')
@click.option(
    '-c',
    '--config',
    default=None,
    help='Path to config file (or set STRMARR_CONFIG)',
)
@click.option(
    '--db',
    default=None,
    help='Path to state database (or set STRMARR_DB)',
)
@click.pass_context
def cli(ctx, config, db):
    """Mirror an Xtream provider's movies and series into a .strm library."""

    # Resolve paths: CLI > env var > default
    config_path = config or os.environ.get('STRMARR_CONFIG', 'config.yaml')
    db_path = db or os.environ.get('STRMARR_DB')

    try:
        app_ctx = StrmarrContext.create(config_path, db_path)
    except ConfigurationError as e:
        console.print(f"[red]Configuration Error:[/red] {e}")
        console.print("\n[cyan]Tip:[/cyan] Copy config.example.yaml to config.yaml and fill in your provider.")
        sys.exit(ConfigurationError.exit_code)

    ctx.obj = app_ctx

    setup_logging(app_ctx.config)

    hook_manager = get_hook_manager()
    hook_manager.clear()
    hook_manager.load_from_config(app_ctx.config)


if __name__ == '__main__':
    cli()
