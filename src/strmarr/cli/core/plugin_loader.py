"""Command group that imports subcommands on demand."""

import importlib
import pkgutil
from typing import Dict, Optional

import rich_click as click
from rich_click import RichGroup

from ..commands.common import console
from .exceptions import StrmarrError

# Modules in the commands package that hold helpers, not commands
HELPER_MODULES = {"common"}


class StrmarrGroup(RichGroup):
    """
    Root group for the strmarr CLI.

    Each module in ``commands_package`` exposes its command as ``cli``; the
    module is imported only when that command runs (or help is rendered).
    Module names map to command names with dashes (clear_cache -> clear-cache).
    """

    ALIASES = {
        'st': 'status',
        'hist': 'history',
    }

    def __init__(
        self,
        *args,
        commands_package: str = 'strmarr.cli.commands',
        aliases: Optional[Dict[str, str]] = None,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.commands_package = commands_package
        self.aliases = dict(self.ALIASES if aliases is None else aliases)

    def list_commands(self, ctx):
        package = importlib.import_module(self.commands_package)
        names = {
            module.name.replace('_', '-')
            for module in pkgutil.iter_modules(package.__path__)
            if module.name not in HELPER_MODULES
        }
        names.update(self.commands)
        return sorted(names)

    def get_command(self, ctx, cmd_name):
        """Resolve an alias, then return a registered or lazily imported command."""
        name = self.aliases.get(cmd_name, cmd_name)
        if name in self.commands:
            return self.commands[name]
        return self._import_command(name)

    def _import_command(self, name: str):
        module_name = name.replace('-', '_')
        if module_name in HELPER_MODULES:
            return None

        qualified = f"{self.commands_package}.{module_name}"
        try:
            module = importlib.import_module(qualified)
        except ModuleNotFoundError as e:
            # Only an unknown command name is a miss; broken imports surface
            if e.name != qualified:
                raise
            return None
        return getattr(module, 'cli', None)

    def invoke(self, ctx):
        """Invoke the subcommand, turning StrmarrError into a message and exit code."""
        try:
            return super().invoke(ctx)
        except StrmarrError as e:
            console.print(f"[red]Error:[/red] {e}")
            ctx.exit(e.exit_code)
