"""Core CLI infrastructure."""

from .context import StrmarrContext
from .decorators import (
    with_database,
    with_engine,
    with_xtream,
)
from .exceptions import (
    StrmarrError,
    ConfigurationError,
    ConnectionError,
    SyncError,
)
from .hooks import get_hook_manager, trigger_hook
from .plugin_loader import StrmarrGroup

__all__ = [
    # Context
    "StrmarrContext",
    # Decorators
    "with_database",
    "with_engine",
    "with_xtream",
    # Exceptions
    "StrmarrError",
    "ConfigurationError",
    "ConnectionError",
    "SyncError",
    # Hooks
    "get_hook_manager",
    "trigger_hook",
    # Plugin loader
    "StrmarrGroup",
]
