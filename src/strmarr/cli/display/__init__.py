"""Display layer for CLI output."""

from .console import console
from .formatters import format_duration, format_run_result, format_timestamp
from .tables import (
    _render_categories_table,
    _render_failed_items_table,
    _render_history_table,
    _render_run_summary_table,
)

__all__ = [
    "console",
    "format_duration",
    "format_run_result",
    "format_timestamp",
    "_render_categories_table",
    "_render_failed_items_table",
    "_render_history_table",
    "_render_run_summary_table",
]
