"""Service layer for API wrappers and resource management."""

from .database import DatabaseService
from .engine import EngineService
from .xtream import XtreamService

__all__ = [
    "DatabaseService",
    "EngineService",
    "XtreamService",
]
