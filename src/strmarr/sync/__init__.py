"""Catalog-to-library reconciliation."""

from .delta import DeltaCalculator
from .engine import ReconciliationEngine
from .exceptions import (
    ItemNotFoundError,
    SyncAlreadyRunningError,
    SyncCancelledError,
    SyncError,
    SyncSuppressedError,
)
from .interfaces import CancellationToken, CatalogSource, MetadataSearch
from .metadata import MetadataCache, MetadataResolver
from .progress import ProgressTracker, RunHistory
from .snapshot import SnapshotStore

__all__ = [
    "CancellationToken",
    "CatalogSource",
    "DeltaCalculator",
    "ItemNotFoundError",
    "MetadataCache",
    "MetadataResolver",
    "MetadataSearch",
    "ProgressTracker",
    "ReconciliationEngine",
    "RunHistory",
    "SnapshotStore",
    "SyncAlreadyRunningError",
    "SyncCancelledError",
    "SyncError",
    "SyncSuppressedError",
]
