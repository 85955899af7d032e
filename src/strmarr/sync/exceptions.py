"""Errors raised by the reconciliation engine."""


class SyncError(Exception):
    """Base class for engine errors."""
    pass


class SyncAlreadyRunningError(SyncError):
    """A run was requested while another run is active."""
    pass


class SyncSuppressedError(SyncError):
    """A scheduled run was refused because automatic runs are suppressed."""
    pass


class SyncCancelledError(SyncError):
    """The current run was cancelled."""
    pass


class ItemNotFoundError(Exception):
    """The catalog source no longer knows an item under the requested ID."""
    pass
