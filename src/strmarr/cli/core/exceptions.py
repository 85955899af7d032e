"""Custom CLI exceptions."""


class StrmarrError(Exception):
    """Base exception for strmarr CLI errors."""
    exit_code = 1


class ConfigurationError(StrmarrError):
    """Raised when configuration is invalid or missing."""
    exit_code = 2


class ConnectionError(StrmarrError):
    """Raised when unable to connect to a service."""
    exit_code = 3


class SyncError(StrmarrError):
    """Raised when a sync run fails or cannot start."""
    exit_code = 4
