"""Custom exceptions for the file watcher package."""

from ..vault.exceptions import ShieldError


class WatcherError(ShieldError):
    """Base exception for all watcher errors."""
    pass


class WorkspaceNotFoundError(WatcherError):
    """Workspace directory does not exist."""
    pass


class WatcherNotRunningError(WatcherError):
    """Watcher process is not running."""
    pass


class WatcherAlreadyRunningError(WatcherError):
    """Watcher process is already running."""
    pass
