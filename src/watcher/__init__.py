"""
File Watcher Package

Watches a workspace for file system changes and records every change
into the vault as snapshots.

Features:
- Per-path debouncing of writes
- Rename detection via disappearance + appearance pairing
- Coalescing of bursts into one snapshot per batch window
- Muting while a restore rewrites the workspace
"""

from .models import (
    PathState,
    RawFSEvent,
    TrackedFile,
    PendingDeletion,
    compute_content_hash,
)

from .config import WatcherConfig

from .exceptions import (
    WatcherError,
    WorkspaceNotFoundError,
    WatcherNotRunningError,
    WatcherAlreadyRunningError,
)

from .tracking import TrackedFileState
from .fs_watcher import FSWatcher, FSEventHandler
from .event_processor import (
    ChangeDetector,
    ChangeDebouncer,
    RenameReconciler,
    PendingChangeQueue,
)
from .process import ShieldWatcher, LogFn, default_log


__all__ = [
    # Models
    "PathState",
    "RawFSEvent",
    "TrackedFile",
    "PendingDeletion",
    "compute_content_hash",
    # Config
    "WatcherConfig",
    # Exceptions
    "WatcherError",
    "WorkspaceNotFoundError",
    "WatcherNotRunningError",
    "WatcherAlreadyRunningError",
    # Components
    "TrackedFileState",
    "FSWatcher",
    "FSEventHandler",
    "ChangeDetector",
    "ChangeDebouncer",
    "RenameReconciler",
    "PendingChangeQueue",
    # Main Process
    "ShieldWatcher",
    "LogFn",
    "default_log",
]

__version__ = "0.1.0"
