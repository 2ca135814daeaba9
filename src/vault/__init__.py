"""
Vault Package

Stores the pre-change state of workspace files and reverses recorded
changes on demand.

Features:
- Hardlink-first backups with copy fallback and per-device capability cache
- Snapshot index persisted as one JSON file
- Restore of delete, change, rename and create events
- Age-based retention of snapshots and blobs
"""

from .models import (
    EventKind,
    BackupMethod,
    PendingChange,
    Snapshot,
    SnapshotFileEntry,
    BackupIndex,
    BackupResult,
    BackupStats,
    RestoreResult,
    CleanupResult,
    VaultStats,
)

from .config import ShieldConfig, DEFAULT_EXCLUDE_PATTERNS

from .exceptions import (
    ShieldError,
    VaultError,
    IndexCorruptionError,
    SnapshotNotFoundError,
    RestoreLockedError,
    IndexWriteError,
)

from .exclusion import ExclusionMatcher
from .backup import BackupStrategy, is_hardlinked, hardlink_count
from .store import SnapshotStore
from .lock import RestoreLock
from .restore import RestoreEngine
from .retention import clean_old_snapshots


__all__ = [
    # Models
    "EventKind",
    "BackupMethod",
    "PendingChange",
    "Snapshot",
    "SnapshotFileEntry",
    "BackupIndex",
    "BackupResult",
    "BackupStats",
    "RestoreResult",
    "CleanupResult",
    "VaultStats",
    # Config
    "ShieldConfig",
    "DEFAULT_EXCLUDE_PATTERNS",
    # Exceptions
    "ShieldError",
    "VaultError",
    "IndexCorruptionError",
    "SnapshotNotFoundError",
    "RestoreLockedError",
    "IndexWriteError",
    # Components
    "ExclusionMatcher",
    "BackupStrategy",
    "is_hardlinked",
    "hardlink_count",
    "SnapshotStore",
    "RestoreLock",
    "RestoreEngine",
    "clean_old_snapshots",
]

__version__ = "0.1.0"
