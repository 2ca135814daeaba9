"""Data models for the vault package."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import time


INDEX_FORMAT_VERSION = 2
SNAPSHOT_ID_PREFIX = "snap_"


class EventKind(Enum):
    """Kinds of file events a snapshot can record."""
    CHANGE = "change"
    DELETE = "delete"
    RENAME = "rename"
    CREATE = "create"


class BackupMethod(Enum):
    """Mechanism used to store a blob."""
    HARDLINK = "hardlink"
    COPY = "copy"


@dataclass
class PendingChange:
    """
    A reconciled file event waiting for the next batch flush.

    Attributes:
        relative_path: Workspace-relative path, forward slashes
        event_kind: What happened to the path
        pre_event_bytes: File content before the event, if captured
        renamed_to: For RENAME, the new relative path
        observed_at: Unix timestamp when the change was classified
    """
    relative_path: str
    event_kind: EventKind
    pre_event_bytes: Optional[bytes] = None
    renamed_to: Optional[str] = None
    observed_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class SnapshotFileEntry:
    """
    One file recorded in a snapshot.

    Attributes:
        path: Workspace-relative path of the file before the event
        blob_filename: Name of the blob in the snapshots dir (None for CREATE)
        size_bytes: Size of the preserved content
        event_kind: Event that was recorded
        renamed_to: For RENAME, the new relative path
        backup_method: How the blob was written
    """
    path: str
    blob_filename: Optional[str]
    size_bytes: int
    event_kind: EventKind
    renamed_to: Optional[str] = None
    backup_method: BackupMethod = BackupMethod.COPY

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "path": self.path,
            "blob_filename": self.blob_filename,
            "size_bytes": self.size_bytes,
            "event_kind": self.event_kind.value,
            "renamed_to": self.renamed_to,
            "backup_method": self.backup_method.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SnapshotFileEntry":
        """Create from dictionary."""
        return cls(
            path=data["path"],
            blob_filename=data.get("blob_filename"),
            size_bytes=int(data.get("size_bytes", 0)),
            event_kind=EventKind(data.get("event_kind", EventKind.CHANGE.value)),
            renamed_to=data.get("renamed_to"),
            backup_method=BackupMethod(data.get("backup_method", BackupMethod.COPY.value)),
        )


@dataclass(frozen=True)
class Snapshot:
    """
    A batch of file-level changes captured together.

    Attributes:
        id: ``snap_<timestamp_millis>``
        timestamp_millis: Batch timestamp, milliseconds since the epoch
        files: Recorded file entries in the order they were captured
        message: Optional description
    """
    id: str
    timestamp_millis: int
    files: List[SnapshotFileEntry] = field(default_factory=list)
    message: Optional[str] = None

    @property
    def total_size(self) -> int:
        return sum(f.size_bytes for f in self.files)

    def find_file(self, path: str) -> Optional[SnapshotFileEntry]:
        """Return the entry recorded for ``path``, if any."""
        for entry in self.files:
            if entry.path == path:
                return entry
        return None

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "timestamp_millis": self.timestamp_millis,
            "files": [f.to_dict() for f in self.files],
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Snapshot":
        """Create from dictionary."""
        timestamp = int(data["timestamp_millis"])
        return cls(
            id=data.get("id") or snapshot_id_for(timestamp),
            timestamp_millis=timestamp,
            files=[SnapshotFileEntry.from_dict(f) for f in data.get("files") or []],
            message=data.get("message"),
        )


@dataclass
class BackupIndex:
    """The persisted list of snapshots."""
    snapshots: List[Snapshot] = field(default_factory=list)
    version: int = INDEX_FORMAT_VERSION

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "snapshots": [s.to_dict() for s in self.snapshots],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackupIndex":
        return cls(
            snapshots=[Snapshot.from_dict(s) for s in data.get("snapshots") or []],
            version=data.get("version") or INDEX_FORMAT_VERSION,
        )


@dataclass(frozen=True)
class BackupResult:
    """Outcome of backing up one file."""
    success: bool
    method: Optional[BackupMethod] = None
    error: Optional[str] = None


@dataclass
class BackupStats:
    """Counters kept by a backup strategy."""
    hardlinks: int = 0
    copies: int = 0
    failures: int = 0
    hardlink_saved_bytes: int = 0

    def to_dict(self) -> dict:
        return {
            "hardlinks": self.hardlinks,
            "copies": self.copies,
            "failures": self.failures,
            "hardlink_saved_bytes": self.hardlink_saved_bytes,
        }


@dataclass
class RestoreResult:
    """Per-file outcome counts of a restore."""
    restored: int = 0
    failed: int = 0
    skipped: int = 0
    deleted: int = 0

    def to_dict(self) -> dict:
        return {
            "restored": self.restored,
            "failed": self.failed,
            "skipped": self.skipped,
            "deleted": self.deleted,
        }


@dataclass(frozen=True)
class CleanupResult:
    """Outcome of a retention pass."""
    removed: int = 0
    freed_bytes: int = 0


@dataclass(frozen=True)
class VaultStats:
    """Aggregate figures over the whole index."""
    snapshots: int
    total_files: int
    total_size: int
    unique_files: int
    backups: BackupStats


def snapshot_id_for(timestamp_millis: int) -> str:
    """Build the snapshot id for a batch timestamp."""
    return f"{SNAPSHOT_ID_PREFIX}{timestamp_millis}"


def parse_snapshot_ref(ref) -> Optional[int]:
    """
    Extract the timestamp from ``snap_<millis>`` or a bare timestamp.

    Returns:
        The millisecond timestamp, or None if ``ref`` is neither form
    """
    if isinstance(ref, int):
        return ref
    text = str(ref).strip()
    if text.startswith(SNAPSHOT_ID_PREFIX):
        text = text[len(SNAPSHOT_ID_PREFIX):]
    if text.isdigit():
        return int(text)
    return None


def escape_path(relative_path: str) -> str:
    """Flatten a relative path into a single blob-safe filename component."""
    return relative_path.replace("/", "__").replace("\\", "__")


def blob_filename_for(timestamp_millis: int, relative_path: str) -> str:
    """Name of the blob holding ``relative_path`` for a snapshot."""
    return f"{timestamp_millis}_{escape_path(relative_path)}"


def now_millis() -> int:
    return int(time.time() * 1000)
