"""Data models for the file watcher package."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional
import hashlib
import time


class PathState(Enum):
    """Where a path sits in the detector's state machine."""
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    PENDING_DELETION = "pending_deletion"


@dataclass
class RawFSEvent:
    """
    Raw event from the filesystem watcher before processing.

    Attributes:
        event_type: Raw event type string (created, deleted, modified, moved)
        src_path: Source path of the event
        dest_path: Destination path (for move events)
        is_directory: Whether this is a directory event
        timestamp: Unix timestamp when the event occurred
    """
    event_type: str
    src_path: Path
    dest_path: Optional[Path] = None
    is_directory: bool = False
    timestamp: float = field(default_factory=time.time)


@dataclass
class TrackedFile:
    """Last observed content of a tracked file."""
    content: bytes
    observed_at: float = field(default_factory=time.time)


@dataclass
class PendingDeletion:
    """
    A disappeared path waiting out the rename grace window.

    Attributes:
        relative_path: Path that disappeared
        content: Last known bytes of the path
        disappeared_at: When the disappearance was observed
        deadline: When it becomes a genuine delete
    """
    relative_path: str
    content: bytes
    disappeared_at: float
    deadline: float


def compute_content_hash(content: bytes, algorithm: str = "sha256") -> str:
    """
    Compute hash of in-memory file contents.

    Args:
        content: File bytes
        algorithm: Hash algorithm to use (default: sha256)

    Returns:
        Hex digest of the hash
    """
    hasher = hashlib.new(algorithm)
    hasher.update(content)
    return hasher.hexdigest()
