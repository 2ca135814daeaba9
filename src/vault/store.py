"""
Snapshot store for the vault package.

The index is a single JSON file holding every snapshot. It is loaded once at
construction and rewritten in full after each mutation.
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Iterable, List, Optional, Set, Tuple

from filelock import FileLock

from .backup import BackupStrategy
from .config import ShieldConfig
from .exceptions import IndexCorruptionError, IndexWriteError
from .exclusion import ExclusionMatcher
from .models import (
    BackupIndex,
    BackupMethod,
    EventKind,
    PendingChange,
    Snapshot,
    SnapshotFileEntry,
    VaultStats,
    blob_filename_for,
    now_millis,
    parse_snapshot_ref,
    snapshot_id_for,
)
from .workspace import iter_workspace_files

logger = logging.getLogger(__name__)


class SnapshotStore:
    """Turns batches of pending changes into persisted snapshots."""

    def __init__(
        self,
        config: ShieldConfig,
        strategy: Optional[BackupStrategy] = None,
        matcher: Optional[ExclusionMatcher] = None,
    ):
        """
        Initialize the store, creating the vault on first use.

        Args:
            config: Workspace configuration
            strategy: Backup strategy for this session
            matcher: Exclusion matcher (built from config if omitted)
        """
        self.config = config
        self.strategy = strategy or BackupStrategy()
        self.matcher = matcher or ExclusionMatcher(config.exclude_patterns)
        self._lock = threading.RLock()
        self._index_lock = FileLock(str(config.index_path) + ".lck")

        self._ensure_vault()
        self._index = self._load_index()
        self._timestamps: Set[int] = {s.timestamp_millis for s in self._index.snapshots}

    @property
    def snapshots_dir(self) -> Path:
        return self.config.snapshots_dir

    def _ensure_vault(self) -> None:
        self.config.vault_dir.mkdir(parents=True, exist_ok=True)
        self.config.snapshots_dir.mkdir(parents=True, exist_ok=True)

    def _load_index(self) -> BackupIndex:
        """Load the index; a missing or corrupted file yields an empty one."""
        path = self.config.index_path
        if not path.exists():
            return BackupIndex()

        try:
            return self._parse_index(path.read_text(encoding="utf-8"))
        except (OSError, IndexCorruptionError) as e:
            logger.warning(f"Ignoring unreadable snapshot index {path}: {e}")
            return BackupIndex()

    @staticmethod
    def _parse_index(raw: str) -> BackupIndex:
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise IndexCorruptionError("Index root is not an object")
            return BackupIndex.from_dict(data)
        except (ValueError, KeyError, TypeError) as e:
            raise IndexCorruptionError(str(e)) from e

    @property
    def index_lock(self) -> FileLock:
        """Cross-process lock guarding read-modify-write cycles of the index."""
        return self._index_lock

    def _save_index(self) -> None:
        """Rewrite the whole index atomically. Callers hold the index lock."""
        path = self.config.index_path
        tmp_path = path.with_name(path.name + ".tmp")
        payload = json.dumps(self._index.to_dict(), indent=2)

        try:
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise

    def reload(self) -> None:
        """Re-read the index from disk, e.g. after another process cleaned it."""
        with self._lock:
            self._refresh()

    def _refresh(self) -> None:
        self._index = self._load_index()
        self._timestamps = {s.timestamp_millis for s in self._index.snapshots}

    def should_exclude(self, relative_path: str) -> bool:
        return self.matcher.should_exclude(relative_path)

    def _next_timestamp(self) -> int:
        timestamp = now_millis()
        while timestamp in self._timestamps:
            timestamp += 1
        return timestamp

    def create_snapshot(
        self,
        changes: Iterable[PendingChange],
        message: Optional[str] = None,
    ) -> Optional[Snapshot]:
        """
        Back up a batch of changes and append it as one snapshot.

        Excluded paths are skipped; a change whose backup fails is logged
        and left out. Nothing is persisted when no entry survives.

        Args:
            changes: Reconciled pending changes, in capture order
            message: Optional description

        Returns:
            The persisted snapshot, or None
        """
        changes = list(changes)
        if not changes:
            return None

        with self._index_lock, self._lock:
            # Another process may have appended or pruned since the last write
            self._refresh()
            timestamp = self._next_timestamp()
            entries: List[SnapshotFileEntry] = []
            claimed: Set[str] = set()

            for change in changes:
                if self.should_exclude(change.relative_path):
                    logger.debug(f"Skipping excluded path: {change.relative_path}")
                    continue
                if change.renamed_to and self.should_exclude(change.renamed_to):
                    logger.debug(f"Skipping rename into excluded path: {change.renamed_to}")
                    continue

                entry = self._backup_change(timestamp, change, claimed, entries)
                if entry is not None:
                    entries.append(entry)

            if not entries:
                return None

            snapshot = Snapshot(
                id=snapshot_id_for(timestamp),
                timestamp_millis=timestamp,
                files=entries,
                message=message,
            )
            self._index.snapshots.append(snapshot)
            try:
                self._save_index()
            except OSError as e:
                self._index.snapshots.pop()
                self._discard_blobs(entries)
                logger.error(f"Failed to write snapshot index, dropping {snapshot.id}: {e}")
                raise IndexWriteError(
                    f"Could not persist snapshot {snapshot.id}: {e}",
                    snapshot_id=snapshot.id,
                ) from e
            self._timestamps.add(timestamp)

        logger.info(f"Created snapshot {snapshot.id} with {len(entries)} file(s)")
        return snapshot

    def _backup_change(
        self,
        timestamp: int,
        change: PendingChange,
        claimed: Set[str],
        batch_entries: List[SnapshotFileEntry],
    ) -> Optional[SnapshotFileEntry]:
        workspace = self.config.workspace
        source_path = workspace / change.relative_path
        renamed_to_path = workspace / change.renamed_to if change.renamed_to else None

        if change.event_kind == EventKind.CREATE:
            # Nothing existed before the event, so there is nothing to copy
            return SnapshotFileEntry(
                path=change.relative_path,
                blob_filename=None,
                size_bytes=0,
                event_kind=EventKind.CREATE,
                renamed_to=change.renamed_to,
                backup_method=BackupMethod.HARDLINK,
            )

        if change.event_kind == EventKind.CHANGE and change.pre_event_bytes is not None:
            self._detach_linked_blobs(source_path, change.pre_event_bytes, batch_entries)

        blob_filename = self._claim_blob_filename(timestamp, change.relative_path, claimed)
        blob_path = self.snapshots_dir / blob_filename

        result = self.strategy.backup(
            source_path,
            blob_path,
            change.event_kind,
            pre_event_bytes=change.pre_event_bytes,
            renamed_to_path=renamed_to_path,
        )

        if not result.success:
            logger.error(f"Failed to back up {change.relative_path}: {result.error}")
            return None

        try:
            size = blob_path.stat().st_size
        except OSError:
            size = len(change.pre_event_bytes or b"")

        return SnapshotFileEntry(
            path=change.relative_path,
            blob_filename=blob_filename,
            size_bytes=size,
            event_kind=change.event_kind,
            renamed_to=change.renamed_to,
            backup_method=result.method,
        )

    def _claim_blob_filename(self, timestamp: int, relative_path: str, claimed: Set[str]) -> str:
        """
        Pick a blob name no other entry of the batch uses.

        Distinct paths can flatten to the same name (``d/f.txt`` and
        ``d__f.txt``), so later claimants get a numeric suffix.
        """
        base = blob_filename_for(timestamp, relative_path)
        name = base
        suffix = 1
        while name in claimed or (self.snapshots_dir / name).exists():
            name = f"{base}.{suffix}"
            suffix += 1
        claimed.add(name)
        return name

    def _detach_linked_blobs(
        self,
        path: Path,
        content: bytes,
        batch_entries: List[SnapshotFileEntry],
    ) -> None:
        """
        Give hardlinked blobs that share ``path``'s inode their own copy.

        An in-place write to ``path`` has already reached such blobs, and
        ``content`` holds the bytes they were taken to preserve.
        """
        try:
            stat = path.stat()
        except OSError:
            return
        if stat.st_nlink <= 1:
            return

        candidates = [entry for snapshot in self._index.snapshots for entry in snapshot.files]
        candidates.extend(batch_entries)

        for entry in candidates:
            if entry.backup_method != BackupMethod.HARDLINK:
                continue
            blob_path = self.blob_path(entry)
            if blob_path is None:
                continue
            try:
                blob_stat = blob_path.stat()
            except OSError:
                continue
            if (blob_stat.st_dev, blob_stat.st_ino) != (stat.st_dev, stat.st_ino):
                continue

            result = self.strategy.write_blob(content, blob_path)
            if result.success:
                logger.info(f"Detached blob {entry.blob_filename} from {path}")
            else:
                logger.warning(f"Could not detach blob {entry.blob_filename}: {result.error}")

    def _discard_blobs(self, entries: List[SnapshotFileEntry]) -> None:
        for entry in entries:
            blob_path = self.blob_path(entry)
            if blob_path is None:
                continue
            try:
                blob_path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Could not remove blob {blob_path}: {e}")

    def snapshot_workspace(self, message: Optional[str] = None) -> Optional[Snapshot]:
        """
        Checkpoint every non-excluded file as a CHANGE entry.

        Restoring the result puts each file back to its current content.
        """
        changes = []
        for relative_path in iter_workspace_files(
            self.config.workspace, self.matcher, skip_dir=self.config.vault_dir
        ):
            try:
                content = (self.config.workspace / relative_path).read_bytes()
            except OSError as e:
                logger.warning(f"Cannot read {relative_path} for checkpoint: {e}")
                continue
            changes.append(PendingChange(
                relative_path=relative_path,
                event_kind=EventKind.CHANGE,
                pre_event_bytes=content,
            ))

        return self.create_snapshot(changes, message=message or "workspace checkpoint")

    def list_snapshots(self) -> List[Snapshot]:
        """All snapshots, newest first."""
        with self._lock:
            return sorted(self._index.snapshots, key=lambda s: s.timestamp_millis, reverse=True)

    def get_snapshot(self, ref) -> Optional[Snapshot]:
        """
        Find a snapshot by id.

        Args:
            ref: ``snap_<millis>`` or the bare millisecond timestamp

        Returns:
            The snapshot, or None
        """
        with self._lock:
            for snapshot in self._index.snapshots:
                if snapshot.id == ref:
                    return snapshot

        timestamp = parse_snapshot_ref(ref)
        if timestamp is None:
            return None
        return self.get_snapshot_by_timestamp(timestamp)

    def get_snapshot_by_timestamp(self, timestamp_millis: int) -> Optional[Snapshot]:
        with self._lock:
            for snapshot in self._index.snapshots:
                if snapshot.timestamp_millis == timestamp_millis:
                    return snapshot
        return None

    def get_file_history(self, relative_path: str) -> List[Tuple[Snapshot, SnapshotFileEntry]]:
        """
        Every snapshot entry recorded for a path, newest first.

        Returns:
            List of (snapshot, entry) pairs
        """
        history = []
        for snapshot in self.list_snapshots():
            entry = snapshot.find_file(relative_path)
            if entry is not None:
                history.append((snapshot, entry))
        return history

    def get_latest_backup_content(self, relative_path: str) -> Optional[Tuple[bytes, int]]:
        """
        Newest preserved bytes for a path.

        Returns:
            (content, snapshot timestamp) or None when no blob is readable
        """
        for snapshot, entry in self.get_file_history(relative_path):
            blob_path = self.blob_path(entry)
            if blob_path is None or not blob_path.exists():
                continue
            try:
                return blob_path.read_bytes(), snapshot.timestamp_millis
            except OSError as e:
                logger.warning(f"Cannot read blob {blob_path}: {e}")
        return None

    def blob_path(self, entry: SnapshotFileEntry) -> Optional[Path]:
        """Absolute blob path for an entry, None for CREATE entries."""
        if not entry.blob_filename:
            return None
        return self.snapshots_dir / entry.blob_filename

    def replace_snapshots(self, snapshots: List[Snapshot]) -> None:
        """Replace the index content and rewrite it."""
        with self._index_lock, self._lock:
            self._index.snapshots = list(snapshots)
            self._timestamps = {s.timestamp_millis for s in self._index.snapshots}
            self._save_index()

    def get_stats(self) -> VaultStats:
        """Aggregate counts over the index plus this session's backup counters."""
        unique = set()
        total_files = 0
        total_size = 0

        with self._lock:
            for snapshot in self._index.snapshots:
                for entry in snapshot.files:
                    unique.add(entry.path)
                    total_files += 1
                    total_size += entry.size_bytes
            count = len(self._index.snapshots)

        return VaultStats(
            snapshots=count,
            total_files=total_files,
            total_size=total_size,
            unique_files=len(unique),
            backups=self.strategy.stats,
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._index.snapshots)
