"""Reverses recorded snapshots against the live workspace."""

import logging
import os
import shutil
from pathlib import Path
from typing import Optional

from .exceptions import SnapshotNotFoundError
from .lock import RestoreLock
from .models import EventKind, RestoreResult, Snapshot, SnapshotFileEntry
from .store import SnapshotStore
from .workspace import resolve_in_workspace

logger = logging.getLogger(__name__)


class RestoreEngine:
    """
    Undoes snapshots recorded by a :class:`SnapshotStore`.

    Every operation holds the restore lock so a running watcher does not
    record the restore's own writes as new changes.
    """

    def __init__(
        self,
        store: SnapshotStore,
        lock: Optional[RestoreLock] = None,
        hold_seconds: float = 5.0,
    ):
        """
        Args:
            store: Store providing the index and blobs
            lock: Restore lock (built from the store's config if omitted)
            hold_seconds: How long watchers stay muted after a restore; must
                exceed the watcher's debounce, rename grace and batch windows
        """
        self.store = store
        self.workspace = store.config.workspace
        self.lock = lock or RestoreLock(
            store.config.restore_lock_path,
            hold_seconds=hold_seconds,
            timeout=store.config.restore_lock_timeout_s,
        )

    def restore_snapshot(self, snapshot_ref) -> RestoreResult:
        """
        Undo every event recorded in a snapshot.

        Entries are undone in reverse capture order. Failures are counted
        per file and never abort the remaining entries.

        Args:
            snapshot_ref: ``snap_<millis>`` or the bare millisecond timestamp

        Returns:
            Counts of restored, failed, skipped and deleted files

        Raises:
            SnapshotNotFoundError: If no snapshot matches
        """
        snapshot = self.store.get_snapshot(snapshot_ref)
        if snapshot is None:
            raise SnapshotNotFoundError(
                f"Snapshot not found: {snapshot_ref}", snapshot_ref=str(snapshot_ref)
            )

        with self.lock.hold():
            result = self._apply(snapshot)

        logger.info(
            f"Restored {snapshot.id}: {result.restored} restored, {result.deleted} deleted, "
            f"{result.skipped} skipped, {result.failed} failed"
        )
        return result

    def restore_to_snapshot(self, timestamp_millis: int) -> RestoreResult:
        """
        Restore the snapshot taken at exactly ``timestamp_millis``.

        Raises:
            SnapshotNotFoundError: If no snapshot has that timestamp
        """
        snapshot = self.store.get_snapshot_by_timestamp(int(timestamp_millis))
        if snapshot is None:
            raise SnapshotNotFoundError(
                f"No snapshot found at timestamp: {timestamp_millis}",
                snapshot_ref=str(timestamp_millis),
            )
        return self.restore_snapshot(snapshot.id)

    def restore_latest(self) -> RestoreResult:
        """Restore the newest snapshot."""
        snapshots = self.store.list_snapshots()
        if not snapshots:
            raise SnapshotNotFoundError("No snapshots available")
        return self.restore_snapshot(snapshots[0].id)

    def restore_file(self, relative_path: str) -> bool:
        """
        Overwrite or recreate one file from its newest preserved blob.

        Event kinds are ignored; entries without a blob are skipped.

        Returns:
            True if the file was written
        """
        target = resolve_in_workspace(self.workspace, relative_path)
        if target is None:
            logger.error(f"Refusing to restore outside the workspace: {relative_path}")
            return False

        for snapshot, entry in self.store.get_file_history(relative_path):
            blob_path = self.store.blob_path(entry)
            if blob_path is None:
                continue
            if not blob_path.exists():
                logger.error(f"Backup file not found: {entry.blob_filename}")
                return False

            with self.lock.hold():
                try:
                    self._copy_blob(blob_path, target)
                except OSError as e:
                    logger.error(f"Failed to restore {relative_path}: {e}")
                    return False

            logger.info(f"Restored {relative_path} from {snapshot.id}")
            return True

        logger.error(f"No backups found for: {relative_path}")
        return False

    def _apply(self, snapshot: Snapshot) -> RestoreResult:
        result = RestoreResult()
        for entry in reversed(snapshot.files):
            try:
                self._undo(entry, result)
            except OSError as e:
                logger.error(f"Failed to restore {entry.path}: {e}")
                result.failed += 1
        return result

    def _undo(self, entry: SnapshotFileEntry, result: RestoreResult) -> None:
        target = resolve_in_workspace(self.workspace, entry.path)
        if target is None:
            logger.error(f"Refusing to restore outside the workspace: {entry.path}")
            result.failed += 1
            return

        if entry.event_kind == EventKind.CREATE:
            if self._remove(target):
                result.deleted += 1
            else:
                result.skipped += 1
            return

        if entry.event_kind == EventKind.RENAME and entry.renamed_to:
            renamed = resolve_in_workspace(self.workspace, entry.renamed_to)
            if renamed is None:
                logger.error(f"Refusing to touch path outside the workspace: {entry.renamed_to}")
            elif self._remove(renamed):
                result.deleted += 1

        blob_path = self.store.blob_path(entry)
        if blob_path is None or not blob_path.exists():
            logger.warning(f"Missing blob for {entry.path} ({entry.event_kind.value})")
            result.failed += 1
            return

        self._copy_blob(blob_path, target)
        result.restored += 1

    @staticmethod
    def _remove(path: Path) -> bool:
        if path.is_file() or path.is_symlink():
            path.unlink()
            return True
        return False

    @staticmethod
    def _copy_blob(blob_path: Path, target: Path) -> None:
        """Write an independent copy of the blob, never a link back to it."""
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.is_symlink():
            target.unlink()
        elif target.exists() and os.path.samefile(blob_path, target):
            # Still linked to the blob; detach so later edits leave the blob intact
            target.unlink()
        shutil.copyfile(blob_path, target)
