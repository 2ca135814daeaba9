"""Age-based pruning of snapshots and their blobs."""

import logging
from typing import Optional

from .models import CleanupResult, now_millis
from .store import SnapshotStore
from .workspace import remove_empty_dirs

logger = logging.getLogger(__name__)

MILLIS_PER_DAY = 24 * 60 * 60 * 1000


def clean_old_snapshots(
    store: SnapshotStore,
    max_age_days: Optional[float] = None,
    current_millis: Optional[int] = None,
) -> CleanupResult:
    """
    Remove snapshots older than ``max_age_days`` together with their blobs.

    Args:
        store: Snapshot store to prune
        max_age_days: Age limit; defaults to the store config's limit
        current_millis: Reference time, defaults to now

    Returns:
        Number of snapshots removed and bytes freed
    """
    if max_age_days is None:
        max_age_days = store.config.max_backup_age_days
    if current_millis is None:
        current_millis = now_millis()

    # Writers re-read the index under this lock before appending
    with store.index_lock:
        store.reload()
        cutoff = current_millis - int(max_age_days * MILLIS_PER_DAY)

        keep = []
        removed = 0
        freed_bytes = 0

        for snapshot in store.list_snapshots():
            if snapshot.timestamp_millis >= cutoff:
                keep.append(snapshot)
                continue

            for entry in snapshot.files:
                blob_path = store.blob_path(entry)
                if blob_path is None:
                    continue
                try:
                    size = blob_path.stat().st_size
                    blob_path.unlink()
                    freed_bytes += size
                except FileNotFoundError:
                    pass
                except OSError as e:
                    logger.warning(f"Could not delete blob {blob_path}: {e}")
            removed += 1

        if removed:
            keep.sort(key=lambda s: s.timestamp_millis)
            store.replace_snapshots(keep)
            remove_empty_dirs(store.snapshots_dir)
            logger.info(f"Removed {removed} snapshot(s), freed {freed_bytes} bytes")

    return CleanupResult(removed=removed, freed_bytes=freed_bytes)
