"""
Hardlink-vs-copy backup strategy.

Delete and rename events prefer a hardlink, since the original name is going
away and a second link keeps the content at no extra cost. Change events are
always written from the captured pre-event bytes: a link would follow the
live file and end up holding the new content. Create events need no blob.

Hardlinks fall back to a full copy when the source sits on a different
device than the vault, or when the device has already refused a link.
"""

import errno
import logging
import os
import shutil
from pathlib import Path
from typing import Dict, Optional

from .models import BackupMethod, BackupResult, BackupStats, EventKind

logger = logging.getLogger(__name__)


_LINK_UNSUPPORTED_ERRNOS = frozenset(
    getattr(errno, name)
    for name in ("EPERM", "EXDEV", "ENOTSUP", "EOPNOTSUPP", "EMLINK")
    if hasattr(errno, name)
)


class BackupStrategy:
    """
    Writes blobs for one workspace session.

    Owns the per-device hardlink capability cache and the backup counters;
    construct one per session and hand it to the snapshot store.
    """

    def __init__(self):
        self._capability: Dict[int, bool] = {}
        self._stats = BackupStats()

    def backup(
        self,
        source_path: Path,
        blob_path: Path,
        event_kind: EventKind,
        pre_event_bytes: Optional[bytes] = None,
        renamed_to_path: Optional[Path] = None,
    ) -> BackupResult:
        """
        Preserve the pre-event state of one file.

        Args:
            source_path: Absolute path of the file the event concerns
            blob_path: Where the blob should be written
            event_kind: Recorded event
            pre_event_bytes: Content captured before the event
            renamed_to_path: For RENAME, the absolute new path

        Returns:
            BackupResult describing the mechanism used
        """
        if event_kind == EventKind.CREATE:
            return BackupResult(success=True)

        if event_kind in (EventKind.DELETE, EventKind.RENAME):
            if source_path.exists():
                result = self.create_hardlink_backup(source_path, blob_path)
            elif (
                event_kind == EventKind.RENAME
                and renamed_to_path is not None
                and renamed_to_path.exists()
            ):
                result = self.create_hardlink_backup(renamed_to_path, blob_path)
            elif pre_event_bytes is not None:
                result = self.write_blob(pre_event_bytes, blob_path)
            else:
                result = BackupResult(
                    success=False,
                    method=BackupMethod.COPY,
                    error="Source file does not exist and no content was captured",
                )

        elif event_kind == EventKind.CHANGE:
            if pre_event_bytes is not None:
                result = self.write_blob(pre_event_bytes, blob_path)
            elif source_path.exists():
                # Last resort; the file may already hold the new content
                try:
                    result = self.write_blob(source_path.read_bytes(), blob_path)
                except OSError as e:
                    result = BackupResult(
                        success=False,
                        method=BackupMethod.COPY,
                        error=f"Failed to read file for backup: {e}",
                    )
            else:
                result = BackupResult(
                    success=False,
                    method=BackupMethod.COPY,
                    error="No content to back up for change event",
                )

        else:
            result = BackupResult(
                success=False,
                method=BackupMethod.COPY,
                error=f"Unknown event kind: {event_kind}",
            )

        self._record(result, blob_path)
        return result

    def create_hardlink_backup(self, source_path: Path, blob_path: Path) -> BackupResult:
        """
        Link ``source_path`` to ``blob_path``, copying when a link is impossible.

        Args:
            source_path: Existing file to preserve
            blob_path: Backup destination

        Returns:
            BackupResult with method HARDLINK or COPY
        """
        if not source_path.exists():
            return BackupResult(
                success=False,
                method=BackupMethod.COPY,
                error=f"Source file does not exist: {source_path}",
            )

        try:
            blob_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            return BackupResult(success=False, method=BackupMethod.COPY, error=str(e))

        source_device = self._device_id(source_path)
        target_device = self._device_id(blob_path.parent)

        if (
            source_device is not None
            and target_device is not None
            and source_device != target_device
        ):
            return self._copy_fallback(source_path, blob_path, "Cross-device link not permitted")

        if source_device is not None and self._capability.get(source_device) is False:
            return self._copy_fallback(source_path, blob_path, "Hardlinks not supported (cached)")

        try:
            os.link(source_path, blob_path)
        except OSError as e:
            if source_device is not None and e.errno in _LINK_UNSUPPORTED_ERRNOS:
                logger.info(f"Hardlinks unsupported on device {source_device}: {e}")
                self._capability[source_device] = False
            return self._copy_fallback(source_path, blob_path, str(e))

        if source_device is not None:
            self._capability[source_device] = True

        return BackupResult(success=True, method=BackupMethod.HARDLINK)

    def write_blob(self, content: bytes, blob_path: Path) -> BackupResult:
        """
        Write captured bytes to ``blob_path`` as an independent copy.

        The bytes go to a temp file that then replaces ``blob_path``, so an
        existing file at that name is swapped out rather than written through.
        """
        tmp_path = _temp_path_for(blob_path)
        try:
            blob_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(content)
            os.replace(tmp_path, blob_path)
            return BackupResult(success=True, method=BackupMethod.COPY)
        except OSError as e:
            _discard(tmp_path)
            return BackupResult(success=False, method=BackupMethod.COPY, error=str(e))

    def _copy_fallback(self, source_path: Path, blob_path: Path, reason: str) -> BackupResult:
        """Copy instead of linking."""
        logger.debug(f"Hardlink fallback for {source_path}: {reason}")
        tmp_path = _temp_path_for(blob_path)
        try:
            shutil.copyfile(source_path, tmp_path)
            os.replace(tmp_path, blob_path)
            return BackupResult(
                success=True,
                method=BackupMethod.COPY,
                error=f"Hardlink fallback: {reason}",
            )
        except OSError as e:
            _discard(tmp_path)
            return BackupResult(
                success=False,
                method=BackupMethod.COPY,
                error=f"Copy also failed: {e}",
            )

    def _record(self, result: BackupResult, blob_path: Path) -> None:
        if not result.success:
            self._stats.failures += 1
        elif result.method == BackupMethod.HARDLINK:
            self._stats.hardlinks += 1
            try:
                self._stats.hardlink_saved_bytes += blob_path.stat().st_size
            except OSError:
                pass
        elif result.method == BackupMethod.COPY:
            self._stats.copies += 1

    def _device_id(self, path: Path) -> Optional[int]:
        """Return the device id of ``path``, or None if it cannot be stat'ed."""
        try:
            return os.stat(path).st_dev
        except OSError:
            return None

    def is_same_device(self, path1: Path, path2: Path) -> bool:
        """Check whether two paths live on the same filesystem device."""
        dev1 = self._device_id(path1)
        dev2 = self._device_id(path2)
        return dev1 is not None and dev1 == dev2

    def hardlink_capability(self, device_id: int) -> Optional[bool]:
        """Cached verdict for a device: True, False or None if untested."""
        return self._capability.get(device_id)

    def clear_capability_cache(self) -> None:
        """Forget device verdicts, e.g. after mount points change."""
        self._capability.clear()

    @property
    def stats(self) -> BackupStats:
        """A copy of the current counters."""
        return BackupStats(**self._stats.to_dict())

    def reset_stats(self) -> None:
        self._stats = BackupStats()


def _temp_path_for(blob_path: Path) -> Path:
    # Blob names start with a digit, so a dot prefix never names another blob
    return blob_path.with_name(f".{blob_path.name}.tmp")


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove temp file {path}: {e}")


def is_hardlinked(path: Path) -> bool:
    """True if the file has more than one link."""
    return hardlink_count(path) > 1


def hardlink_count(path: Path) -> int:
    """Number of links to the file, 0 if it does not exist."""
    try:
        return os.stat(path).st_nlink
    except OSError:
        return 0
