"""Cross-process restore lock."""

import json
import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from filelock import FileLock, Timeout

from .exceptions import RestoreLockedError

logger = logging.getLogger(__name__)


class RestoreLock:
    """
    Signals watchers that a restore is rewriting the workspace.

    Two pieces cooperate:

    - a ``filelock.FileLock`` serializing restores and cleanups across
      processes, and
    - a JSON marker ``{pid, acquired_at, expires_at}`` that watchers poll.

    The marker stays active until ``expires_at``. On exit from :meth:`hold`
    the expiry is moved to ``now + hold_seconds`` so notifications caused by
    the restore's own writes age out of the debounce and batch windows
    before the watcher listens again. Stale markers are simply ignored.
    """

    def __init__(
        self,
        marker_path: Path,
        hold_seconds: float = 5.0,
        timeout: float = 10.0,
        stale_after: float = 300.0,
    ):
        """
        Args:
            marker_path: Path of the marker file inside the vault
            hold_seconds: How long the marker stays active after release
            timeout: Seconds to wait for another holder of the lock
            stale_after: Expiry written while the restore is running, so a
                crashed restore does not mute the watcher forever
        """
        self.marker_path = Path(marker_path)
        self.hold_seconds = hold_seconds
        self.timeout = timeout
        self.stale_after = stale_after
        self._file_lock = FileLock(str(self.marker_path) + ".lck")

    def is_active(self, now: Optional[float] = None) -> bool:
        """Check whether watchers should currently ignore notifications."""
        expires_at = self.expires_at()
        if expires_at is None:
            return False
        return (now if now is not None else time.time()) < expires_at

    def expires_at(self) -> Optional[float]:
        """Expiry of the marker, or None if there is no marker."""
        try:
            raw = self.marker_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Cannot read restore lock {self.marker_path}: {e}")
            return None

        try:
            return float(json.loads(raw)["expires_at"])
        except (ValueError, KeyError, TypeError):
            # Unparseable marker (e.g. written by hand): fall back to its mtime
            try:
                return self.marker_path.stat().st_mtime + self.hold_seconds
            except OSError:
                return None

    @contextmanager
    def hold(self) -> Iterator["RestoreLock"]:
        """
        Hold the lock for the duration of a restore.

        Raises:
            RestoreLockedError: If another process holds it past ``timeout``
        """
        self.marker_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._file_lock.acquire(timeout=self.timeout)
        except Timeout:
            raise RestoreLockedError(
                f"Restore lock is held by another process: {self.marker_path}"
            )

        try:
            now = time.time()
            self._write_marker(now, now + self.stale_after)
            try:
                yield self
            finally:
                self._write_marker(now, time.time() + self.hold_seconds)
        finally:
            self._file_lock.release()

    def clear(self) -> None:
        """Drop the marker immediately."""
        try:
            self.marker_path.unlink()
        except FileNotFoundError:
            pass

    def _write_marker(self, acquired_at: float, expires_at: float) -> None:
        payload = {
            "pid": os.getpid(),
            "acquired_at": acquired_at,
            "expires_at": expires_at,
        }
        tmp_path = self.marker_path.with_name(self.marker_path.name + ".tmp")
        tmp_path.write_text(json.dumps(payload), encoding="utf-8")
        os.replace(tmp_path, self.marker_path)
