"""Main watcher process orchestrator."""

import logging
import threading
from typing import Callable, List, Optional

from ..vault.config import ShieldConfig
from ..vault.exceptions import VaultError
from ..vault.lock import RestoreLock
from ..vault.models import EventKind, PendingChange, Snapshot
from ..vault.store import SnapshotStore
from .config import WatcherConfig
from .exceptions import (
    WatcherAlreadyRunningError,
    WatcherNotRunningError,
    WorkspaceNotFoundError,
)
from .fs_watcher import FSWatcher
from .event_processor import ChangeDetector

logger = logging.getLogger(__name__)

LogFn = Callable[[str], None]

_KIND_LABELS = {
    EventKind.CHANGE: "changed",
    EventKind.DELETE: "deleted",
    EventKind.RENAME: "renamed",
    EventKind.CREATE: "created",
}


def default_log(message: str) -> None:
    """Default log sink: write through the module logger."""
    logger.info(message)


class ShieldWatcher:
    """
    Main orchestrator for a watch session.

    Coordinates the watchdog observer, the change detector and the
    snapshot store. The observer thread feeds the detector; a flush-loop
    thread evaluates its timers and persists each ready batch.
    """

    def __init__(
        self,
        config: ShieldConfig,
        store: Optional[SnapshotStore] = None,
        watcher_config: Optional[WatcherConfig] = None,
        log: Optional[LogFn] = None,
    ):
        """
        Initialize the watch session.

        Args:
            config: Workspace configuration
            store: Snapshot store (created from config if omitted)
            watcher_config: Timing options
            log: Sink for human-readable progress lines

        Raises:
            WorkspaceNotFoundError: If the workspace directory does not exist
        """
        if not config.workspace.is_dir():
            raise WorkspaceNotFoundError(f"Workspace does not exist: {config.workspace}")

        self.config = config
        self.watcher_config = watcher_config or WatcherConfig()
        self.store = store or SnapshotStore(config)
        self.log = log or default_log

        self.restore_lock = RestoreLock(
            config.restore_lock_path,
            hold_seconds=self.watcher_config.restore_hold_seconds,
            timeout=config.restore_lock_timeout_s,
        )

        self._detector = ChangeDetector(
            config,
            self.watcher_config,
            store=self.store,
            restore_lock=self.restore_lock,
        )

        self._fs_watcher = FSWatcher(
            self._detector.process,
            config.workspace,
            recursive=self.watcher_config.recursive,
            skip_dir=config.vault_dir,
        )

        self._running = False
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()

    @property
    def detector(self) -> ChangeDetector:
        return self._detector

    def start(self) -> None:
        """
        Start the watch session (blocking).

        Blocks until stop() is called or the process is interrupted.

        Raises:
            WatcherAlreadyRunningError: If already running
        """
        self.start_async()

        try:
            while not self._stop_event.is_set():
                self._stop_event.wait(timeout=0.5)
        except KeyboardInterrupt:
            pass
        finally:
            self._shutdown()

    def start_async(self) -> None:
        """
        Start the watch session in the background.

        Returns immediately while the watcher runs in background threads.

        Raises:
            WatcherAlreadyRunningError: If already running
        """
        with self._lock:
            if self._running:
                raise WatcherAlreadyRunningError("Watcher is already running")

            self._running = True
            self._stop_event.clear()

        count = self._detector.initialize_tracking()
        self._fs_watcher.start()

        self._threads = [
            threading.Thread(target=self._flush_loop, name="FlushLoop"),
        ]
        for thread in self._threads:
            thread.daemon = True
            thread.start()

        self.log(f"Watching {self.config.workspace} ({count} file(s) tracked)")

    def stop(self) -> None:
        """
        Stop the watch session gracefully.

        Pending changes are flushed into a final snapshot.
        """
        self._stop_event.set()
        self._shutdown()

    def _shutdown(self) -> None:
        """Internal shutdown procedure."""
        with self._lock:
            if not self._running:
                return
            self._running = False

        self._stop_event.set()
        self._fs_watcher.stop()

        for thread in self._threads:
            if thread.is_alive():
                thread.join(timeout=2.0)
        self._threads.clear()

        try:
            self._commit(self._detector.flush_all())
        except VaultError as e:
            logger.error(f"Final flush failed: {e}")
        self.log("Stopped watching")

    def flush_now(self) -> Optional[Snapshot]:
        """
        Settle every pending change immediately and persist it.

        Raises:
            WatcherNotRunningError: If the watcher is not running
        """
        if not self.is_running:
            raise WatcherNotRunningError("Watcher is not running")
        return self._commit(self._detector.flush_all())

    def _flush_loop(self) -> None:
        """Worker loop that periodically flushes pending changes."""
        flush_interval = self.watcher_config.flush_interval_ms / 1000.0
        logger.debug(f"Flush loop started, interval={flush_interval}s")

        while not self._stop_event.is_set():
            try:
                self._commit(self._detector.flush())
            except Exception as e:
                logger.error(f"Flush loop error: {e}")

            self._stop_event.wait(timeout=flush_interval)

    def _commit(self, changes: List[PendingChange]) -> Optional[Snapshot]:
        """Persist a batch and report it through the log sink."""
        if not changes:
            return None

        snapshot = self.store.create_snapshot(changes)
        if snapshot is None:
            return None

        for entry in snapshot.files:
            label = _KIND_LABELS[entry.event_kind]
            if entry.renamed_to:
                self.log(f"{label}: {entry.path} -> {entry.renamed_to} [{snapshot.id}]")
            else:
                self.log(f"{label}: {entry.path} [{snapshot.id}]")
        return snapshot

    @property
    def is_running(self) -> bool:
        """Check if the watcher is running."""
        with self._lock:
            return self._running

    def __enter__(self) -> "ShieldWatcher":
        """Context manager entry."""
        self.start_async()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.stop()
