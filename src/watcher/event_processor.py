"""Event processing with debouncing, rename reconciliation, and batching."""

import logging
import threading
import time
from collections import OrderedDict
from pathlib import Path
from typing import Dict, List, Optional

from ..vault.config import ShieldConfig
from ..vault.exclusion import ExclusionMatcher
from ..vault.lock import RestoreLock
from ..vault.models import EventKind, PendingChange
from ..vault.store import SnapshotStore
from ..vault.workspace import relative_to_workspace
from .config import WatcherConfig
from .models import PathState, PendingDeletion, RawFSEvent, compute_content_hash
from .tracking import TrackedFileState

logger = logging.getLogger(__name__)


class ChangeDebouncer:
    """
    Per-path quiet-period timers.

    Every write notification pushes the path's deadline out again; the path
    settles once no write arrived for ``debounce_ms``.
    """

    def __init__(self, debounce_ms: int = 1000):
        """
        Initialize the debouncer.

        Args:
            debounce_ms: Debounce window in milliseconds
        """
        self.debounce_ms = debounce_ms
        self._deadlines: Dict[str, float] = {}
        self._lock = threading.Lock()

    def touch(self, path: str, timestamp: float) -> None:
        """Restart the timer for ``path``."""
        with self._lock:
            self._deadlines.pop(path, None)
            self._deadlines[path] = timestamp + self.debounce_ms / 1000.0

    def cancel(self, path: str) -> bool:
        with self._lock:
            return self._deadlines.pop(path, None) is not None

    def is_pending(self, path: str) -> bool:
        with self._lock:
            return path in self._deadlines

    def expired(self, current_time: float) -> List[str]:
        """
        Get and remove paths whose quiet period has elapsed.

        Args:
            current_time: Current timestamp

        Returns:
            Settled paths, earliest deadline first
        """
        with self._lock:
            ready = [
                path for path, deadline in self._deadlines.items()
                if deadline <= current_time
            ]
            ready.sort(key=lambda p: self._deadlines[p])
            for path in ready:
                del self._deadlines[path]
        return ready

    def drain(self) -> List[str]:
        """Remove and return every pending path regardless of time."""
        with self._lock:
            paths = sorted(self._deadlines, key=lambda p: self._deadlines[p])
            self._deadlines.clear()
            return paths

    def clear(self) -> None:
        with self._lock:
            self._deadlines.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._deadlines)


class RenameReconciler:
    """
    Pairs disappearances with appearances to detect renames.

    A disappeared path is held for ``rename_grace_ms``. An appearance within
    that window is paired with the explicit move source when the platform
    reported one, otherwise with the oldest pending disappearance.
    Unpaired disappearances expire into genuine deletes.
    """

    def __init__(self, rename_grace_ms: int = 500, match_content: bool = False):
        """
        Initialize the reconciler.

        Args:
            rename_grace_ms: Grace window in milliseconds
            match_content: Only pair paths whose content hashes are equal
        """
        self.rename_grace_ms = rename_grace_ms
        self.match_content = match_content
        self._pending: "OrderedDict[str, PendingDeletion]" = OrderedDict()
        self._lock = threading.Lock()

    def on_disappear(self, path: str, content: bytes, timestamp: float) -> bool:
        """
        Hold a disappeared path for the grace window.

        Returns:
            False if the path was already pending
        """
        with self._lock:
            if path in self._pending:
                return False
            self._pending[path] = PendingDeletion(
                relative_path=path,
                content=content,
                disappeared_at=timestamp,
                deadline=timestamp + self.rename_grace_ms / 1000.0,
            )
            return True

    def has_pending(self, path: str) -> bool:
        with self._lock:
            return path in self._pending

    def cancel(self, path: str) -> Optional[PendingDeletion]:
        """Withdraw a pending disappearance because the path came back."""
        with self._lock:
            return self._pending.pop(path, None)

    def pair(
        self,
        new_path: str,
        timestamp: float,
        content: Optional[bytes] = None,
        preferred: Optional[str] = None,
        explicit: bool = False,
    ) -> Optional[PendingDeletion]:
        """
        Find the disappearance an appearance of ``new_path`` completes.

        Args:
            new_path: Path that appeared
            timestamp: When it appeared
            content: Its current bytes, used for content matching
            preferred: Move source reported by the platform
            explicit: The platform reported the move source, so no
                heuristic pairing is attempted

        Returns:
            The paired disappearance (removed from pending), or None
        """
        with self._lock:
            if preferred is not None and preferred != new_path:
                pending = self._pending.pop(preferred, None)
                if pending is not None:
                    return pending
            if explicit:
                return None

            for path, pending in self._pending.items():
                if path == new_path or pending.deadline <= timestamp:
                    continue
                if self.match_content and not self._same_content(pending, content):
                    continue
                return self._pending.pop(path)
            return None

    @staticmethod
    def _same_content(pending: PendingDeletion, content: Optional[bytes]) -> bool:
        if content is None:
            return False
        return compute_content_hash(pending.content) == compute_content_hash(content)

    def expired(self, current_time: float) -> List[PendingDeletion]:
        """
        Get and remove disappearances whose grace window has elapsed.

        Args:
            current_time: Current timestamp

        Returns:
            Expired disappearances in the order they were observed
        """
        with self._lock:
            ready = [p for p in self._pending.values() if p.deadline <= current_time]
            for pending in ready:
                del self._pending[pending.relative_path]
        return ready

    def drain(self) -> List[PendingDeletion]:
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
            return pending

    def clear(self) -> None:
        with self._lock:
            self._pending.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)


class PendingChangeQueue:
    """
    Reconciled changes waiting to become one snapshot.

    Holds at most one change per path in capture order. A new change for a
    queued path is coalesced with the existing one and moves to the end.
    The queue is ready once nothing was added for ``batch_window_ms``.
    """

    def __init__(self, batch_window_ms: int = 1500):
        self.batch_window_ms = batch_window_ms
        self._changes: "OrderedDict[str, PendingChange]" = OrderedDict()
        self._last_added: Optional[float] = None
        self._lock = threading.Lock()

    def add(self, change: PendingChange, timestamp: Optional[float] = None) -> None:
        """
        Add a change to the queue.

        Coalescing rules:
        - CREATE then DELETE → cancel out (no change)
        - CREATE then RENAME → CREATE of the new path
        - CREATE then CHANGE → single CREATE
        - DELETE then CREATE → CHANGE (file replaced)
        - CHANGE then CREATE → single CHANGE
        - RENAME then CREATE on the source → CHANGE of the source plus
          CREATE of the rename target
        - otherwise the latest kind wins and keeps the earliest pre-event bytes

        Args:
            change: The change to add
            timestamp: When the change became pending
        """
        with self._lock:
            self._last_added = timestamp if timestamp is not None else time.time()
            path = change.relative_path
            existing = self._changes.get(path)

            if existing is None:
                self._changes[path] = change
                return

            if existing.event_kind == EventKind.CREATE:
                if change.event_kind == EventKind.DELETE:
                    del self._changes[path]
                elif change.event_kind == EventKind.RENAME:
                    del self._changes[path]
                    self._add_create(change.renamed_to)
                return

            if change.event_kind == EventKind.CREATE:
                if existing.event_kind == EventKind.DELETE:
                    self._replace(PendingChange(
                        relative_path=path,
                        event_kind=EventKind.CHANGE,
                        pre_event_bytes=existing.pre_event_bytes,
                    ))
                    return
                if existing.event_kind == EventKind.RENAME:
                    # The old content moved away and a new file took its place
                    self._replace(PendingChange(
                        relative_path=path,
                        event_kind=EventKind.CHANGE,
                        pre_event_bytes=existing.pre_event_bytes,
                    ))
                    self._add_create(existing.renamed_to)
                    return
                # The queued change already holds the older content
                return

            if existing.pre_event_bytes is not None:
                change.pre_event_bytes = existing.pre_event_bytes
            self._replace(change)

    def _add_create(self, path: Optional[str]) -> None:
        # A queued change on the target already describes its prior state
        if path and path not in self._changes:
            self._changes[path] = PendingChange(relative_path=path, event_kind=EventKind.CREATE)

    def _replace(self, change: PendingChange) -> None:
        self._changes.pop(change.relative_path, None)
        self._changes[change.relative_path] = change

    def ready(self, current_time: float) -> List[PendingChange]:
        """
        Drain the queue if the batch window has elapsed.

        Args:
            current_time: Current timestamp

        Returns:
            The batch in capture order, or an empty list
        """
        window_sec = self.batch_window_ms / 1000.0

        with self._lock:
            if not self._changes or self._last_added is None:
                return []
            if (current_time - self._last_added) < window_sec:
                return []
            return self._drain_locked()

    def drain(self) -> List[PendingChange]:
        """Remove and return every queued change regardless of time."""
        with self._lock:
            return self._drain_locked()

    def _drain_locked(self) -> List[PendingChange]:
        changes = list(self._changes.values())
        self._changes.clear()
        self._last_added = None
        return changes

    def get(self, path: str) -> Optional[PendingChange]:
        with self._lock:
            return self._changes.get(path)

    def clear(self) -> None:
        with self._lock:
            self._changes.clear()
            self._last_added = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._changes)


class ChangeDetector:
    """
    Turns raw filesystem notifications into reconciled pending changes.

    Each path moves through a small state machine: writes are debounced,
    disappearances wait out the rename grace window, and settled changes
    are queued for the next snapshot. While a restore lock is active all
    notifications are ignored; tracking is re-seeded once it clears.
    """

    def __init__(
        self,
        config: ShieldConfig,
        watcher_config: Optional[WatcherConfig] = None,
        store: Optional[SnapshotStore] = None,
        restore_lock: Optional[RestoreLock] = None,
        matcher: Optional[ExclusionMatcher] = None,
    ):
        """
        Initialize the change detector.

        Args:
            config: Workspace configuration
            watcher_config: Timing options
            store: Snapshot store, used for last-known bytes of untracked paths
            restore_lock: Lock whose activity mutes the detector
            matcher: Exclusion matcher (built from config if omitted)
        """
        self.config = config
        self.watcher_config = watcher_config or WatcherConfig()
        self.store = store
        self.restore_lock = restore_lock
        if matcher is None:
            matcher = store.matcher if store is not None else ExclusionMatcher(config.exclude_patterns)
        self.matcher = matcher

        self.tracked = TrackedFileState()
        self._debouncer = ChangeDebouncer(self.watcher_config.debounce_ms)
        self._reconciler = RenameReconciler(
            self.watcher_config.rename_grace_ms,
            self.watcher_config.match_content_on_rename,
        )
        self._queue = PendingChangeQueue(self.watcher_config.batch_window_ms)

        self._vault_rel = relative_to_workspace(config.workspace, config.vault_dir)
        self._suppressed = False
        self._lock = threading.RLock()

    def initialize_tracking(self) -> int:
        """
        Record the current bytes of every non-excluded workspace file.

        Returns:
            Number of tracked files
        """
        with self._lock:
            count = self._seed()
        logger.info(f"Tracking {count} file(s) in {self.config.workspace}")
        return count

    def _seed(self) -> int:
        return self.tracked.seed(self.config.workspace, self.matcher, skip_dir=self.config.vault_dir)

    def process(self, raw_event: RawFSEvent) -> None:
        """
        Process a raw filesystem event.

        Args:
            raw_event: The raw event from the filesystem watcher
        """
        logger.debug(f"ChangeDetector.process: {raw_event.event_type} - {raw_event.src_path}")

        if raw_event.is_directory:
            return

        with self._lock:
            if self._is_suppressed(raw_event.timestamp):
                return

            if raw_event.event_type == "moved":
                self._handle_move(raw_event)
            elif raw_event.event_type in ("created", "deleted", "modified"):
                self._handle_path_event(raw_event)

    def _relative(self, path: Optional[Path]) -> Optional[str]:
        """Workspace-relative path, or None for paths the detector ignores."""
        if path is None:
            return None
        rel = relative_to_workspace(self.config.workspace, Path(path))
        if not rel or rel == ".":
            return None
        if self._vault_rel and (rel == self._vault_rel or rel.startswith(self._vault_rel + "/")):
            return None
        if self.matcher.should_exclude(rel):
            return None
        return rel

    def _handle_move(self, raw_event: RawFSEvent) -> None:
        """Handle a move event from watchdog."""
        src_rel = self._relative(raw_event.src_path)
        dest_rel = self._relative(raw_event.dest_path)
        timestamp = raw_event.timestamp

        if src_rel is not None and src_rel == dest_rel:
            return

        if src_rel is not None:
            self._on_disappear(src_rel, timestamp)
        if dest_rel is not None:
            self._on_appear(dest_rel, timestamp, moved_from=src_rel, explicit=True)

    def _handle_path_event(self, raw_event: RawFSEvent) -> None:
        rel = self._relative(raw_event.src_path)
        if rel is None:
            return

        path = self.config.workspace / rel
        timestamp = raw_event.timestamp

        if not path.exists():
            self._on_disappear(rel, timestamp)
        elif path.is_dir():
            return
        elif raw_event.event_type == "modified" and not self._reconciler.has_pending(rel):
            self._debouncer.touch(rel, timestamp)
        else:
            self._on_appear(rel, timestamp)

    def _on_disappear(self, rel: str, timestamp: float) -> None:
        self._debouncer.cancel(rel)
        if self._reconciler.has_pending(rel):
            return

        content = self._last_known_content(rel)
        if content is None:
            queued = self._queue.get(rel)
            if queued is not None and queued.event_kind == EventKind.CREATE:
                self._queue.add(
                    PendingChange(relative_path=rel, event_kind=EventKind.DELETE),
                    timestamp,
                )
            logger.debug(f"No known content for {rel}, ignoring disappearance")
            return

        self._reconciler.on_disappear(rel, content, timestamp)

    def _on_appear(
        self,
        rel: str,
        timestamp: float,
        moved_from: Optional[str] = None,
        explicit: bool = False,
    ) -> None:
        if self._reconciler.cancel(rel) is not None:
            self._debouncer.touch(rel, timestamp)
            return

        content = self._read(rel)
        pending = self._reconciler.pair(
            rel, timestamp, content=content, preferred=moved_from, explicit=explicit
        )

        if pending is not None:
            previous = self.tracked.get(rel)
            if previous is not None:
                # The rename replaced an existing file
                self._queue.add(PendingChange(
                    relative_path=rel,
                    event_kind=EventKind.CHANGE,
                    pre_event_bytes=previous.content,
                ), timestamp)
            self._queue.add(PendingChange(
                relative_path=pending.relative_path,
                event_kind=EventKind.RENAME,
                pre_event_bytes=pending.content,
                renamed_to=rel,
            ), timestamp)
            self._debouncer.cancel(rel)
            self.tracked.discard(pending.relative_path)
            if content is not None:
                self.tracked.set(rel, content, timestamp)
            logger.debug(f"Rename detected: {pending.relative_path} -> {rel}")
            return

        if rel in self.tracked:
            self._debouncer.touch(rel, timestamp)
            return

        self._queue.add(PendingChange(relative_path=rel, event_kind=EventKind.CREATE), timestamp)
        if content is not None:
            self.tracked.set(rel, content, timestamp)

    def _settle(self, rel: str, timestamp: float) -> None:
        """Compare a debounced path against its tracked bytes."""
        path = self.config.workspace / rel
        if not path.is_file():
            return
        content = self._read(rel)
        if content is None:
            return

        previous = self.tracked.get(rel)
        self.tracked.set(rel, content, timestamp)

        if previous is None:
            logger.debug(f"Now tracking {rel}")
            return
        if previous.content == content:
            return

        self._queue.add(PendingChange(
            relative_path=rel,
            event_kind=EventKind.CHANGE,
            pre_event_bytes=previous.content,
        ), timestamp)

    def _expire(self, pending: PendingDeletion, timestamp: float) -> None:
        """Turn an unpaired disappearance into a delete."""
        rel = pending.relative_path
        if (self.config.workspace / rel).exists():
            # Came back without a notification; compare like a write
            self._debouncer.touch(rel, timestamp)
            return

        self.tracked.discard(rel)
        self._queue.add(PendingChange(
            relative_path=rel,
            event_kind=EventKind.DELETE,
            pre_event_bytes=pending.content,
        ), timestamp)

    def _last_known_content(self, rel: str) -> Optional[bytes]:
        tracked = self.tracked.get(rel)
        if tracked is not None:
            return tracked.content
        if self.store is not None:
            latest = self.store.get_latest_backup_content(rel)
            if latest is not None:
                return latest[0]
        return None

    def _read(self, rel: str) -> Optional[bytes]:
        try:
            return (self.config.workspace / rel).read_bytes()
        except OSError as e:
            logger.debug(f"Cannot read {rel}: {e}")
            return None

    def _is_suppressed(self, now: float) -> bool:
        if self.restore_lock is None:
            return False

        if self.restore_lock.is_active(now):
            if not self._suppressed:
                logger.info("Restore in progress, ignoring filesystem events")
                self._suppressed = True
            self._debouncer.clear()
            return True

        if self._suppressed:
            self._suppressed = False
            count = self._seed()
            logger.info(f"Restore finished, re-tracked {count} file(s)")
        return False

    def flush(self, current_time: Optional[float] = None) -> List[PendingChange]:
        """
        Advance all timers and return a batch if one is ready.

        Args:
            current_time: Current timestamp (defaults to now)

        Returns:
            Changes for the next snapshot in capture order, or an empty list
        """
        if current_time is None:
            current_time = time.time()

        with self._lock:
            if self._is_suppressed(current_time):
                return []

            for rel in self._debouncer.expired(current_time):
                self._settle(rel, current_time)

            for pending in self._reconciler.expired(current_time):
                self._expire(pending, current_time)

            return self._queue.ready(current_time)

    def flush_all(self) -> List[PendingChange]:
        """
        Settle every timer immediately and drain the queue.

        Used on shutdown so no observed change is lost.
        """
        now = time.time()

        with self._lock:
            for pending in self._reconciler.drain():
                self._expire(pending, now)

            for rel in self._debouncer.drain():
                self._settle(rel, now)

            return self._queue.drain()

    def path_state(self, rel: str) -> PathState:
        """Current state of ``rel`` in the detector."""
        if self._reconciler.has_pending(rel):
            return PathState.PENDING_DELETION
        if self._debouncer.is_pending(rel):
            return PathState.DEBOUNCING
        return PathState.IDLE

    @property
    def pending_count(self) -> int:
        """Number of changes waiting for the batch window."""
        return len(self._queue)

    def clear(self) -> None:
        """Drop all timers and queued changes."""
        with self._lock:
            self._debouncer.clear()
            self._reconciler.clear()
            self._queue.clear()
