"""File system watcher using watchdog library."""

import logging
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from watchdog.observers import Observer
from watchdog.events import (
    FileSystemEventHandler,
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    DirMovedEvent,
)

from .models import RawFSEvent

logger = logging.getLogger(__name__)


class FSEventHandler(FileSystemEventHandler):
    """Handler that converts watchdog events to RawFSEvent."""

    def __init__(
        self,
        callback: Callable[[RawFSEvent], None],
        skip_dir: Optional[Path] = None,
    ):
        super().__init__()
        self.callback = callback
        self.skip_dir = skip_dir

    def _should_ignore(self, path: Path) -> bool:
        """Drop events from inside the vault before they reach the detector."""
        if self.skip_dir is None:
            return False
        return path == self.skip_dir or self.skip_dir in path.parents

    def _emit(self, event_type: str, src_path: Path, dest_path: Optional[Path] = None, is_directory: bool = False):
        """Emit a RawFSEvent to the callback."""
        if self._should_ignore(src_path) and (dest_path is None or self._should_ignore(dest_path)):
            return

        raw_event = RawFSEvent(
            event_type=event_type,
            src_path=src_path,
            dest_path=dest_path,
            is_directory=is_directory,
            timestamp=time.time(),
        )
        try:
            self.callback(raw_event)
        except Exception as e:
            # Keep the observer thread alive
            logger.error(f"Error handling {event_type} event for {src_path}: {e}")

    def on_created(self, event):
        is_dir = isinstance(event, DirCreatedEvent)
        self._emit("created", Path(event.src_path), is_directory=is_dir)

    def on_deleted(self, event):
        is_dir = isinstance(event, DirDeletedEvent)
        self._emit("deleted", Path(event.src_path), is_directory=is_dir)

    def on_modified(self, event):
        is_dir = isinstance(event, DirModifiedEvent)
        self._emit("modified", Path(event.src_path), is_directory=is_dir)

    def on_moved(self, event):
        is_dir = isinstance(event, DirMovedEvent)
        self._emit(
            "moved",
            Path(event.src_path),
            Path(event.dest_path),
            is_directory=is_dir,
        )


class FSWatcher:
    """
    Wraps one watchdog observer over the workspace root.

    Provides start and stop around the observer thread.
    """

    def __init__(
        self,
        event_callback: Callable[[RawFSEvent], None],
        root: Path,
        recursive: bool = True,
        skip_dir: Optional[Path] = None,
    ):
        """
        Initialize the watcher.

        Args:
            event_callback: Callback function for raw filesystem events
            root: Directory to watch
            recursive: Whether to watch subdirectories
            skip_dir: Directory whose events are dropped (the vault)
        """
        self.event_callback = event_callback
        self.root = Path(root).resolve()
        self.recursive = recursive
        self.skip_dir = Path(skip_dir).resolve() if skip_dir is not None else None
        self._observer: Optional[Observer] = None
        self._lock = threading.Lock()

    def start(self) -> bool:
        """
        Start watching the root directory.

        Returns:
            True if watching started, False if already watching
        """
        with self._lock:
            if self._observer is not None:
                return False

            observer = Observer()
            handler = FSEventHandler(self.event_callback, self.skip_dir)
            observer.schedule(handler, str(self.root), recursive=self.recursive)
            observer.start()

            self._observer = observer
            logger.debug(f"Started watching {self.root}")
            return True

    def stop(self) -> bool:
        """
        Stop watching.

        Returns:
            True if watching stopped, False if not watching
        """
        with self._lock:
            if self._observer is None:
                return False

            observer = self._observer
            self._observer = None

        observer.stop()
        observer.join(timeout=5.0)
        logger.debug(f"Stopped watching {self.root}")
        return True

    @property
    def is_watching(self) -> bool:
        with self._lock:
            return self._observer is not None
