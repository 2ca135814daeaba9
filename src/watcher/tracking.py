"""Last known content of every tracked workspace file."""

import logging
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional

from ..vault.exclusion import ExclusionMatcher
from ..vault.workspace import iter_workspace_files
from .models import TrackedFile

logger = logging.getLogger(__name__)


class TrackedFileState:
    """
    Thread-safe map of relative path to the bytes last seen on disk.

    These bytes are the pre-event content handed to the vault when a
    tracked file later changes, disappears or is renamed.
    """

    def __init__(self):
        self._files: Dict[str, TrackedFile] = {}
        self._lock = threading.Lock()

    def seed(
        self,
        workspace: Path,
        matcher: Optional[ExclusionMatcher] = None,
        skip_dir: Optional[Path] = None,
    ) -> int:
        """
        Replace the state with a fresh read of every non-excluded file.

        Args:
            workspace: Root directory to scan
            matcher: Exclusion matcher
            skip_dir: Directory never scanned (the vault)

        Returns:
            Number of files now tracked
        """
        files: Dict[str, TrackedFile] = {}
        now = time.time()

        for relative_path in iter_workspace_files(workspace, matcher, skip_dir=skip_dir):
            try:
                content = (workspace / relative_path).read_bytes()
            except OSError as e:
                logger.debug(f"Cannot read {relative_path} while seeding: {e}")
                continue
            files[relative_path] = TrackedFile(content=content, observed_at=now)

        with self._lock:
            self._files = files
            return len(self._files)

    def get(self, relative_path: str) -> Optional[TrackedFile]:
        with self._lock:
            return self._files.get(relative_path)

    def set(self, relative_path: str, content: bytes, observed_at: Optional[float] = None) -> None:
        tracked = TrackedFile(content=content)
        if observed_at is not None:
            tracked.observed_at = observed_at
        with self._lock:
            self._files[relative_path] = tracked

    def discard(self, relative_path: str) -> Optional[TrackedFile]:
        with self._lock:
            return self._files.pop(relative_path, None)

    def paths(self) -> List[str]:
        with self._lock:
            return list(self._files.keys())

    def clear(self) -> None:
        with self._lock:
            self._files.clear()

    def __contains__(self, relative_path: str) -> bool:
        with self._lock:
            return relative_path in self._files

    def __len__(self) -> int:
        with self._lock:
            return len(self._files)
