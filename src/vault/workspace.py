"""Filesystem helpers for walking the protected workspace."""

import logging
import os
from pathlib import Path
from typing import Iterator, Optional

from .exclusion import ExclusionMatcher

logger = logging.getLogger(__name__)


def iter_workspace_files(
    workspace: Path,
    matcher: Optional[ExclusionMatcher] = None,
    skip_dir: Optional[Path] = None,
) -> Iterator[str]:
    """
    Yield workspace-relative paths of all regular files.

    Excluded directories are pruned rather than descended into.

    Args:
        workspace: Root directory
        matcher: Exclusion matcher applied to files and directories
        skip_dir: Absolute directory never walked (the vault)

    Yields:
        Relative paths with forward slashes
    """
    workspace = Path(workspace)
    skip = str(skip_dir.resolve()) if skip_dir is not None else None

    def _on_error(err: OSError) -> None:
        logger.debug(f"Skipping unreadable directory: {err}")

    for dirpath, dirnames, filenames in os.walk(workspace, onerror=_on_error):
        rel_dir = Path(dirpath).relative_to(workspace)

        kept = []
        for name in dirnames:
            full = os.path.join(dirpath, name)
            if skip is not None and os.path.abspath(full) == skip:
                continue
            rel = (rel_dir / name).as_posix()
            if matcher is not None and matcher.should_exclude(rel):
                continue
            kept.append(name)
        dirnames[:] = kept

        for name in filenames:
            rel = (rel_dir / name).as_posix()
            if matcher is not None and matcher.should_exclude(rel):
                continue
            if os.path.isfile(os.path.join(dirpath, name)):
                yield rel


def relative_to_workspace(workspace: Path, path: Path) -> Optional[str]:
    """Relative posix path of ``path`` under ``workspace``, or None if outside."""
    try:
        return Path(os.path.abspath(path)).relative_to(workspace).as_posix()
    except ValueError:
        return None


def resolve_in_workspace(workspace: Path, relative_path: str) -> Optional[Path]:
    """Absolute path for ``relative_path``, or None if it escapes the workspace."""
    target = Path(os.path.abspath(workspace / relative_path))
    try:
        target.relative_to(workspace)
    except ValueError:
        return None
    return target


def remove_empty_dirs(directory: Path, remove_root: bool = False) -> int:
    """
    Remove empty subdirectories below ``directory``, deepest first.

    Returns:
        Number of directories removed
    """
    removed = 0
    if not directory.is_dir():
        return 0

    for dirpath, _dirnames, _filenames in os.walk(directory, topdown=False):
        current = Path(dirpath)
        if current == directory and not remove_root:
            continue
        try:
            if not any(current.iterdir()):
                current.rmdir()
                removed += 1
        except OSError as e:
            logger.debug(f"Could not remove {current}: {e}")

    return removed
