"""Glob-based path exclusion shared by the watcher and the vault."""

import re
from pathlib import PurePath
from typing import Iterable, List, Pattern, Tuple, Union


def _glob_to_regex(pattern: str) -> Pattern[str]:
    """
    Compile a glob into a regex anchored on path-segment boundaries.

    ``**/`` matches zero or more leading directories, ``**`` matches across
    separators and ``*`` stays within one segment.
    """
    parts = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile(r"(?:^|/)" + "".join(parts) + r"(?:$|/)")


def normalize_path(path: Union[str, PurePath]) -> str:
    """Return a workspace-relative path using forward slashes."""
    return str(path).replace("\\", "/")


class ExclusionMatcher:
    """
    Decides whether a workspace-relative path is excluded.

    Literal patterns match the exact path, a leading directory, a middle
    segment or a trailing segment. Patterns containing ``*`` are compiled
    once at construction.
    """

    def __init__(self, patterns: Iterable[str]):
        self.patterns: Tuple[str, ...] = tuple(normalize_path(p) for p in patterns if p)
        self._literals: List[str] = [p for p in self.patterns if "*" not in p]
        self._globs: List[Pattern[str]] = [
            _glob_to_regex(p) for p in self.patterns if "*" in p
        ]

    def should_exclude(self, path: Union[str, PurePath]) -> bool:
        """
        Check a workspace-relative path against the configured patterns.

        Args:
            path: Relative path, either separator style

        Returns:
            True if any pattern matches
        """
        normalized = normalize_path(path)

        for literal in self._literals:
            if (
                normalized == literal
                or normalized.startswith(literal + "/")
                or ("/" + literal + "/") in normalized
                or normalized.endswith("/" + literal)
            ):
                return True

        for regex in self._globs:
            if regex.search(normalized):
                return True

        return False

    def __contains__(self, path) -> bool:
        return self.should_exclude(path)

    def __len__(self) -> int:
        return len(self.patterns)
