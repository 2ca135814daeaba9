"""Configuration for the file watcher package."""

from dataclasses import dataclass


@dataclass
class WatcherConfig:
    """
    Timing options for the change detector.

    Attributes:
        debounce_ms: Quiet period after the last write before a change settles
        rename_grace_ms: How long a disappeared path waits for a matching
            appearance before it is recorded as a delete
        batch_window_ms: Quiet period after the last pending change before
            the burst becomes one snapshot
        flush_interval_ms: How often timers are evaluated
        match_content_on_rename: Only pair a disappearance with an appearance
            whose content hashes equal
        recursive: Whether to watch subdirectories
        restore_hold_margin_ms: Extra time a restore keeps the watcher muted
            beyond the sum of the windows above
    """
    debounce_ms: int = 1000
    rename_grace_ms: int = 500
    batch_window_ms: int = 1500
    flush_interval_ms: int = 100
    match_content_on_rename: bool = False
    recursive: bool = True
    restore_hold_margin_ms: int = 1000

    @property
    def restore_hold_seconds(self) -> float:
        """How long a restore lock must stay active after the restore ends."""
        total = (
            self.debounce_ms
            + self.rename_grace_ms
            + self.batch_window_ms
            + self.restore_hold_margin_ms
        )
        return total / 1000.0
