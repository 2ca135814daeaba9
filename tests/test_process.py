"""Tests for watcher process module."""

import pytest
import time
import threading
from pathlib import Path

from src.vault.config import ShieldConfig
from src.vault.models import EventKind
from src.vault.restore import RestoreEngine
from src.vault.store import SnapshotStore
from src.watcher.config import WatcherConfig
from src.watcher.exceptions import (
    WatcherAlreadyRunningError,
    WatcherNotRunningError,
    WorkspaceNotFoundError,
)
from src.watcher.process import ShieldWatcher


def wait_for(predicate, timeout=5.0, interval=0.05):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def _entries(store):
    return [
        (entry.path, entry.event_kind, entry.renamed_to)
        for snapshot in store.list_snapshots()
        for entry in snapshot.files
    ]


@pytest.fixture
def workspace(tmp_path):
    path = tmp_path / "workspace"
    path.mkdir()
    return path


@pytest.fixture
def fast_config():
    return WatcherConfig(
        debounce_ms=50,
        rename_grace_ms=50,
        batch_window_ms=150,
        flush_interval_ms=20,
        restore_hold_margin_ms=100,
    )


class TestShieldWatcher:
    """Tests for ShieldWatcher class."""

    def test_missing_workspace(self, tmp_path):
        with pytest.raises(WorkspaceNotFoundError):
            ShieldWatcher(ShieldConfig(workspace=tmp_path / "missing"))

    def test_start_async(self, workspace, fast_config):
        watcher = ShieldWatcher(ShieldConfig(workspace=workspace), watcher_config=fast_config)

        watcher.start_async()
        assert watcher.is_running

        watcher.stop()
        assert not watcher.is_running

    def test_start_async_already_running(self, workspace, fast_config):
        watcher = ShieldWatcher(ShieldConfig(workspace=workspace), watcher_config=fast_config)
        watcher.start_async()

        try:
            with pytest.raises(WatcherAlreadyRunningError):
                watcher.start_async()
        finally:
            watcher.stop()

    def test_stop_idempotent(self, workspace, fast_config):
        watcher = ShieldWatcher(ShieldConfig(workspace=workspace), watcher_config=fast_config)
        watcher.start_async()

        watcher.stop()
        watcher.stop()

        assert not watcher.is_running

    def test_flush_now_requires_running(self, workspace, fast_config):
        watcher = ShieldWatcher(ShieldConfig(workspace=workspace), watcher_config=fast_config)

        with pytest.raises(WatcherNotRunningError):
            watcher.flush_now()

    def test_blocking_start_returns_after_stop(self, workspace, fast_config):
        watcher = ShieldWatcher(ShieldConfig(workspace=workspace), watcher_config=fast_config)
        thread = threading.Thread(target=watcher.start, daemon=True)
        thread.start()

        assert wait_for(lambda: watcher.is_running)
        watcher.stop()
        thread.join(timeout=5.0)

        assert not thread.is_alive()

    def test_context_manager(self, workspace, fast_config):
        with ShieldWatcher(ShieldConfig(workspace=workspace), watcher_config=fast_config) as watcher:
            assert watcher.is_running

        assert not watcher.is_running

    def test_records_create_and_change(self, workspace, fast_config):
        existing = workspace / "existing.txt"
        existing.write_text("before")
        lines = []

        with ShieldWatcher(
            ShieldConfig(workspace=workspace),
            watcher_config=fast_config,
            log=lines.append,
        ) as watcher:
            time.sleep(0.2)
            (workspace / "new.txt").write_text("hello")
            existing.write_text("after")

            assert wait_for(lambda: len(_entries(watcher.store)) >= 2)

        entries = _entries(watcher.store)
        assert ("new.txt", EventKind.CREATE, None) in entries
        assert ("existing.txt", EventKind.CHANGE, None) in entries

        history = watcher.store.get_file_history("existing.txt")
        assert watcher.store.blob_path(history[0][1]).read_text() == "before"

        snapshot_id = watcher.store.list_snapshots()[0].id
        assert any(snapshot_id in line for line in lines)

    def test_excluded_files_never_recorded(self, workspace, fast_config):
        with ShieldWatcher(ShieldConfig(workspace=workspace), watcher_config=fast_config) as watcher:
            time.sleep(0.2)
            (workspace / "debug.log").write_text("noise")
            (workspace / "kept.txt").write_text("kept")

            assert wait_for(lambda: len(_entries(watcher.store)) >= 1)
            time.sleep(0.3)

        paths = [path for path, _, _ in _entries(watcher.store)]
        assert "kept.txt" in paths
        assert "debug.log" not in paths

    def test_stop_flushes_pending_changes(self, workspace):
        target = workspace / "a.txt"
        target.write_text("v1")
        config = WatcherConfig(debounce_ms=5000, batch_window_ms=5000, flush_interval_ms=20)

        watcher = ShieldWatcher(ShieldConfig(workspace=workspace), watcher_config=config)
        watcher.start_async()
        time.sleep(0.2)
        target.write_text("v2")
        time.sleep(0.3)
        watcher.stop()

        assert ("a.txt", EventKind.CHANGE, None) in _entries(watcher.store)

    def test_undo_round_trip_is_not_recorded(self, workspace, fast_config):
        target = workspace / "a.txt"
        target.write_text("original")
        config = ShieldConfig(workspace=workspace)

        with ShieldWatcher(config, watcher_config=fast_config) as watcher:
            time.sleep(0.2)
            target.write_text("agent edit")
            assert wait_for(lambda: len(watcher.store) == 1)

            engine = RestoreEngine(
                watcher.store,
                lock=watcher.restore_lock,
            )
            snapshot = watcher.store.list_snapshots()[0]
            result = engine.restore_snapshot(snapshot.id)

            assert result.restored == 1
            assert target.read_text() == "original"

            time.sleep(fast_config.restore_hold_seconds + 0.5)
            assert len(watcher.store) == 1
            assert watcher.detector.tracked.get("a.txt").content == b"original"

    def test_shares_store_with_other_readers(self, workspace, fast_config):
        config = ShieldConfig(workspace=workspace)

        with ShieldWatcher(config, watcher_config=fast_config) as watcher:
            time.sleep(0.2)
            (workspace / "a.txt").write_text("x")
            assert wait_for(lambda: len(watcher.store) == 1)

        reader = SnapshotStore(config)
        assert len(reader) == 1
