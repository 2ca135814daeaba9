"""Tests for retention module."""

import pytest

from src.vault.config import ShieldConfig
from src.vault.models import EventKind, PendingChange
from src.vault.retention import MILLIS_PER_DAY, clean_old_snapshots
from src.vault.store import SnapshotStore

NOW = 1_700_000_000_000


@pytest.fixture
def store(tmp_path):
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    (workspace / "a.txt").write_bytes(b"current")
    return SnapshotStore(ShieldConfig(workspace=workspace, max_backup_age_days=7))


def _snapshot_at(store, monkeypatch, timestamp, content):
    monkeypatch.setattr("src.vault.store.now_millis", lambda: timestamp)
    return store.create_snapshot([
        PendingChange("a.txt", EventKind.CHANGE, pre_event_bytes=content),
    ])


class TestCleanOldSnapshots:
    """Tests for clean_old_snapshots function."""

    def test_removes_exactly_old_snapshots(self, store, monkeypatch):
        old = _snapshot_at(store, monkeypatch, NOW - 10 * MILLIS_PER_DAY, b"0123456789")
        older = _snapshot_at(store, monkeypatch, NOW - 8 * MILLIS_PER_DAY, b"abc")
        recent = _snapshot_at(store, monkeypatch, NOW - 1 * MILLIS_PER_DAY, b"recent")
        old_blobs = [store.blob_path(s.files[0]) for s in (old, older)]

        result = clean_old_snapshots(store, current_millis=NOW)

        assert result.removed == 2
        assert result.freed_bytes == 13
        assert [s.id for s in store.list_snapshots()] == [recent.id]
        assert all(not blob.exists() for blob in old_blobs)
        assert store.blob_path(recent.files[0]).exists()

    def test_custom_age(self, store, monkeypatch):
        _snapshot_at(store, monkeypatch, NOW - 2 * MILLIS_PER_DAY, b"x")
        _snapshot_at(store, monkeypatch, NOW - 1000, b"y")

        result = clean_old_snapshots(store, max_age_days=1, current_millis=NOW)

        assert result.removed == 1
        assert len(store) == 1

    def test_nothing_to_remove(self, store, monkeypatch):
        _snapshot_at(store, monkeypatch, NOW - 1000, b"x")

        result = clean_old_snapshots(store, current_millis=NOW)

        assert result.removed == 0
        assert result.freed_bytes == 0
        assert len(store) == 1

    def test_create_entries_free_nothing(self, store, monkeypatch):
        monkeypatch.setattr("src.vault.store.now_millis", lambda: NOW - 30 * MILLIS_PER_DAY)
        store.create_snapshot([PendingChange("a.txt", EventKind.CREATE)])

        result = clean_old_snapshots(store, current_millis=NOW)

        assert result.removed == 1
        assert result.freed_bytes == 0

    def test_index_rewritten(self, store, monkeypatch):
        _snapshot_at(store, monkeypatch, NOW - 10 * MILLIS_PER_DAY, b"x")
        kept = _snapshot_at(store, monkeypatch, NOW - 1000, b"y")

        clean_old_snapshots(store, current_millis=NOW)

        reopened = SnapshotStore(store.config)
        assert [s.id for s in reopened.list_snapshots()] == [kept.id]
