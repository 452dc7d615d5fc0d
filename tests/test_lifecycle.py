"""Tests for automatic session rotation and backup triggering."""

import json
import logging
from datetime import datetime, timedelta, timezone

import pytest

from cmem.config import MemoryConfig
from cmem.lifecycle import LifecycleManager, session_name_for_hour
from cmem.store import MemoryStore


def _backup_dirs(store):
    return [p for p in store.backups_dir.iterdir() if p.is_dir()] if store.backups_dir.is_dir() else []


class TestSessionNames:

    @pytest.mark.parametrize("hour,name", [
        (0, "Late Night Development"),
        (5, "Late Night Development"),
        (6, "Morning Development"),
        (11, "Morning Development"),
        (12, "Afternoon Development"),
        (16, "Afternoon Development"),
        (17, "Evening Development"),
        (20, "Evening Development"),
        (21, "Night Development"),
        (23, "Night Development"),
    ])
    def test_buckets(self, hour, name):
        assert session_name_for_hour(hour) == name


class TestSessionRotation:

    def test_auto_start_on_construction(self, project):
        store = MemoryStore(project, config=MemoryConfig(auto_backup=False))
        assert store.current_session is not None
        assert store.current_session.context == {"auto": True}
        assert store.current_session.name.endswith("Development")
        assert len(store.actions) == 1

    def test_fresh_session_not_rotated(self, project):
        store = MemoryStore(project, config=MemoryConfig(auto_backup=False))
        session_id = store.current_session.id
        store.add_task("Something")
        assert store.current_session.id == session_id
        assert len(store.sessions) == 1

    def test_stale_session_rotated(self, project):
        store = MemoryStore(project, config=MemoryConfig(auto_backup=False, auto_session_hours=4))
        old = store.current_session
        old_start = (datetime.now(timezone.utc) - timedelta(hours=5)).isoformat()
        store.sessions[0].start_time = old_start
        store.add_task("Something")

        ended = store.get_session(old.id)
        assert ended.status == "completed"
        assert ended.outcome == "Completed 2 actions"
        assert store.current_session.id != old.id
        assert len([s for s in store.sessions if s.status == "active"]) == 1

    def test_unreadable_start_time_counts_as_stale(self, project, caplog):
        memory_file = project / ".claude" / "memory.json"
        memory_file.parent.mkdir(parents=True)
        memory_file.write_text(json.dumps({"sessions": [
            {"id": "s1", "name": "Old", "startTime": "yesterday", "context": {}, "status": "active"},
        ]}))
        with caplog.at_level(logging.WARNING, logger="cmem.lifecycle"):
            store = MemoryStore(project, config=MemoryConfig(auto_backup=False))
        assert store.get_session("s1").status == "completed"
        assert store.current_session.id != "s1"
        assert "yesterday" in caplog.text

    def test_zero_hours_rotates_within_the_call(self, project):
        store = MemoryStore(project, config=MemoryConfig(auto_backup=False, auto_session_hours=0))
        first = store.current_session.id

        store.store_knowledge("key", "value")

        assert store.get_session(first).status == "completed"
        assert store.current_session is not None
        assert store.current_session.id != first
        assert len(store.sessions) == 2
        types = [a.action_type for a in store.actions]
        assert types == ["session_started", "knowledge_stored", "session_ended", "session_started"]

    def test_rotation_disabled(self, store):
        store.add_task("Something")
        assert store.current_session is None

    def test_evaluate_twice_is_idempotent(self, project):
        store = MemoryStore(project, config=MemoryConfig())
        before = len(store.actions)
        backups_before = len(_backup_dirs(store))
        assert not store.run_lifecycle().acted
        assert not store.run_lifecycle().acted
        assert len(store.actions) == before
        assert len(_backup_dirs(store)) == backups_before


class TestBackupPolicy:

    def test_first_backup_on_construction(self, project):
        store = MemoryStore(project, config=MemoryConfig(auto_session=False))
        assert store.metadata.last_backup is not None
        assert len(_backup_dirs(store)) == 1

    def test_backup_interval_scenario(self, project):
        store = MemoryStore(project, config=MemoryConfig(auto_session=False, backup_interval=3))
        before = len(_backup_dirs(store))

        store.add_task("one")
        store.add_task("two")
        assert len(_backup_dirs(store)) == before
        store.add_task("three")

        assert len(_backup_dirs(store)) == before + 1
        assert store.metadata.actions_since_backup == 0
        assert json.loads(store.memory_file.read_text())["actionsSinceBackup"] == 0

    def test_backup_due_rules(self, store):
        manager = LifecycleManager(store, store.backups)
        assert manager.backup_due() is True

        store.mark_backup()
        assert manager.backup_due() is False

        store.metadata.actions_since_backup = store.config.backup_interval
        assert manager.backup_due() is True

        store.metadata.actions_since_backup = 0
        later = datetime.now(timezone.utc) + timedelta(hours=25)
        assert manager.backup_due(now=later) is True

    def test_backup_disabled(self, store):
        store.add_task("Something")
        assert _backup_dirs(store) == []
        assert store.metadata.last_backup is None

    def test_backup_failure_is_skipped(self, project, monkeypatch):
        store = MemoryStore(project, config=MemoryConfig(auto_session=False, backup_interval=1))

        def broken():
            raise OSError("disk full")

        monkeypatch.setattr(store.backups, "backup", broken)
        store.add_task("Still recorded")
        assert store.tasks[0].description == "Still recorded"
        assert store.metadata.actions_since_backup == 1
