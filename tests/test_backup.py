"""Tests for store and document backups."""

import logging
import os
import shutil
import time
from pathlib import Path

from cmem.backup import DOCUMENT_BACKUPS_KEPT, BackupManager


def _manager(tmp_path):
    memory_file = tmp_path / "memory.json"
    document_file = tmp_path / "CLAUDE.md"
    memory_file.write_text('{"sessions": []}')
    document_file.write_text("# Claude Project Memory\n")
    return BackupManager(tmp_path / "backups", memory_file, document_file)


def _age(path, days):
    stamp = time.time() - days * 86400
    os.utime(path, (stamp, stamp))


class TestBackup:

    def test_copies_both_files(self, tmp_path):
        manager = _manager(tmp_path)
        target = manager.backup()
        assert (target / "memory.json").read_text() == '{"sessions": []}'
        assert (target / "CLAUDE.md").read_text() == "# Claude Project Memory\n"

    def test_missing_document_is_fine(self, tmp_path):
        manager = _manager(tmp_path)
        manager.document_file.unlink()
        target = manager.backup()
        assert (target / "memory.json").exists()
        assert not (target / "CLAUDE.md").exists()

    def test_never_reuses_a_directory(self, tmp_path, monkeypatch):
        monkeypatch.setattr("cmem.backup.backup_timestamp", lambda: "2026-02-23T10-00-00-000000Z")
        manager = _manager(tmp_path)
        first = manager.backup()
        second = manager.backup()
        assert first != second
        assert second.name == "2026-02-23T10-00-00-000000Z-1"
        assert len(manager.list_backups()) == 2


class TestPrune:

    def test_removes_only_stale(self, tmp_path):
        manager = _manager(tmp_path)
        old = manager.backup()
        new = manager.backup()
        _age(old, 10)

        result = manager.prune(max_age_days=7)
        assert result["removed"] == [old]
        assert result["failed"] == []
        assert not old.exists()
        assert new.exists()

    def test_failure_does_not_stop_others(self, tmp_path, monkeypatch):
        manager = _manager(tmp_path)
        stuck = manager.backup()
        other = manager.backup()
        _age(stuck, 30)
        _age(other, 30)

        real_rmtree = shutil.rmtree

        def flaky_rmtree(path, *args, **kwargs):
            if path == stuck:
                raise PermissionError("in use")
            return real_rmtree(path, *args, **kwargs)

        monkeypatch.setattr("cmem.backup.shutil.rmtree", flaky_rmtree)
        result = manager.prune(max_age_days=7)
        assert result["failed"] == [stuck]
        assert result["removed"] == [other]
        assert stuck.exists()

    def test_ignores_document_backups(self, tmp_path):
        manager = _manager(tmp_path)
        doc_backup = manager.backup_document("old text")
        _age(doc_backup, 30)
        manager.prune(max_age_days=7)
        assert doc_backup.exists()


class TestDocumentBackups:

    def test_keeps_newest_five(self, tmp_path):
        manager = _manager(tmp_path)
        paths = []
        for i in range(DOCUMENT_BACKUPS_KEPT + 3):
            path = manager.backup_document(f"version {i}")
            _age(path, 10 - i)
            paths.append(path)

        kept = manager.list_document_backups()
        assert len(kept) == DOCUMENT_BACKUPS_KEPT
        assert kept[0] == paths[-1]
        assert kept[0].read_text() == f"version {DOCUMENT_BACKUPS_KEPT + 2}"
        assert not paths[0].exists()

    def test_name_prefix(self, tmp_path):
        manager = _manager(tmp_path)
        path = manager.backup_document("text")
        assert path.name.startswith("CLAUDE-")
        assert path.suffix == ".md"

    def test_undeletable_backup_is_skipped(self, tmp_path, monkeypatch, caplog):
        manager = _manager(tmp_path)
        for i in range(DOCUMENT_BACKUPS_KEPT):
            _age(manager.backup_document(f"recent {i}"), 1)
        stuck = manager.backups_dir / "CLAUDE-2020-01-01T00-00-00-000000Z.md"
        gone = manager.backups_dir / "CLAUDE-2020-01-02T00-00-00-000000Z.md"
        for path in (stuck, gone):
            path.write_text("old")
            _age(path, 30)

        real_unlink = Path.unlink

        def flaky_unlink(self, *args, **kwargs):
            if self == stuck:
                raise PermissionError("in use")
            return real_unlink(self, *args, **kwargs)

        monkeypatch.setattr(Path, "unlink", flaky_unlink)
        with caplog.at_level(logging.WARNING, logger="cmem.backup"):
            removed = manager.prune_document_backups()
        assert removed == 1
        assert stuck.exists()
        assert not gone.exists()
        assert "in use" in caplog.text
