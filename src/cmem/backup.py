"""Backups — timestamped snapshots of the store and summary document."""

import logging
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

DOCUMENT_BACKUP_PREFIX = "CLAUDE-"
DOCUMENT_BACKUPS_KEPT = 5


def backup_timestamp() -> str:
    """Filesystem-safe UTC timestamp with microsecond resolution."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")


class BackupManager:
    """Creates and prunes backups under .claude/backups/."""

    def __init__(self, backups_dir: Path, memory_file: Path, document_file: Path):
        self.backups_dir = backups_dir
        self.memory_file = memory_file
        self.document_file = document_file

    def backup(self) -> Path:
        """Copy the store file and summary document into a new backup directory.

        Never reuses an existing directory; a name collision gets a numeric suffix.
        """
        self.backups_dir.mkdir(parents=True, exist_ok=True)
        base = backup_timestamp()
        target = self.backups_dir / base
        suffix = 0
        while True:
            try:
                target.mkdir()
                break
            except FileExistsError:
                suffix += 1
                target = self.backups_dir / f"{base}-{suffix}"

        if self.memory_file.is_file():
            shutil.copy2(self.memory_file, target / self.memory_file.name)
        if self.document_file.is_file():
            shutil.copy2(self.document_file, target / self.document_file.name)
        logger.info("Backup created: %s", target)
        return target

    def list_backups(self) -> list[Path]:
        """Backup directories, oldest first."""
        if not self.backups_dir.is_dir():
            return []
        return sorted(p for p in self.backups_dir.iterdir() if p.is_dir())

    def prune(self, max_age_days: int) -> dict:
        """Delete backup directories last modified more than max_age_days ago.

        Best effort: a directory that can't be removed is logged and skipped.

        Returns:
            Dict with keys: removed (list of paths), failed (list of paths), cutoff (str).
        """
        cutoff = datetime.now(timezone.utc) - timedelta(days=max_age_days)
        removed: list[Path] = []
        failed: list[Path] = []

        for path in self.list_backups():
            try:
                mtime = datetime.fromtimestamp(path.stat().st_mtime, timezone.utc)
                if mtime >= cutoff:
                    continue
                shutil.rmtree(path)
                removed.append(path)
            except OSError as e:
                logger.warning("Could not remove stale backup %s: %s", path, e)
                failed.append(path)

        return {"removed": removed, "failed": failed, "cutoff": cutoff.isoformat()}

    def backup_document(self, content: str) -> Path:
        """Save a previous summary document and keep only the newest few."""
        self.backups_dir.mkdir(parents=True, exist_ok=True)
        base = f"{DOCUMENT_BACKUP_PREFIX}{backup_timestamp()}"
        target = self.backups_dir / f"{base}.md"
        suffix = 0
        while target.exists():
            suffix += 1
            target = self.backups_dir / f"{base}-{suffix}.md"
        target.write_text(content, encoding="utf-8")
        self.prune_document_backups()
        return target

    def list_document_backups(self) -> list[Path]:
        """Document backups, newest first by modification time."""
        if not self.backups_dir.is_dir():
            return []
        files = [
            p for p in self.backups_dir.iterdir()
            if p.is_file() and p.name.startswith(DOCUMENT_BACKUP_PREFIX) and p.suffix == ".md"
        ]
        # Name breaks mtime ties; names sort chronologically
        return sorted(files, key=lambda p: (p.stat().st_mtime, p.name), reverse=True)

    def prune_document_backups(self, keep: int = DOCUMENT_BACKUPS_KEPT) -> int:
        removed = 0
        for path in self.list_document_backups()[keep:]:
            try:
                path.unlink()
                removed += 1
            except OSError as e:
                logger.warning("Could not remove old document backup %s: %s", path, e)
        return removed
