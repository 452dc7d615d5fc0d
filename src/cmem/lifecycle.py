"""Lifecycle policies — automatic session rotation and backup triggering."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from cmem.models import Session, parse_iso

if TYPE_CHECKING:
    from cmem.backup import BackupManager
    from cmem.store import MemoryStore

logger = logging.getLogger(__name__)

BACKUP_MAX_AGE = timedelta(hours=24)

# (exclusive upper local hour, session name)
SESSION_NAME_BUCKETS = (
    (6, "Late Night Development"),
    (12, "Morning Development"),
    (17, "Afternoon Development"),
    (21, "Evening Development"),
    (24, "Night Development"),
)


def session_name_for_hour(hour: int) -> str:
    for upper, name in SESSION_NAME_BUCKETS:
        if hour < upper:
            return name
    return SESSION_NAME_BUCKETS[-1][1]


@dataclass
class LifecycleReport:
    started_session: str | None = None
    ended_session: str | None = None
    backup_path: Path | None = None

    @property
    def acted(self) -> bool:
        return bool(self.started_session or self.ended_session or self.backup_path)


class LifecycleManager:
    """Evaluates rotation and backup policies against the current store state."""

    def __init__(self, store: "MemoryStore", backups: "BackupManager"):
        self.store = store
        self.backups = backups

    def evaluate(self) -> LifecycleReport:
        """Run both policies. Never raises: an I/O failure skips this cycle."""
        report = LifecycleReport()
        config = self.store.config
        try:
            if config.auto_session:
                self.rotate_session(report)
            if config.auto_backup and self.backup_due():
                report.backup_path = self.run_backup()
        except OSError as e:
            logger.warning("Lifecycle step skipped, will retry on next change: %s", e)
        return report

    def session_is_stale(self, session: Session, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        max_age = timedelta(hours=self.store.config.auto_session_hours)
        try:
            started = parse_iso(session.start_time)
        except ValueError:
            logger.warning("Session %s has unreadable startTime %r, treating as stale",
                           session.id, session.start_time)
            return True
        return now - started > max_age

    def rotate_session(self, report: LifecycleReport | None = None) -> str | None:
        """Start a session if none is active; replace the active one if too old.

        At most one end and one start per call. The replacement is not
        re-checked, so the step always terminates.
        Returns the id of a newly started session, if any.
        """
        report = report or LifecycleReport()
        current = self.store.current_session
        if current is not None:
            if not self.session_is_stale(current):
                return None
            count = len(self.store.actions_for_session(current.id))
            logger.info("Auto-rotating session after %s hours", self.store.config.auto_session_hours)
            self.store.end_session(f"Completed {count} actions")
            report.ended_session = current.id

        name = session_name_for_hour(datetime.now().hour)
        logger.info("Auto-starting session: %s", name)
        session_id = self.store.start_session(name, {"auto": True})
        report.started_session = session_id
        return session_id

    def backup_due(self, now: datetime | None = None) -> bool:
        meta = self.store.metadata
        if not meta.last_backup:
            return True
        if meta.actions_since_backup >= self.store.config.backup_interval:
            return True
        now = now or datetime.now(timezone.utc)
        try:
            return now - parse_iso(meta.last_backup) > BACKUP_MAX_AGE
        except ValueError:
            return True

    def run_backup(self) -> Path:
        """Snapshot, record it in metadata, then prune old snapshots."""
        path = self.backups.backup()
        self.store.mark_backup()
        self.backups.prune(self.store.config.max_backup_days)
        return path
