"""MemoryStore — JSON-file persistence for sessions, decisions, patterns, tasks and knowledge."""

import copy
import json
import logging
import os
import tempfile
from dataclasses import replace
from pathlib import Path

from cmem import __version__
from cmem.backup import BackupManager
from cmem.config import MemoryConfig, load_config
from cmem.documents import DocumentSync, DocumentUpdate
from cmem.lifecycle import LifecycleManager, LifecycleReport
from cmem.models import (
    PATTERN_PRIORITIES, TASK_PRIORITIES, TASK_STATUSES,
    Action, Decision, KnowledgeItem, Metadata, Pattern, SearchResults, Session, Task,
    ValidationError, from_record, generate_id, now_iso, to_record,
)

logger = logging.getLogger(__name__)

MEMORY_DIR = ".claude"
MEMORY_FILE = "memory.json"
CONFIG_FILE = "config.json"
DOCUMENT_FILE = "CLAUDE.md"
FORMAT_VERSION = __version__


def _require_text(field_name: str, value) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field_name, value, "must be a non-empty string")
    return value.strip()


class MemoryStore:
    """File-backed record store for one project directory.

    Every mutation appends one action, writes memory.json atomically,
    regenerates the summary document when it affects it, and then lets the
    lifecycle manager rotate sessions or take a backup.
    """

    def __init__(self, project_dir: Path, project_name: str | None = None,
                 config: MemoryConfig | None = None):
        self.project_dir = Path(project_dir)
        self.memory_dir = self.project_dir / MEMORY_DIR
        self.memory_file = self.memory_dir / MEMORY_FILE
        self.config_file = self.memory_dir / CONFIG_FILE
        self.document_file = self.project_dir / DOCUMENT_FILE
        self.backups_dir = self.memory_dir / "backups"
        self.context_dir = self.memory_dir / "context"

        self.config = load_config(self.config_file, overrides=config)

        self.sessions: list[Session] = []
        self.decisions: list[Decision] = []
        self.patterns: list[Pattern] = []
        self.tasks: list[Task] = []
        self.knowledge: dict[str, dict[str, KnowledgeItem]] = {}
        self.actions: list[Action] = []
        self.metadata: Metadata
        self.current_session: Session | None = None
        self._pattern_index: dict[str, str] = {}
        self._in_lifecycle = False
        self.last_document_update: DocumentUpdate | None = None

        self.backups = BackupManager(self.backups_dir, self.memory_file, self.document_file)
        self.documents = DocumentSync(self, self.backups)
        self.lifecycle = LifecycleManager(self, self.backups)

        self.memory_dir.mkdir(parents=True, exist_ok=True)
        self._load(project_name)
        self.run_lifecycle()

    # --- Persistence ---

    def _reset(self, project_name: str | None) -> None:
        self.sessions, self.decisions, self.patterns = [], [], []
        self.tasks, self.actions, self.knowledge = [], [], {}
        self.current_session = None
        self._pattern_index = {}
        self.metadata = Metadata(
            created=now_iso(),
            version=FORMAT_VERSION,
            project_name=project_name or self.project_dir.name,
        )

    def _read_file(self) -> dict | None:
        if not self.memory_file.is_file():
            return None
        try:
            data = json.loads(self.memory_file.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("Could not read %s, starting empty: %s", self.memory_file, e)
            return None
        if not isinstance(data, dict):
            logger.warning("%s is not an object, starting empty", self.memory_file)
            return None
        return data

    def _load(self, project_name: str | None) -> None:
        data = self._read_file()
        if data is None:
            self._reset(project_name)
            self.save()
            return

        try:
            self.sessions = [from_record(Session, r) for r in data.get("sessions") or []]
            self.decisions = [from_record(Decision, r) for r in data.get("decisions") or []]
            self.patterns = [from_record(Pattern, r) for r in data.get("patterns") or []]
            self.tasks = [from_record(Task, r) for r in data.get("tasks") or []]
            self.actions = [from_record(Action, r) for r in data.get("actions") or []]
            self.knowledge = {
                category: {key: from_record(KnowledgeItem, item) for key, item in items.items()}
                for category, items in (data.get("knowledge") or {}).items()
            }
        except (TypeError, AttributeError, ValueError) as e:
            logger.warning("Malformed records in %s, starting empty: %s", self.memory_file, e)
            self._reset(project_name)
            self.save()
            return

        self.metadata = Metadata(
            created=data.get("created") or now_iso(),
            version=FORMAT_VERSION,
            project_name=data.get("projectName") or project_name or self.project_dir.name,
            last_backup=data.get("lastBackup"),
            actions_since_backup=self._backup_counter(data.get("actionsSinceBackup")),
        )
        self._rebuild_pattern_index()
        self.current_session = next(
            (s for s in self.sessions if s.status == "active"), None
        )

        if data.get("version") != FORMAT_VERSION:
            logger.info("Migrating memory from v%s to v%s",
                        data.get("version") or "unknown", FORMAT_VERSION)
            self.save()

    def _backup_counter(self, raw) -> int:
        try:
            count = int(raw or 0)
        except (TypeError, ValueError):
            logger.warning("Bad actionsSinceBackup %r in %s, using 0", raw, self.memory_file)
            return 0
        return max(count, 0)

    def to_dict(self) -> dict:
        return {
            "sessions": [to_record(s) for s in self.sessions],
            "decisions": [to_record(d) for d in self.decisions],
            "patterns": [to_record(p) for p in self.patterns],
            "actions": [to_record(a) for a in self.actions],
            "tasks": [to_record(t) for t in self.tasks],
            "knowledge": {
                category: {key: to_record(item) for key, item in items.items()}
                for category, items in self.knowledge.items()
            },
            "created": self.metadata.created,
            "version": self.metadata.version,
            "projectName": self.metadata.project_name,
            "lastBackup": self.metadata.last_backup,
            "actionsSinceBackup": self.metadata.actions_since_backup,
            "lastUpdated": now_iso(),
        }

    def save(self) -> None:
        """Write memory.json atomically (temp file + rename)."""
        self.memory_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.memory_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=2)
                f.write("\n")
            os.replace(tmp_path, self.memory_file)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    # --- Mutation plumbing ---

    def _current_id(self) -> str | None:
        return self.current_session.id if self.current_session else None

    def _commit(self, action_type: str, details: dict, document: bool = True,
                session_id: str | None = None) -> Action:
        action = Action(
            id=generate_id(),
            session_id=session_id if session_id is not None else self._current_id(),
            timestamp=now_iso(),
            action_type=action_type,
            details=details,
        )
        self.actions.append(action)
        self.metadata.actions_since_backup += 1
        self.save()

        if document:
            self.last_document_update = self.documents.update()
            action.result = self.last_document_update.summary
            self.save()

        self.run_lifecycle()
        return action

    def run_lifecycle(self) -> LifecycleReport | None:
        """Evaluate rotation/backup policies; nested calls from those policies are skipped."""
        if self._in_lifecycle:
            return None
        self._in_lifecycle = True
        try:
            return self.lifecycle.evaluate()
        finally:
            self._in_lifecycle = False

    def mark_backup(self) -> None:
        self.metadata.last_backup = now_iso()
        self.metadata.actions_since_backup = 0
        self.save()

    def backup(self) -> Path:
        """Take a backup now, regardless of policy."""
        return self.lifecycle.run_backup()

    @staticmethod
    def _index_of(collection: list, record_id: str) -> int | None:
        for i, record in enumerate(collection):
            if record.id == record_id:
                return i
        return None

    def _rebuild_pattern_index(self) -> None:
        self._pattern_index = {p.pattern: p.id for p in self.patterns}

    # --- Sessions ---

    def start_session(self, name: str, context: dict | None = None) -> str:
        """Start a session. An already-active session is ended first."""
        name = _require_text("name", name)
        now = now_iso()
        details: dict = {"sessionName": name, "context": context or {}}

        ended = self._close_active_sessions(now, "Superseded by new session")
        if ended:
            details["endedSessionIds"] = ended

        session = Session(
            id=generate_id(),
            name=name,
            start_time=now,
            context=dict(context or {}),
        )
        self.sessions.append(session)
        self.current_session = session
        self._commit("session_started", details)
        return session.id

    def _close_active_sessions(self, when: str, outcome: str) -> list[str]:
        ended = []
        for i, s in enumerate(self.sessions):
            if s.status == "active":
                self.sessions[i] = replace(s, status="completed", end_time=when, outcome=outcome)
                ended.append(s.id)
        self.current_session = None
        return ended

    def end_session(self, outcome: str = "") -> bool:
        if self.current_session is None:
            return False
        return self.end_session_by_id(self.current_session.id, outcome)

    def end_session_by_id(self, session_id: str, outcome: str = "") -> bool:
        idx = self._index_of(self.sessions, session_id)
        if idx is None or self.sessions[idx].status != "active":
            return False
        self.sessions[idx] = replace(
            self.sessions[idx], status="completed", end_time=now_iso(), outcome=outcome,
        )
        if self.current_session and self.current_session.id == session_id:
            self.current_session = None
        self._commit("session_ended", {"sessionId": session_id, "outcome": outcome},
                     session_id=session_id)
        return True

    def cleanup_sessions(self) -> int:
        """End every active session. Returns how many were ended."""
        ended = self._close_active_sessions(now_iso(), "Session cleaned up")
        if not ended:
            return 0
        self._commit("sessions_cleaned", {"sessionIds": ended})
        return len(ended)

    def get_session(self, session_id: str) -> Session | None:
        idx = self._index_of(self.sessions, session_id)
        return self.sessions[idx] if idx is not None else None

    def get_session_history(self, limit: int = 10) -> list[Session]:
        return sorted(self.sessions, key=lambda s: s.start_time, reverse=True)[:limit]

    # --- Decisions ---

    def record_decision(self, decision: str, reasoning: str,
                        alternatives: list[str] | str | None = None,
                        outcome: str | None = None) -> str:
        decision = _require_text("decision", decision)
        reasoning = _require_text("reasoning", reasoning)
        if isinstance(alternatives, str):
            alternatives = [a.strip() for a in alternatives.split(",") if a.strip()]
        session = self.current_session

        record = Decision(
            id=generate_id(),
            session_id=session.id if session else None,
            timestamp=now_iso(),
            decision=decision,
            reasoning=reasoning,
            alternatives=list(alternatives or []),
            outcome=outcome,
            context=copy.deepcopy(session.context) if session else {},
        )
        self.decisions.append(record)
        self._commit("decision_recorded", {"decision": decision, "decisionId": record.id})
        return record.id

    def update_decision_outcome(self, decision_id: str, outcome: str) -> bool:
        idx = self._index_of(self.decisions, decision_id)
        if idx is None:
            return False
        self.decisions[idx] = replace(self.decisions[idx], outcome=outcome)
        self._commit("decision_outcome_updated", {"decisionId": decision_id, "outcome": outcome})
        return True

    def get_recent_decisions(self, limit: int = 5) -> list[Decision]:
        return sorted(self.decisions, key=lambda d: d.timestamp, reverse=True)[:limit]

    # --- Patterns ---

    def learn_pattern(self, pattern: str, description: str, frequency: int = 1,
                      effectiveness: float | None = None,
                      priority: str | None = None) -> str:
        """Record a pattern; a known name bumps frequency and last-seen instead."""
        pattern = _require_text("pattern", pattern)
        if priority is not None and priority not in PATTERN_PRIORITIES:
            raise ValidationError("priority", priority,
                                  f"must be one of: {', '.join(PATTERN_PRIORITIES)}")
        if effectiveness is not None and not 0 <= effectiveness <= 1:
            raise ValidationError("effectiveness", effectiveness, "must be between 0 and 1")
        if isinstance(frequency, bool) or not isinstance(frequency, int) or frequency < 1:
            raise ValidationError("frequency", frequency, "must be a positive integer")
        now = now_iso()

        existing_id = self._pattern_index.get(pattern)
        idx = self._index_of(self.patterns, existing_id) if existing_id else None
        if idx is not None:
            current = self.patterns[idx]
            self.patterns[idx] = replace(
                current,
                frequency=current.frequency + frequency,
                last_seen=now,
                effectiveness=effectiveness if effectiveness is not None else current.effectiveness,
                priority=priority or current.priority,
            )
            pattern_id = current.id
        else:
            description = _require_text("description", description)
            pattern_id = generate_id()
            self.patterns.append(Pattern(
                id=pattern_id,
                pattern=pattern,
                description=description,
                frequency=frequency,
                effectiveness=effectiveness,
                priority=priority or "medium",
                first_seen=now,
                last_seen=now,
            ))
            self._pattern_index[pattern] = pattern_id

        self._commit("pattern_learned", {
            "pattern": pattern, "description": description, "patternId": pattern_id,
        })
        return pattern_id

    def resolve_pattern(self, pattern_id: str, solution: str) -> bool:
        idx = self._index_of(self.patterns, pattern_id)
        if idx is None:
            return False
        self.patterns[idx] = replace(
            self.patterns[idx], status="resolved", solution=solution, resolved_at=now_iso(),
        )
        self._commit("pattern_resolved", {"patternId": pattern_id, "solution": solution})
        return True

    def get_pattern(self, pattern_id: str) -> Pattern | None:
        idx = self._index_of(self.patterns, pattern_id)
        return self.patterns[idx] if idx is not None else None

    def find_pattern(self, name: str) -> Pattern | None:
        pattern_id = self._pattern_index.get(name)
        return self.get_pattern(pattern_id) if pattern_id else None

    def list_patterns(self, priority: str | None = None,
                      status: str | None = None) -> list[Pattern]:
        return [
            p for p in self.patterns
            if (priority is None or p.priority == priority)
            and (status is None or p.status == status)
        ]

    # --- Knowledge ---

    def store_knowledge(self, key: str, value: str, category: str = "general") -> bool:
        key = _require_text("key", key)
        category = _require_text("category", category)
        if not isinstance(value, str):
            raise ValidationError("value", value, "must be a string")
        self.knowledge.setdefault(category, {})[key] = KnowledgeItem(
            value=value,
            last_updated=now_iso(),
            session_id=self._current_id(),
        )
        self._commit("knowledge_stored", {"key": key, "category": category, "value": value})
        return True

    def get_knowledge(self, key: str, category: str | None = None) -> KnowledgeItem | None:
        if category is not None:
            return self.knowledge.get(category, {}).get(key)
        for items in self.knowledge.values():
            if key in items:
                return items[key]
        return None

    def list_knowledge(self, category: str | None = None) -> list[tuple[str, str, KnowledgeItem]]:
        return [
            (cat, key, item)
            for cat, items in self.knowledge.items()
            if category is None or cat == category
            for key, item in items.items()
        ]

    def knowledge_count(self) -> int:
        return sum(len(items) for items in self.knowledge.values())

    # --- Tasks ---

    def add_task(self, description: str, priority: str = "medium", status: str = "open",
                 assignee: str | None = None, due_date: str | None = None) -> str:
        description = _require_text("description", description)
        if priority not in TASK_PRIORITIES:
            priority = "medium"
        if status not in TASK_STATUSES:
            raise ValidationError("status", status, f"must be one of: {', '.join(TASK_STATUSES)}")
        now = now_iso()

        task = Task(
            id=generate_id(),
            description=description,
            priority=priority,
            status=status,
            assignee=assignee,
            due_date=due_date,
            created_at=now,
            completed_at=now if status == "completed" else None,
            session_id=self._current_id(),
        )
        self.tasks.append(task)
        self._commit("task_added", {"taskId": task.id, "description": description, "priority": priority})
        return task.id

    def complete_task(self, task_id: str, outcome: str = "") -> bool:
        idx = self._index_of(self.tasks, task_id)
        if idx is None:
            return False
        now = now_iso()
        self.tasks[idx] = replace(
            self.tasks[idx], status="completed", completed_at=now, last_updated=now,
            outcome=outcome or None,
        )
        self._commit("task_completed", {"taskId": task_id, "outcome": outcome})
        return True

    def update_task_status(self, task_id: str, status: str) -> bool:
        if status not in TASK_STATUSES:
            raise ValidationError("status", status, f"must be one of: {', '.join(TASK_STATUSES)}")
        idx = self._index_of(self.tasks, task_id)
        if idx is None:
            return False
        now = now_iso()
        task = self.tasks[idx]
        self.tasks[idx] = replace(
            task, status=status, last_updated=now,
            completed_at=now if status == "completed" else None,
        )
        self._commit("task_updated", {"taskId": task_id, "status": status})
        return True

    def get_task(self, task_id: str) -> Task | None:
        idx = self._index_of(self.tasks, task_id)
        return self.tasks[idx] if idx is not None else None

    def get_tasks(self, status: str | None = None) -> list[Task]:
        if status:
            return [t for t in self.tasks if t.status == status]
        return list(self.tasks)

    # --- Actions ---

    def record_action(self, action_type: str, details: dict | None = None,
                      result: str | None = None) -> str:
        action_type = _require_text("action_type", action_type)
        action = self._commit(action_type, dict(details or {}), document=False)
        if result is not None:
            action.result = result
            self.save()
        return action.id

    def actions_for_session(self, session_id: str) -> list[Action]:
        return [a for a in self.actions if a.session_id == session_id]

    # --- Documents ---

    def sync_document(self) -> DocumentUpdate:
        """Regenerate CLAUDE.md and the side documents on demand."""
        self._commit("document_synced", {})
        return self.last_document_update

    # --- Import ---

    def apply_import(self, additions: dict[str, list], replace_kinds: set[str],
                     details: dict) -> None:
        """Apply a validated import as one mutation.

        Kinds in replace_kinds are emptied first. additions maps kind to
        records; knowledge records are (category, key, KnowledgeItem).
        """
        for kind in replace_kinds:
            if kind == "knowledge":
                self.knowledge = {}
            else:
                setattr(self, kind, [])
        if "sessions" in replace_kinds:
            self.current_session = None

        for kind, records in additions.items():
            if kind == "knowledge":
                for category, key, item in records:
                    self.knowledge.setdefault(category, {})[key] = item
            else:
                getattr(self, kind).extend(records)

        self._rebuild_pattern_index()
        self._commit("data_imported", details)

    def existing_ids(self, kind: str) -> set:
        if kind == "knowledge":
            return {(cat, key) for cat, key, _ in self.list_knowledge()}
        return {record.id for record in getattr(self, kind)}

    # --- Queries ---

    def search(self, query: str) -> SearchResults:
        """Case-insensitive substring search. An empty query matches everything."""
        q = (query or "").lower()

        def hit(*values) -> bool:
            return any(q in str(v).lower() for v in values if v is not None)

        return SearchResults(
            decisions=[d for d in self.decisions if hit(d.decision, d.reasoning)],
            patterns=[p for p in self.patterns if hit(p.pattern, p.description)],
            tasks=[t for t in self.tasks if hit(t.description, t.assignee)],
            knowledge=[
                (cat, key, item) for cat, key, item in self.list_knowledge()
                if hit(key, item.value)
            ],
        )

    def stats(self) -> dict:
        return {
            "sessions": len(self.sessions),
            "decisions": len(self.decisions),
            "patterns": len(self.patterns),
            "actions": len(self.actions),
            "tasks": len(self.tasks),
            "knowledge_categories": len(self.knowledge),
            "knowledge_items": self.knowledge_count(),
        }
