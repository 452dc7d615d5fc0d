"""Data models for cmem records."""

import hashlib
import random
import time
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone

SESSION_STATUSES = ("active", "completed")
TASK_PRIORITIES = ("high", "medium", "low")
TASK_STATUSES = ("open", "in-progress", "completed")
PATTERN_PRIORITIES = ("critical", "high", "medium", "low")
PATTERN_STATUSES = ("open", "resolved")

# Record kinds in persisted/exported order
RECORD_KINDS = ("sessions", "decisions", "patterns", "tasks", "knowledge", "actions")


class ValidationError(ValueError):
    """Malformed or constraint-violating input to a store operation."""

    def __init__(self, field_name: str, value, message: str):
        self.field = field_name
        self.value = value
        super().__init__(f"{field_name}: {message} (got {value!r})")


def generate_id() -> str:
    """8-char token from a hash of the current time plus a random value."""
    seed = f"{time.time_ns()}{random.random()}"
    return hashlib.md5(seed.encode()).hexdigest()[:8]


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_iso(ts: str) -> datetime:
    """Parse an ISO timestamp, treating naive values as UTC.

    Raises ValueError for anything that is not an ISO string.
    """
    if not isinstance(ts, str):
        raise ValueError(f"not an ISO timestamp: {ts!r}")
    dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _camel(name: str) -> str:
    first, *rest = name.split("_")
    return first + "".join(part.title() for part in rest)


def to_record(obj) -> dict:
    """Dataclass -> persisted dict with camelCase keys."""
    return {_camel(f.name): getattr(obj, f.name) for f in fields(obj)}


def from_record(cls, data: dict):
    """Persisted dict -> dataclass. Unknown keys are ignored."""
    kwargs = {}
    for f in fields(cls):
        key = _camel(f.name)
        if key in data:
            kwargs[f.name] = data[key]
    return cls(**kwargs)


@dataclass
class Session:
    id: str
    name: str
    start_time: str
    context: dict = field(default_factory=dict)
    status: str = "active"
    end_time: str | None = None
    outcome: str | None = None


@dataclass
class Decision:
    id: str
    session_id: str | None
    timestamp: str
    decision: str
    reasoning: str
    alternatives: list[str] = field(default_factory=list)
    outcome: str | None = None
    context: dict = field(default_factory=dict)


@dataclass
class Pattern:
    id: str
    pattern: str
    description: str
    frequency: int = 1
    effectiveness: float | None = None
    priority: str = "medium"
    status: str = "open"
    first_seen: str = ""
    last_seen: str = ""
    solution: str | None = None
    resolved_at: str | None = None


@dataclass
class Task:
    id: str
    description: str
    priority: str = "medium"
    status: str = "open"
    assignee: str | None = None
    due_date: str | None = None
    created_at: str = ""
    completed_at: str | None = None
    session_id: str | None = None
    outcome: str | None = None
    last_updated: str | None = None


@dataclass
class KnowledgeItem:
    value: str
    last_updated: str = ""
    session_id: str | None = None


@dataclass
class Action:
    id: str
    session_id: str | None
    timestamp: str
    action_type: str
    details: dict = field(default_factory=dict)
    result: str | None = None


@dataclass
class Metadata:
    created: str
    version: str
    project_name: str
    last_backup: str | None = None
    actions_since_backup: int = 0


@dataclass
class SearchResults:
    decisions: list[Decision] = field(default_factory=list)
    patterns: list[Pattern] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    # (category, key, item)
    knowledge: list[tuple[str, str, KnowledgeItem]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.decisions) + len(self.patterns) + len(self.tasks) + len(self.knowledge)
