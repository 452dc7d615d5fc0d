"""Import/export of store records as JSON or YAML documents."""

import copy
import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from cmem import __version__
from cmem.models import (
    PATTERN_PRIORITIES, PATTERN_STATUSES, RECORD_KINDS, SESSION_STATUSES,
    TASK_PRIORITIES, TASK_STATUSES,
    Decision, KnowledgeItem, Pattern, Session, Task,
    from_record, generate_id, now_iso, parse_iso,
)

if TYPE_CHECKING:
    from cmem.store import MemoryStore

logger = logging.getLogger(__name__)

IMPORTABLE_KINDS = ("sessions", "decisions", "patterns", "tasks", "knowledge")
YAML_SUFFIXES = (".yaml", ".yml")
REDACTED = "REDACTED"

REQUIRED_FIELDS = {
    "sessions": ("name",),
    "decisions": ("decision", "reasoning"),
    "patterns": ("pattern", "description"),
    "tasks": ("description",),
    "knowledge": ("category", "key", "value"),
}

# (kind, field) -> permitted values
ALLOWED_VALUES = {
    ("sessions", "status"): SESSION_STATUSES,
    ("patterns", "priority"): PATTERN_PRIORITIES,
    ("patterns", "status"): PATTERN_STATUSES,
    ("tasks", "priority"): TASK_PRIORITIES,
    ("tasks", "status"): TASK_STATUSES,
}

# Optional fields that must hold an ISO timestamp string when present
TIMESTAMP_FIELDS = {
    "sessions": ("startTime", "endTime"),
    "decisions": ("timestamp",),
    "patterns": ("firstSeen", "lastSeen", "createdAt", "resolvedAt"),
    "tasks": ("createdAt", "completedAt", "lastUpdated"),
    "knowledge": ("lastUpdated", "updatedAt"),
}

OPTIONAL_TEXT_FIELDS = {
    "sessions": ("outcome",),
    "decisions": ("sessionId", "outcome"),
    "patterns": ("solution",),
    "tasks": ("assignee", "dueDate", "sessionId", "outcome"),
    "knowledge": ("sessionId",),
}

CONTEXT_KINDS = ("sessions", "decisions")

# Status spellings written by older exports
STATUS_ALIASES = {
    "tasks": {"pending": "open", "active": "open", "in_progress": "in-progress"},
    "patterns": {"pending": "open", "active": "open"},
}

RECORD_TYPES = {
    "sessions": Session,
    "decisions": Decision,
    "patterns": Pattern,
    "tasks": Task,
}


@dataclass
class Violation:
    kind: str
    index: int
    field: str
    value: Any
    message: str

    def __str__(self) -> str:
        return f"{self.kind}[{self.index}].{self.field}: {self.message} (got {self.value!r})"


class ImportValidationError(ValueError):
    """Raised when an import document contains invalid records. Nothing is imported."""

    def __init__(self, violations: list[Violation]):
        self.violations = violations
        lines = "\n".join(f"  - {v}" for v in violations)
        super().__init__(f"Import aborted, {len(violations)} invalid value(s):\n{lines}")


@dataclass
class ImportResult:
    added: dict[str, int] = field(default_factory=dict)
    skipped: dict[str, int] = field(default_factory=dict)
    replaced: list[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def total_added(self) -> int:
        return sum(self.added.values())

    @property
    def total_skipped(self) -> int:
        return sum(self.skipped.values())


def _select_kinds(types, allowed) -> tuple[str, ...]:
    if not types:
        return tuple(allowed)
    unknown = [t for t in types if t not in allowed]
    if unknown:
        raise ValueError(f"Unknown record type(s): {', '.join(unknown)} "
                         f"(choose from {', '.join(allowed)})")
    return tuple(k for k in allowed if k in types)


# --- Export ---

def export_memory(store: "MemoryStore", types: list[str] | None = None,
                  sanitize: bool = False) -> dict:
    """Snapshot the selected record kinds (default: all) as a plain dict."""
    kinds = _select_kinds(types, RECORD_KINDS)
    data = store.to_dict()
    export: dict[str, Any] = {
        "version": __version__,
        "exportedAt": now_iso(),
        "projectName": store.metadata.project_name,
    }
    for kind in kinds:
        export[kind] = copy.deepcopy(data[kind])

    if sanitize:
        _sanitize(export)
    return export


def _sanitize(export: dict) -> None:
    for task in export.get("tasks", []):
        if task.get("assignee"):
            task["assignee"] = REDACTED
    for kind in ("sessions", "decisions"):
        for record in export.get(kind, []):
            record["context"] = {}


def dump_export(data: dict, path: Path) -> str:
    if path.suffix.lower() in YAML_SUFFIXES:
        return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
    return json.dumps(data, indent=2) + "\n"


def write_export(data: dict, path: Path) -> Path:
    """Write an export as JSON, or YAML when the path ends in .yaml/.yml."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dump_export(data, path), encoding="utf-8")
    logger.info("Exported memory to %s", path)
    return path


# --- Import ---

def parse_import_text(text: str, suffix: str = "") -> Any:
    """Parse JSON or YAML. Without a telling suffix, JSON is tried first."""
    suffix = suffix.lower()
    if suffix in YAML_SUFFIXES:
        return yaml.safe_load(text)
    if suffix == ".json":
        return json.loads(text)
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return yaml.safe_load(text)


def load_import_file(path: Path, types: list[str] | None = None) -> dict:
    """Read an import document from disk.

    A bare list is accepted when exactly one record type is requested; it is
    wrapped as {type: list}.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"File not found: {path}")
    try:
        data = parse_import_text(path.read_text(encoding="utf-8"), path.suffix)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ValueError(f"Could not parse {path}: {e}") from e

    if isinstance(data, list):
        if not types or len(types) != 1:
            raise ValueError("A bare list of records needs exactly one --types value")
        return {types[0]: data}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain an object keyed by record type")
    return data


def _knowledge_records(raw) -> list:
    """Flatten nested {category: {key: item}} knowledge into a record list."""
    if not isinstance(raw, dict):
        return raw
    records = []
    for category, items in raw.items():
        if not isinstance(items, dict):
            records.append({"category": category, "key": None, "value": items})
            continue
        for key, item in items.items():
            record = dict(item) if isinstance(item, dict) else {"value": item}
            record.update(category=category, key=key)
            records.append(record)
    return records


def _plain(value):
    """YAML turns unquoted timestamps into date objects; keep them as ISO strings."""
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def normalize_records(kind: str, raw) -> list:
    if kind == "knowledge":
        raw = _knowledge_records(raw)
    if not isinstance(raw, list):
        return raw
    aliases = STATUS_ALIASES.get(kind, {})
    records = []
    for record in raw:
        if isinstance(record, dict):
            record = {key: _plain(value) for key, value in record.items()}
            status = record.get("status")
            if isinstance(status, str) and status in aliases:
                record["status"] = aliases[status]
            if kind == "decisions" and isinstance(record.get("alternatives"), str):
                record["alternatives"] = [
                    a.strip() for a in record["alternatives"].split(",") if a.strip()
                ]
        records.append(record)
    return records


def _is_iso(value) -> bool:
    try:
        parse_iso(value)
    except ValueError:
        return False
    return True


def validate_records(kind: str, records) -> list[Violation]:
    """Check records of one kind; returns every violation found."""
    if not isinstance(records, list):
        return [Violation(kind, -1, kind, records, "must be a list of records")]

    violations = []
    for index, record in enumerate(records):
        if not isinstance(record, dict):
            violations.append(Violation(kind, index, "record", record, "must be an object"))
            continue
        for name in REQUIRED_FIELDS[kind]:
            value = record.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                violations.append(Violation(kind, index, name, value, "is required"))
            elif name != "value" and not isinstance(value, str):
                violations.append(Violation(kind, index, name, value, "must be a string"))
        if kind == "knowledge" and "value" in record and not isinstance(record["value"], str):
            violations.append(Violation(kind, index, "value", record["value"], "must be a string"))

        if kind != "knowledge" and record.get("id") is not None:
            record_id = record["id"]
            if not isinstance(record_id, str) or not record_id.strip():
                violations.append(Violation(kind, index, "id", record_id,
                                            "must be a non-empty string"))
        for name in TIMESTAMP_FIELDS[kind]:
            if record.get(name) is not None and not _is_iso(record[name]):
                violations.append(Violation(kind, index, name, record[name],
                                            "must be an ISO timestamp string"))
        for name in OPTIONAL_TEXT_FIELDS[kind]:
            if record.get(name) is not None and not isinstance(record[name], str):
                violations.append(Violation(kind, index, name, record[name], "must be a string"))
        if kind in CONTEXT_KINDS and record.get("context") is not None \
                and not isinstance(record["context"], dict):
            violations.append(Violation(kind, index, "context", record["context"],
                                        "must be an object"))

        for (allowed_kind, name), allowed in ALLOWED_VALUES.items():
            if allowed_kind == kind and name in record and record[name] not in allowed:
                violations.append(Violation(
                    kind, index, name, record[name], f"must be one of: {', '.join(allowed)}",
                ))

        if kind == "patterns":
            eff = record.get("effectiveness")
            if eff is not None and (isinstance(eff, bool) or not isinstance(eff, (int, float))
                                    or not 0 <= eff <= 1):
                violations.append(Violation(kind, index, "effectiveness", eff,
                                            "must be a number between 0 and 1"))
            freq = record.get("frequency")
            if freq is not None and (isinstance(freq, bool) or not isinstance(freq, int) or freq < 1):
                violations.append(Violation(kind, index, "frequency", freq,
                                            "must be a positive integer"))
        if kind == "decisions" and "alternatives" in record:
            alts = record["alternatives"]
            if not isinstance(alts, list) or not all(isinstance(a, str) for a in alts):
                violations.append(Violation(kind, index, "alternatives", alts,
                                            "must be a list of strings"))
    return violations


def _build_record(kind: str, record: dict):
    """Validated raw record -> (identity, model object)."""
    now = now_iso()
    if kind == "knowledge":
        item = KnowledgeItem(
            value=record["value"],
            last_updated=record.get("lastUpdated") or record.get("updatedAt") or now,
            session_id=record.get("sessionId"),
        )
        return (record["category"], record["key"]), (record["category"], record["key"], item)

    record = dict(record)
    record["id"] = record.get("id") or generate_id()
    if kind in CONTEXT_KINDS and record.get("context") is None:
        record["context"] = {}
    if kind == "sessions":
        record["startTime"] = record.get("startTime") or now
        if record.get("status", "active") == "active":
            record["status"] = "completed"
            record["endTime"] = record.get("endTime") or record["startTime"]
    elif kind == "decisions":
        record["timestamp"] = record.get("timestamp") or now
        record.setdefault("sessionId", None)
    elif kind == "patterns":
        record["firstSeen"] = record.get("firstSeen") or record.get("createdAt") or now
        record["lastSeen"] = record.get("lastSeen") or record["firstSeen"]
    elif kind == "tasks":
        record["createdAt"] = record.get("createdAt") or now
    return record["id"], from_record(RECORD_TYPES[kind], record)


def import_memory(store: "MemoryStore", data: dict, mode: str = "merge",
                  types: list[str] | None = None, dry_run: bool = False) -> ImportResult:
    """Validate and apply an import document.

    merge skips records whose id (or category/key for knowledge) already
    exists. replace discards the named kinds' collections before adding,
    so a named kind missing from the document ends up empty; without a type
    filter every kind present in the document is replaced.
    Validation covers the whole document before anything changes.

    Raises:
        ImportValidationError: any record is invalid (nothing is imported).
        ValueError: unknown mode or record type.
    """
    if mode not in ("merge", "replace"):
        raise ValueError(f"Unknown import mode: {mode} (choose merge or replace)")
    selected = _select_kinds(types, IMPORTABLE_KINDS)
    kinds = [k for k in selected if k in data]
    if "actions" in data and not types:
        logger.warning("Ignoring %d actions in import; the audit log is not importable",
                       len(data["actions"] or []))

    normalized = {kind: normalize_records(kind, data[kind]) for kind in kinds}
    violations = [v for kind in kinds for v in validate_records(kind, normalized[kind])]
    if violations:
        raise ImportValidationError(violations)

    result = ImportResult(dry_run=dry_run)
    replace_kinds: set[str] = set()
    if mode == "replace":
        replace_kinds = set(selected) if types else set(kinds)
    result.replaced = [k for k in selected if k in replace_kinds]
    additions: dict[str, list] = {}

    for kind in kinds:
        existing = set() if kind in replace_kinds else store.existing_ids(kind)
        added, skipped = [], 0
        for record in normalized[kind]:
            identity, obj = _build_record(kind, record)
            if identity in existing:
                skipped += 1
                continue
            existing.add(identity)
            added.append(obj)
        additions[kind] = added
        result.added[kind] = len(added)
        result.skipped[kind] = skipped

    if dry_run:
        return result

    store.apply_import(additions, replace_kinds, {
        "mode": mode,
        "types": kinds,
        "replaced": result.replaced,
        "added": result.added,
        "skipped": result.skipped,
    })
    logger.info("Imported %d records (%d skipped)", result.total_added, result.total_skipped)
    return result
