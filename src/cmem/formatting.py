"""Output formatters for records, search results and import reports."""

import json

from cmem.models import Decision, KnowledgeItem, Pattern, SearchResults, Session, Task, to_record
from cmem.transfer import ImportResult


def _short_timestamp(ts: str | None) -> str:
    """Convert ISO timestamp to compact form: '2026-02-23 14:30'."""
    if not ts:
        return "-"
    return ts[:16].replace("T", " ")


def format_task_compact(task: Task) -> str:
    box = {"open": "[ ]", "in-progress": "[~]", "completed": "[x]"}.get(task.status, "[?]")
    extras = [task.priority]
    if task.assignee:
        extras.append(f"@{task.assignee}")
    if task.due_date:
        extras.append(f"due {task.due_date}")
    return f"{box} [{task.id}] {task.description} ({', '.join(extras)})"


def format_tasks_compact(tasks: list[Task]) -> str:
    if not tasks:
        return "(no tasks)"
    return "\n".join(format_task_compact(t) for t in tasks)


def format_pattern_compact(pattern: Pattern) -> str:
    eff = f", effectiveness {pattern.effectiveness}" if pattern.effectiveness is not None else ""
    tag = f" [{pattern.priority.upper()}]" if pattern.priority in ("critical", "high") else ""
    line = f"[{pattern.id}]{tag} {pattern.pattern} — {pattern.description} (x{pattern.frequency}{eff})"
    if pattern.status == "resolved":
        line += f"\n    resolved: {pattern.solution or 'no solution recorded'}"
    return line


def format_patterns_compact(patterns: list[Pattern]) -> str:
    if not patterns:
        return "(no patterns)"
    return "\n".join(format_pattern_compact(p) for p in patterns)


def format_decision_compact(decision: Decision) -> str:
    ts = _short_timestamp(decision.timestamp)
    alts = f" (alternatives: {', '.join(decision.alternatives)})" if decision.alternatives else ""
    return f"[{ts}] [{decision.id}] {decision.decision} — {decision.reasoning}{alts}"


def format_knowledge_compact(entries: list[tuple[str, str, KnowledgeItem]]) -> str:
    if not entries:
        return "(no knowledge)"
    return "\n".join(f"[{cat}] {key}: {item.value}" for cat, key, item in entries)


def format_session_compact(session: Session) -> str:
    """Single-line compact format for a session."""
    started = _short_timestamp(session.start_time)
    if session.status == "active":
        return f"[{session.id}] {session.name} — active, started {started}"
    outcome = f" — {session.outcome}" if session.outcome else ""
    return f"[{session.id}] {session.name} — {started} to {_short_timestamp(session.end_time)}{outcome}"


def format_sessions_compact(sessions: list[Session]) -> str:
    if not sessions:
        return "(no sessions)"
    return "\n".join(format_session_compact(s) for s in sessions)


def format_search_compact(query: str, results: SearchResults) -> str:
    if not results.total:
        return f'No results for "{query}"'
    lines = [f'{results.total} results for "{query}"']
    sections = [
        ("Decisions", [format_decision_compact(d) for d in results.decisions]),
        ("Patterns", [format_pattern_compact(p) for p in results.patterns]),
        ("Tasks", [format_task_compact(t) for t in results.tasks]),
        ("Knowledge", [format_knowledge_compact(results.knowledge)] if results.knowledge else []),
    ]
    for title, rendered in sections:
        if rendered:
            lines.append("")
            lines.append(f"## {title}")
            lines.extend(rendered)
    return "\n".join(lines)


def format_stats_compact(stats: dict) -> str:
    return "\n".join(f"{name.replace('_', ' ')}: {count}" for name, count in stats.items())


def format_import_compact(result: ImportResult) -> str:
    prefix = "Dry run: would import" if result.dry_run else "Imported"
    lines = [f"{prefix} {result.total_added} records ({result.total_skipped} skipped as duplicates)"]
    for kind, added in result.added.items():
        replaced = " (replaced)" if kind in result.replaced else ""
        lines.append(f"  {kind}: +{added}, skipped {result.skipped.get(kind, 0)}{replaced}")
    return "\n".join(lines)


def format_json(records) -> str:
    """JSON output for a record or a list of records."""
    if isinstance(records, list):
        return json.dumps([to_record(r) for r in records], indent=2)
    return json.dumps(to_record(records), indent=2)


def format_search_json(results: SearchResults) -> str:
    return json.dumps({
        "decisions": [to_record(d) for d in results.decisions],
        "patterns": [to_record(p) for p in results.patterns],
        "tasks": [to_record(t) for t in results.tasks],
        "knowledge": [
            {"category": cat, "key": key, **to_record(item)}
            for cat, key, item in results.knowledge
        ],
    }, indent=2)
