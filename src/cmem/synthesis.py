"""Document synthesizer — renders store state into CLAUDE.md and side documents."""

from dataclasses import dataclass
from typing import TYPE_CHECKING

from cmem.models import PATTERN_PRIORITIES, TASK_PRIORITIES, Pattern, Task

if TYPE_CHECKING:
    from cmem.store import MemoryStore

ELLIPSIS = "..."


@dataclass(frozen=True)
class RenderLimits:
    """Per-section item caps and value length cap (None = no truncation)."""

    decisions: int
    open_patterns: int
    resolved_patterns: int
    open_tasks: int
    in_progress_tasks: int
    completed_tasks: int
    knowledge_items: int
    value_chars: int | None
    reasoning_chars: int | None
    # Non-critical open patterns are only listed when relaxed
    show_noncritical_patterns: bool


OPTIMIZED = RenderLimits(
    decisions=3, open_patterns=3, resolved_patterns=2,
    open_tasks=5, in_progress_tasks=3, completed_tasks=2,
    knowledge_items=2, value_chars=80, reasoning_chars=200,
    show_noncritical_patterns=False,
)

RELAXED = RenderLimits(
    decisions=5, open_patterns=5, resolved_patterns=3,
    open_tasks=10, in_progress_tasks=5, completed_tasks=3,
    knowledge_items=3, value_chars=None, reasoning_chars=None,
    show_noncritical_patterns=True,
)

COMMANDS_REFERENCE = """\
```bash
# Session management
cmem session start "Session Name"
cmem session end ["outcome"]
cmem session cleanup

# Task management
cmem task add "description" [--priority high|medium|low] [--assignee name]
cmem task start <task-id>
cmem task complete <task-id>
cmem task list [status]

# Pattern management
cmem pattern add "Pattern" "Description" [--effectiveness 0.8] [--priority high]
cmem pattern list [--priority high]
cmem pattern resolve <pattern-id> "solution"

# Decision tracking
cmem decision "Choice" "Reasoning" [--alternatives "a,b"]

# Knowledge management
cmem knowledge add "key" "value" --category category
cmem knowledge get "key" [--category category]
cmem knowledge list [--category category]

# Memory utilities
cmem stats
cmem search "query"
cmem export [file] [--sanitized]
cmem import <file> [--mode merge|replace] [--dry-run]
```"""


def truncate(value: str, limit: int | None) -> str:
    """Collapse whitespace to one line and cap length with an ellipsis."""
    text = " ".join(str(value).split())
    if limit is None or len(text) <= limit:
        return text
    return text[:limit] + ELLIPSIS


def _date(ts: str | None) -> str:
    return ts[:10] if ts else "unknown"


def _title(word: str) -> str:
    return word[:1].upper() + word[1:]


def _format_pattern(p: Pattern, limits: RenderLimits) -> str:
    eff = f" (effectiveness: {p.effectiveness})" if p.effectiveness is not None else ""
    return f"- **{truncate(p.pattern, limits.value_chars)}**: {truncate(p.description, limits.value_chars)}{eff}"


def _format_task(t: Task, limits: RenderLimits, box: str) -> str:
    extra = t.priority
    if t.due_date:
        extra += f", due: {t.due_date}"
    if t.assignee:
        extra += f", assigned: {t.assignee}"
    return f"- {box} **{truncate(t.description, limits.value_chars)}** ({extra})"


class DocumentSynthesizer:
    """Renders the summary document and the per-kind side documents.

    Rendering is a pure function of store state and the optimize flag; the
    output carries no wall-clock values so regeneration is byte-stable.
    """

    def __init__(self, store: "MemoryStore"):
        self.store = store

    def render(self, optimize: bool = True) -> str:
        limits = OPTIMIZED if optimize else RELAXED
        store = self.store
        meta = store.metadata
        session = store.current_session

        lines = [
            "# Claude Project Memory",
            "",
            "## Active Session",
            f"- **Current**: {session.name if session else 'No active session'}",
            f"- **Started**: {_date(session.start_time) if session else '-'}",
            f"- **Project**: {meta.project_name}",
            "",
            "## Key Project Knowledge",
            "",
            "### Critical Information",
            f"- **Project Name**: {meta.project_name}",
            f"- **Memory Version**: v{meta.version}",
            f"- **Memory Created**: {_date(meta.created)}",
            "",
            "### Knowledge Base",
        ]
        lines += self._knowledge_section(limits)
        lines += ["", "### Open Patterns"]
        lines += self._open_patterns_section(limits)
        lines += ["", "### Recently Resolved"]
        lines += self._resolved_section(limits)
        lines += [
            "",
            "### Project Conventions",
            "<!-- Discovered during development -->",
            "",
            "## Task Management",
            "",
        ]
        lines += self._tasks_section(limits)
        lines += ["", "## Recent Decisions Log"]
        lines += self._decisions_section(limits)
        lines += [
            "",
            "## Commands & Workflows",
            "",
            "### Memory Commands",
            COMMANDS_REFERENCE,
            "",
            "## Full Context Files",
            "For complete information without truncation:",
            f"- **Knowledge Base**: `.claude/context/knowledge.md` ({store.knowledge_count()} items)",
            f"- **All Patterns**: `.claude/context/patterns.md` ({len(store.patterns)} patterns)",
            f"- **Decision Log**: `.claude/context/decisions.md` ({len(store.decisions)} decisions)",
            f"- **Task Details**: `.claude/context/tasks.md` ({len(store.tasks)} tasks)",
            "",
            "## Session Continuation",
            "To resume work, tell Claude:",
            f'"Load project memory for {meta.project_name} and continue development"',
        ]
        return "\n".join(lines) + "\n"

    def _knowledge_section(self, limits: RenderLimits) -> list[str]:
        knowledge = self.store.knowledge
        if not any(knowledge.values()):
            return ["- No knowledge stored yet"]
        lines: list[str] = []
        for category, items in knowledge.items():
            if not items:
                continue
            if lines:
                lines.append("")
            lines.append(f"#### {category} ({len(items)} items)")
            sample = list(items.items())[:limits.knowledge_items]
            for key, item in sample:
                lines.append(f"- **{truncate(key, limits.value_chars)}**: {truncate(item.value, limits.value_chars)}")
            if len(items) > len(sample):
                lines.append(f"- ... and {len(items) - len(sample)} more items")
        return lines

    def _open_patterns_section(self, limits: RenderLimits) -> list[str]:
        open_patterns = [p for p in self.store.patterns if p.status == "open"]
        if not open_patterns:
            return ["- No open patterns"]
        lines: list[str] = []
        shown = 0
        for priority in PATTERN_PRIORITIES:
            group = [p for p in open_patterns if p.priority == priority]
            if priority != "critical":
                if not limits.show_noncritical_patterns:
                    continue
                group = group[:limits.open_patterns]
            if not group:
                continue
            lines.append(f"#### {_title(priority)} Priority")
            lines += [_format_pattern(p, limits) for p in group]
            shown += len(group)
        hidden = len(open_patterns) - shown
        if hidden:
            lines.append(f"- ... and {hidden} more open patterns (see `.claude/context/patterns.md`)")
        return lines

    def _resolved_section(self, limits: RenderLimits) -> list[str]:
        resolved = [p for p in self.store.patterns if p.status == "resolved"]
        resolved.sort(key=lambda p: p.resolved_at or "")
        recent = resolved[-limits.resolved_patterns:] if resolved else []
        if not recent:
            return ["- No recently resolved patterns"]
        return [
            f"- **{truncate(p.pattern, limits.value_chars)}**: "
            f"{truncate(p.solution or 'No solution recorded', limits.value_chars)} ({_date(p.resolved_at)})"
            for p in reversed(recent)
        ]

    def _tasks_section(self, limits: RenderLimits) -> list[str]:
        store = self.store
        open_tasks = store.get_tasks("open")[:limits.open_tasks]
        in_progress = store.get_tasks("in-progress")[:limits.in_progress_tasks]
        completed = sorted(store.get_tasks("completed"), key=lambda t: t.completed_at or "")
        completed = completed[-limits.completed_tasks:] if completed else []

        lines = ["### Active Tasks"]
        lines += [_format_task(t, limits, "[ ]") for t in open_tasks] or ["- No active tasks"]
        lines += ["", "### In Progress"]
        lines += [_format_task(t, limits, "[~]") for t in in_progress] or ["- No tasks in progress"]
        lines += ["", "### Recently Completed"]
        lines += [
            f"- [x] **{truncate(t.description, limits.value_chars)}** (completed: {_date(t.completed_at)})"
            for t in reversed(completed)
        ] or ["- No recently completed tasks"]
        return lines

    def _decisions_section(self, limits: RenderLimits) -> list[str]:
        decisions = self.store.get_recent_decisions(limits.decisions)
        if not decisions:
            return ["- No decisions recorded yet"]
        lines: list[str] = []
        for d in decisions:
            lines.append("")
            lines.append(f"### {_date(d.timestamp)}: {truncate(d.decision, limits.value_chars)}")
            lines.append(f"**Reasoning**: {truncate(d.reasoning, limits.reasoning_chars)}")
            if d.alternatives:
                lines.append(f"**Alternatives Considered**: {', '.join(d.alternatives)}")
            if d.outcome:
                lines.append(f"**Outcome**: {truncate(d.outcome, limits.reasoning_chars)}")
        return lines

    # --- Side-detail documents (unabridged, fully regenerated) ---

    def render_side_documents(self) -> dict[str, str]:
        """File name -> content for .claude/context/."""
        return {
            "knowledge.md": self.render_knowledge(),
            "patterns.md": self.render_patterns(),
            "decisions.md": self.render_decisions(),
            "tasks.md": self.render_tasks(),
        }

    def render_knowledge(self) -> str:
        knowledge = self.store.knowledge
        categories = sorted(knowledge)
        lines = [
            "# Project Knowledge Base",
            f"*{self.store.knowledge_count()} items across {len(categories)} categories*",
            "",
            "## Navigation",
        ]
        lines += [f"- [{c}](#{c}) ({len(knowledge[c])} items)" for c in categories]
        lines.append("")
        for category in categories:
            lines.append(f"## {category}")
            for key in sorted(knowledge[category]):
                item = knowledge[category][key]
                lines.append(f"### {key}")
                lines.append(f"**Value**: {item.value}")
                lines.append(f"**Updated**: {item.last_updated or 'Unknown'}")
                if item.session_id:
                    lines.append(f"**Session**: {item.session_id}")
                lines.append("")
        return "\n".join(lines) + "\n"

    def render_patterns(self) -> str:
        patterns = self.store.patterns
        open_patterns = [p for p in patterns if p.status == "open"]
        resolved = [p for p in patterns if p.status == "resolved"]
        lines = [
            "# Project Patterns",
            f"*{len(patterns)} total patterns*",
            "",
            "## Summary",
            f"- Open Patterns: {len(open_patterns)}",
            f"- Resolved Patterns: {len(resolved)}",
            "",
            "## Open Patterns",
        ]
        for priority in PATTERN_PRIORITIES:
            group = [p for p in open_patterns if p.priority == priority]
            if not group:
                continue
            lines.append(f"### {_title(priority)} Priority")
            for p in group:
                lines.append(f"#### {p.pattern} (ID: {p.id})")
                lines.append(f"- **Description**: {p.description}")
                lines.append(f"- **Effectiveness**: {p.effectiveness}")
                lines.append(f"- **First Seen**: {p.first_seen}")
                lines.append(f"- **Last Seen**: {p.last_seen}")
                lines.append(f"- **Frequency**: {p.frequency}")
                lines.append("")
        lines.append("## Resolved Patterns")
        for p in reversed(resolved):
            lines.append(f"### {p.pattern} (ID: {p.id})")
            lines.append(f"- **Solution**: {p.solution or 'No solution recorded'}")
            lines.append(f"- **Resolved**: {p.resolved_at or 'Unknown'}")
            lines.append("")
        return "\n".join(lines) + "\n"

    def render_decisions(self) -> str:
        decisions = self.store.decisions
        lines = [
            "# Decision Log",
            f"*{len(decisions)} total decisions*",
            "",
            "## Decisions",
        ]
        for d in reversed(decisions):
            lines.append(f"### {_date(d.timestamp)}: {d.decision}")
            lines.append(f"**ID**: {d.id}")
            lines.append(f"**Reasoning**: {d.reasoning}")
            if d.alternatives:
                lines.append(f"**Alternatives Considered**: {', '.join(d.alternatives)}")
            if d.outcome:
                lines.append(f"**Outcome**: {d.outcome}")
            lines.append(f"**Session**: {d.session_id or 'Unknown'}")
            lines.append("")
        return "\n".join(lines) + "\n"

    def render_tasks(self) -> str:
        store = self.store
        open_tasks = store.get_tasks("open")
        in_progress = store.get_tasks("in-progress")
        completed = store.get_tasks("completed")
        lines = [
            "# Task Management",
            f"*{len(store.tasks)} total tasks*",
            "",
            "## Summary",
            f"- Open: {len(open_tasks)}",
            f"- In Progress: {len(in_progress)}",
            f"- Completed: {len(completed)}",
            "",
            "## Open Tasks",
        ]
        for priority in TASK_PRIORITIES:
            group = [t for t in open_tasks if t.priority == priority]
            if not group:
                continue
            lines.append(f"### {_title(priority)} Priority")
            for t in group:
                lines.append(f"- [ ] **{t.description}** (ID: {t.id})")
                if t.assignee:
                    lines.append(f"  - Assigned: {t.assignee}")
                if t.due_date:
                    lines.append(f"  - Due: {t.due_date}")
                lines.append(f"  - Created: {_date(t.created_at)}")
            lines.append("")
        lines.append("## In Progress")
        for t in in_progress:
            lines.append(f"- [~] **{t.description}** (ID: {t.id})")
            lines.append(f"  - Priority: {t.priority}")
            if t.assignee:
                lines.append(f"  - Assigned: {t.assignee}")
        lines.append("")
        lines.append("## Completed")
        for t in reversed(completed):
            lines.append(f"- [x] **{t.description}** (ID: {t.id})")
            lines.append(f"  - Completed: {_date(t.completed_at)}")
            if t.outcome:
                lines.append(f"  - Outcome: {t.outcome}")
        return "\n".join(lines) + "\n"
