"""cmem MCP server — exposes project memory tools to the coding assistant."""

import json
import os
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from cmem.store import MEMORY_DIR, MEMORY_FILE, MemoryStore
from cmem.formatting import (
    format_decision_compact, format_pattern_compact, format_search_compact,
    format_search_json, format_task_compact,
)

mcp = FastMCP("cmem", instructions=(
    "cmem is the project memory. Record design decisions with their reasoning, "
    "recurring problems as patterns, durable facts as knowledge, and open work "
    "as tasks. Read 'project_memory' at the start of a session."
))


def _get_store() -> MemoryStore:
    """Get the MemoryStore for the configured project directory."""
    project_dir = Path(os.environ.get("CMEM_PROJECT_DIR", os.getcwd()))
    if not (project_dir / MEMORY_DIR / MEMORY_FILE).exists():
        raise FileNotFoundError(
            f"cmem not initialized in {project_dir}. "
            f"Run 'cmem init' in the project directory first."
        )
    return MemoryStore(project_dir)


@mcp.tool()
def record_decision(
    decision: str,
    reasoning: str,
    alternatives: list[str] | None = None,
) -> str:
    """Record a design decision and why it was made.

    Args:
        decision: The choice that was made
        reasoning: Why it was made
        alternatives: Other options that were considered
    """
    store = _get_store()
    try:
        decision_id = store.record_decision(decision, reasoning, alternatives)
    except ValueError as e:
        return f"Error: {e}"
    recorded = next(d for d in store.decisions if d.id == decision_id)
    return format_decision_compact(recorded)


@mcp.tool()
def learn_pattern(
    pattern: str,
    description: str,
    effectiveness: float | None = None,
    priority: str | None = None,
) -> str:
    """Record a recurring pattern. Recording a known pattern name bumps its frequency.

    Args:
        pattern: Short name for the pattern (the merge key)
        description: What the pattern is
        effectiveness: 0.0 - 1.0, how well the current approach works
        priority: critical, high, medium or low
    """
    store = _get_store()
    try:
        pattern_id = store.learn_pattern(pattern, description,
                                         effectiveness=effectiveness, priority=priority)
    except ValueError as e:
        return f"Error: {e}"
    return format_pattern_compact(store.get_pattern(pattern_id))


@mcp.tool()
def resolve_pattern(pattern_id: str, solution: str) -> str:
    """Mark a pattern as resolved with the solution that worked."""
    store = _get_store()
    try:
        resolved = store.resolve_pattern(pattern_id, solution)
    except ValueError as e:
        return f"Error: {e}"
    if not resolved:
        return f"Pattern not found: {pattern_id}"
    return f"Resolved: {pattern_id}"


@mcp.tool()
def store_knowledge(key: str, value: str, category: str = "general") -> str:
    """Store a project fact under category/key. Overwrites an existing value."""
    store = _get_store()
    try:
        store.store_knowledge(key, value, category)
    except ValueError as e:
        return f"Error: {e}"
    return f"Stored [{category}] {key}"


@mcp.tool()
def add_task(
    description: str,
    priority: str = "medium",
    assignee: str | None = None,
    due_date: str | None = None,
) -> str:
    """Add an open task.

    Args:
        description: What needs doing
        priority: high, medium or low (anything else is treated as medium)
        assignee: Who owns it
        due_date: When it is due
    """
    store = _get_store()
    try:
        task_id = store.add_task(description, priority=priority,
                                 assignee=assignee, due_date=due_date)
    except ValueError as e:
        return f"Error: {e}"
    return format_task_compact(store.get_task(task_id))


@mcp.tool()
def complete_task(task_id: str, outcome: str = "") -> str:
    """Mark a task completed."""
    store = _get_store()
    try:
        completed = store.complete_task(task_id, outcome)
    except ValueError as e:
        return f"Error: {e}"
    if not completed:
        return f"Task not found: {task_id}"
    return f"Completed: {task_id}"


@mcp.tool()
def search_memory(query: str = "", format: str = "compact") -> str:
    """Search decisions, patterns, tasks and knowledge (case-insensitive substring).

    Args:
        query: Text to look for. Empty matches everything.
        format: compact or json
    """
    store = _get_store()
    results = store.search(query)
    if format == "json":
        return format_search_json(results)
    return format_search_compact(query, results)


@mcp.tool()
def memory_stats() -> str:
    """Record counts for the project memory, as JSON."""
    store = _get_store()
    session = store.current_session
    return json.dumps({
        "project_name": store.metadata.project_name,
        "current_session": session.name if session else None,
        "last_backup": store.metadata.last_backup,
        **store.stats(),
    }, indent=2)


@mcp.tool()
def project_memory() -> str:
    """Return the current CLAUDE.md summary, regenerating it if missing."""
    store = _get_store()
    if not store.document_file.is_file():
        store.sync_document()
    return store.document_file.read_text(encoding="utf-8")


def main():
    """Entry point for cmem-mcp console script."""
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
