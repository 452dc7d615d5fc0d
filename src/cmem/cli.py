"""cmem CLI — project memory for AI coding assistants."""

import json
import logging
import sys
from pathlib import Path

import click

from cmem.config import MemoryConfig, load_config, write_default_config
from cmem.models import PATTERN_PRIORITIES, TASK_PRIORITIES, TASK_STATUSES
from cmem.store import CONFIG_FILE, MEMORY_DIR, MEMORY_FILE, MemoryStore
from cmem.transfer import (
    IMPORTABLE_KINDS,
    export_memory, import_memory, load_import_file, dump_export, write_export,
)
from cmem.formatting import (
    format_json, format_search_compact, format_search_json,
    format_decision_compact, format_import_compact, format_knowledge_compact,
    format_pattern_compact, format_patterns_compact,
    format_sessions_compact, format_stats_compact,
    format_task_compact, format_tasks_compact,
)


FORMAT_OPTION = click.option("--format", "-f", "fmt", default="compact",
                             type=click.Choice(["compact", "json"]))


def _resolve_project(project: str) -> Path:
    """Resolve project directory."""
    return Path(project).resolve()


def _setup_logging(verbose: bool, silent: bool) -> None:
    """Send cmem log records to stderr at a level chosen by --verbose / silentMode."""
    if verbose:
        level = logging.DEBUG
    elif silent:
        level = logging.WARNING
    else:
        level = logging.INFO

    package_logger = logging.getLogger("cmem")
    for handler in list(package_logger.handlers):
        if getattr(handler, "_cmem_cli", False):
            package_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler._cmem_cli = True
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"
                                           if verbose else "%(message)s"))
    package_logger.addHandler(handler)
    package_logger.setLevel(level)


def _get_store(ctx) -> MemoryStore:
    """Open the project's store, exiting if cmem was never initialized here."""
    project = ctx.obj["project"]
    if not (project / MEMORY_DIR / MEMORY_FILE).exists():
        click.echo(f"Error: cmem not initialized in {project}", err=True)
        click.echo("Run 'cmem init' first.", err=True)
        sys.exit(1)
    return MemoryStore(project, config=ctx.obj["overrides"])


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


@click.group()
@click.option("--project", "-p", default=".", help="Project directory")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging on stderr")
@click.option("--no-auto-session", is_flag=True, help="Disable automatic session rotation")
@click.pass_context
def cli(ctx, project, verbose, no_auto_session):
    """cmem — persistent project memory for AI coding assistants."""
    ctx.ensure_object(dict)
    ctx.obj["project"] = _resolve_project(project)
    ctx.obj["overrides"] = MemoryConfig(auto_session=False) if no_auto_session else None
    config = load_config(ctx.obj["project"] / MEMORY_DIR / CONFIG_FILE, ctx.obj["overrides"])
    _setup_logging(verbose, bool(config.silent_mode))


@cli.command()
@click.option("--name", "-n", default=None, help="Project display name (default: directory name)")
@click.pass_context
def init(ctx, name):
    """Initialize cmem in this project and write CLAUDE.md."""
    project = ctx.obj["project"]
    config_path = project / MEMORY_DIR / CONFIG_FILE

    if (project / MEMORY_DIR / MEMORY_FILE).exists():
        click.echo(f"cmem already initialized in {project}")
        return

    if write_default_config(config_path):
        click.echo(f"Wrote default config to {config_path}")
    store = MemoryStore(project, project_name=name, config=ctx.obj["overrides"])
    update = store.sync_document()
    click.echo(f"cmem initialized for '{store.metadata.project_name}'.")
    click.echo(f"Summary document: {update.path}")


@cli.command()
@FORMAT_OPTION
@click.pass_context
def stats(ctx, fmt):
    """Show record counts."""
    store = _get_store(ctx)
    counts = store.stats()
    session = store.current_session

    if fmt == "json":
        click.echo(json.dumps({
            "project_name": store.metadata.project_name,
            "current_session": session.name if session else None,
            "last_backup": store.metadata.last_backup,
            **counts,
        }, indent=2))
        return
    click.echo(f"Project:         {store.metadata.project_name}")
    click.echo(f"Current session: {session.name if session else 'none'}")
    click.echo(f"Last backup:     {store.metadata.last_backup or 'never'}")
    click.echo(format_stats_compact(counts))


# --- Sessions ---

@cli.group()
def session():
    """Start, end and list work sessions."""


@session.command("start")
@click.argument("name")
@click.option("--context", "-c", "context_json", default=None, help="Session context as a JSON object")
@click.pass_context
def session_start(ctx, name, context_json):
    """Start a named session (ends the active one first)."""
    store = _get_store(ctx)
    context = None
    if context_json:
        try:
            context = json.loads(context_json)
        except json.JSONDecodeError as e:
            _fail(f"--context is not valid JSON: {e}")
        if not isinstance(context, dict):
            _fail("--context must be a JSON object")
    try:
        session_id = store.start_session(name, context)
    except ValueError as e:
        _fail(str(e))
    click.echo(f"Started session [{session_id}] {name}")


@session.command("end")
@click.argument("outcome", required=False, default="")
@click.option("--id", "session_id", default=None, help="End this session instead of the active one")
@click.pass_context
def session_end(ctx, outcome, session_id):
    """End the active session with an optional outcome."""
    store = _get_store(ctx)
    if session_id:
        ended = store.end_session_by_id(session_id, outcome)
    else:
        ended = store.end_session(outcome)
    if not ended:
        _fail(f"No active session{f' with id {session_id}' if session_id else ''}.")
    click.echo("Session ended.")


@session.command("list")
@click.option("--limit", "-n", default=10, help="Max sessions")
@FORMAT_OPTION
@click.pass_context
def session_list(ctx, limit, fmt):
    """Show recent sessions, newest first."""
    store = _get_store(ctx)
    sessions = store.get_session_history(limit)
    click.echo(format_json(sessions) if fmt == "json" else format_sessions_compact(sessions))


@session.command("cleanup")
@click.pass_context
def session_cleanup(ctx):
    """End every active session."""
    store = _get_store(ctx)
    count = store.cleanup_sessions()
    click.echo(f"Ended {count} active session(s).")


# --- Decisions ---

@cli.command()
@click.argument("decision")
@click.argument("reasoning")
@click.option("--alternatives", "-a", default=None, help="Comma-separated alternatives considered")
@click.pass_context
def decision(ctx, decision, reasoning, alternatives):
    """Record a decision and its reasoning."""
    store = _get_store(ctx)
    try:
        decision_id = store.record_decision(decision, reasoning, alternatives)
    except ValueError as e:
        _fail(str(e))
    recorded = next(d for d in store.decisions if d.id == decision_id)
    click.echo(format_decision_compact(recorded))


# --- Patterns ---

@cli.group()
def pattern():
    """Track recurring patterns and their resolutions."""


@pattern.command("add")
@click.argument("name")
@click.argument("description")
@click.option("--effectiveness", "-e", type=float, default=None, help="0.0 - 1.0")
@click.option("--priority", type=click.Choice(PATTERN_PRIORITIES), default=None)
@click.option("--frequency", type=int, default=1, help="Occurrences to add (default: 1)")
@click.pass_context
def pattern_add(ctx, name, description, effectiveness, priority, frequency):
    """Record a pattern; repeats increase its frequency."""
    store = _get_store(ctx)
    try:
        pattern_id = store.learn_pattern(name, description, frequency=frequency,
                                         effectiveness=effectiveness, priority=priority)
    except ValueError as e:
        _fail(str(e))
    click.echo(format_pattern_compact(store.get_pattern(pattern_id)))


@pattern.command("resolve")
@click.argument("pattern_id")
@click.argument("solution")
@click.pass_context
def pattern_resolve(ctx, pattern_id, solution):
    """Mark a pattern resolved with the solution that worked."""
    store = _get_store(ctx)
    if not store.resolve_pattern(pattern_id, solution):
        _fail(f"Pattern not found: {pattern_id}")
    click.echo(f"Resolved: {pattern_id}")


@pattern.command("list")
@click.option("--priority", type=click.Choice(PATTERN_PRIORITIES), default=None)
@click.option("--status", type=click.Choice(["open", "resolved"]), default=None)
@FORMAT_OPTION
@click.pass_context
def pattern_list(ctx, priority, status, fmt):
    """List patterns."""
    store = _get_store(ctx)
    patterns = store.list_patterns(priority=priority, status=status)
    click.echo(format_json(patterns) if fmt == "json" else format_patterns_compact(patterns))


# --- Knowledge ---

@cli.group()
def knowledge():
    """Store and look up project knowledge."""


@knowledge.command("add")
@click.argument("key")
@click.argument("value")
@click.option("--category", "-c", default="general", help="Category (default: general)")
@click.pass_context
def knowledge_add(ctx, key, value, category):
    """Store a value under category/key (overwrites)."""
    store = _get_store(ctx)
    try:
        store.store_knowledge(key, value, category)
    except ValueError as e:
        _fail(str(e))
    click.echo(f"Stored [{category}] {key}")


@knowledge.command("get")
@click.argument("key")
@click.option("--category", "-c", default=None)
@click.pass_context
def knowledge_get(ctx, key, category):
    """Print the value stored under key."""
    store = _get_store(ctx)
    item = store.get_knowledge(key, category)
    if item is None:
        _fail(f"Knowledge not found: {key}")
    click.echo(item.value)


@knowledge.command("list")
@click.option("--category", "-c", default=None)
@FORMAT_OPTION
@click.pass_context
def knowledge_list(ctx, category, fmt):
    """List stored knowledge."""
    store = _get_store(ctx)
    entries = store.list_knowledge(category)
    if fmt == "json":
        click.echo(json.dumps([
            {"category": cat, "key": key, "value": item.value, "lastUpdated": item.last_updated}
            for cat, key, item in entries
        ], indent=2))
    else:
        click.echo(format_knowledge_compact(entries))


# --- Tasks ---

@cli.group()
def task():
    """Manage project tasks."""


@task.command("add")
@click.argument("description")
@click.option("--priority", default="medium", help="high, medium or low (default: medium)")
@click.option("--assignee", default=None)
@click.option("--due", "due_date", default=None, help="Due date")
@click.pass_context
def task_add(ctx, description, priority, assignee, due_date):
    """Add an open task."""
    store = _get_store(ctx)
    if priority not in TASK_PRIORITIES:
        click.echo(f"Unknown priority '{priority}', using medium.", err=True)
    try:
        task_id = store.add_task(description, priority=priority,
                                 assignee=assignee, due_date=due_date)
    except ValueError as e:
        _fail(str(e))
    click.echo(format_task_compact(store.get_task(task_id)))


@task.command("start")
@click.argument("task_id")
@click.pass_context
def task_start(ctx, task_id):
    """Move a task to in-progress."""
    store = _get_store(ctx)
    if not store.update_task_status(task_id, "in-progress"):
        _fail(f"Task not found: {task_id}")
    click.echo(f"Started: {task_id}")


@task.command("complete")
@click.argument("task_id")
@click.option("--outcome", "-o", default="", help="What came of it")
@click.pass_context
def task_complete(ctx, task_id, outcome):
    """Mark a task completed."""
    store = _get_store(ctx)
    if not store.complete_task(task_id, outcome):
        _fail(f"Task not found: {task_id}")
    click.echo(f"Completed: {task_id}")


@task.command("list")
@click.argument("status", required=False, type=click.Choice(TASK_STATUSES))
@FORMAT_OPTION
@click.pass_context
def task_list(ctx, status, fmt):
    """List tasks, optionally by status."""
    store = _get_store(ctx)
    tasks = store.get_tasks(status)
    click.echo(format_json(tasks) if fmt == "json" else format_tasks_compact(tasks))


# --- Queries & maintenance ---

@cli.command()
@click.argument("query", required=False, default="")
@FORMAT_OPTION
@click.pass_context
def search(ctx, query, fmt):
    """Search decisions, patterns, tasks and knowledge (case-insensitive)."""
    store = _get_store(ctx)
    results = store.search(query)
    click.echo(format_search_json(results) if fmt == "json" else format_search_compact(query, results))


@cli.command()
@click.pass_context
def backup(ctx):
    """Snapshot memory.json and CLAUDE.md now."""
    store = _get_store(ctx)
    try:
        path = store.backup()
    except OSError as e:
        _fail(f"Backup failed: {e}")
    click.echo(f"Backup created: {path}")


@cli.command()
@click.pass_context
def sync(ctx):
    """Regenerate CLAUDE.md and the context files."""
    store = _get_store(ctx)
    update = store.sync_document()
    click.echo(f"Updated {update.path} ({update.summary})")


def _split_types(types: str | None) -> list[str] | None:
    if not types:
        return None
    return [t.strip() for t in types.split(",") if t.strip()]


@cli.command("export")
@click.argument("output", required=False, type=click.Path(path_type=Path))
@click.option("--types", "-t", default=None, help="Comma-separated record types (default: all)")
@click.option("--sanitized", is_flag=True, help="Redact assignees and session context")
@click.pass_context
def export_cmd(ctx, output, types, sanitized):
    """Export memory as JSON (or YAML for .yaml/.yml files); stdout when no file is given."""
    store = _get_store(ctx)
    try:
        data = export_memory(store, types=_split_types(types), sanitize=sanitized)
    except ValueError as e:
        _fail(str(e))
    if output is None:
        click.echo(dump_export(data, Path("export.json")), nl=False)
        return
    write_export(data, output)
    click.echo(f"Exported to {output}")


@cli.command("import")
@click.argument("source", type=click.Path(path_type=Path))
@click.option("--mode", type=click.Choice(["merge", "replace"]), default="merge")
@click.option("--types", "-t", default=None,
              help=f"Comma-separated record types ({', '.join(IMPORTABLE_KINDS)})")
@click.option("--dry-run", is_flag=True, help="Validate and report counts without importing")
@click.pass_context
def import_cmd(ctx, source, mode, types, dry_run):
    """Import records from a JSON or YAML file."""
    store = _get_store(ctx)
    type_list = _split_types(types)
    try:
        data = load_import_file(source, type_list)
        result = import_memory(store, data, mode=mode, types=type_list, dry_run=dry_run)
    except (OSError, ValueError) as e:
        _fail(str(e))
    click.echo(format_import_compact(result))
