"""Tests for the cmem CLI."""

import json

import pytest
from click.testing import CliRunner

from cmem.cli import cli
from cmem.store import MemoryStore
from conftest import QUIET


@pytest.fixture
def runner():
    # Silent mode keeps lifecycle notices out of the captured output
    return CliRunner(env={"CMEM_SILENT_MODE": "true"})


@pytest.fixture
def initialized(runner, project):
    result = runner.invoke(cli, ["-p", str(project), "init", "--name", "demo"])
    assert result.exit_code == 0, result.output
    return project


def _invoke(runner, project, *args):
    return runner.invoke(cli, ["-p", str(project), *args])


class TestInit:

    def test_init_creates_files(self, runner, project):
        result = _invoke(runner, project, "init")
        assert result.exit_code == 0
        assert "cmem initialized" in result.output
        assert (project / ".claude" / "memory.json").exists()
        assert (project / ".claude" / "config.json").exists()
        assert "# Claude Project Memory" in (project / "CLAUDE.md").read_text()
        assert (project / ".claude" / "context" / "tasks.md").exists()

    def test_init_twice(self, runner, initialized):
        result = _invoke(runner, initialized, "init")
        assert "already initialized" in result.output

    def test_commands_need_init(self, runner, project):
        result = _invoke(runner, project, "stats")
        assert result.exit_code == 1
        assert "not initialized" in result.output


class TestTasks:

    def test_add_and_list(self, runner, initialized):
        result = _invoke(runner, initialized, "task", "add", "Fix login", "--priority", "high")
        assert result.exit_code == 0
        assert "Fix login" in result.output

        result = _invoke(runner, initialized, "task", "list", "open", "-f", "json")
        tasks = json.loads(result.output)
        assert [t["description"] for t in tasks] == ["Fix login"]
        assert tasks[0]["priority"] == "high"

    def test_start_and_complete(self, runner, initialized):
        _invoke(runner, initialized, "task", "add", "Fix login")
        task_id = MemoryStore(initialized, config=QUIET).tasks[0].id

        assert _invoke(runner, initialized, "task", "start", task_id).exit_code == 0
        result = _invoke(runner, initialized, "task", "complete", task_id, "-o", "Shipped")
        assert result.exit_code == 0
        task = MemoryStore(initialized, config=QUIET).get_task(task_id)
        assert task.status == "completed"
        assert task.outcome == "Shipped"

    def test_unknown_task(self, runner, initialized):
        result = _invoke(runner, initialized, "task", "complete", "nope")
        assert result.exit_code == 1
        assert "Task not found" in result.output

    def test_empty_description_is_an_error(self, runner, initialized):
        result = _invoke(runner, initialized, "task", "add", "  ")
        assert result.exit_code == 1
        assert "Error:" in result.output


class TestPatternsAndDecisions:

    def test_pattern_repeat_bumps_frequency(self, runner, initialized):
        _invoke(runner, initialized, "pattern", "add", "Flaky test", "Fails on CI")
        result = _invoke(runner, initialized, "pattern", "add", "Flaky test", "Fails on CI")
        assert "(x2" in result.output

        result = _invoke(runner, initialized, "pattern", "list", "-f", "json")
        patterns = json.loads(result.output)
        assert len(patterns) == 1

    def test_pattern_resolve(self, runner, initialized):
        _invoke(runner, initialized, "pattern", "add", "Flaky test", "Fails on CI")
        pattern_id = MemoryStore(initialized, config=QUIET).patterns[0].id
        result = _invoke(runner, initialized, "pattern", "resolve", pattern_id, "Pinned the seed")
        assert result.exit_code == 0
        assert MemoryStore(initialized, config=QUIET).patterns[0].status == "resolved"

    def test_bad_effectiveness(self, runner, initialized):
        result = _invoke(runner, initialized, "pattern", "add", "X", "Y", "-e", "3")
        assert result.exit_code == 1
        assert "effectiveness" in result.output

    def test_decision(self, runner, initialized):
        result = _invoke(runner, initialized, "decision", "Use Postgres", "Need JSONB",
                         "-a", "MySQL, SQLite")
        assert result.exit_code == 0
        assert "Use Postgres" in result.output
        decision = MemoryStore(initialized, config=QUIET).decisions[0]
        assert decision.alternatives == ["MySQL", "SQLite"]


class TestKnowledge:

    def test_add_get_list(self, runner, initialized):
        _invoke(runner, initialized, "knowledge", "add", "port", "5433", "-c", "db")
        result = _invoke(runner, initialized, "knowledge", "get", "port")
        assert result.output.strip() == "5433"
        result = _invoke(runner, initialized, "knowledge", "list")
        assert "[db] port: 5433" in result.output

    def test_get_missing(self, runner, initialized):
        result = _invoke(runner, initialized, "knowledge", "get", "nope")
        assert result.exit_code == 1


class TestSessions:

    def test_start_end_list(self, runner, initialized):
        result = _invoke(runner, initialized, "--no-auto-session", "session", "start", "Refactor")
        assert "Started session" in result.output
        result = _invoke(runner, initialized, "--no-auto-session", "session", "end", "Done")
        assert result.exit_code == 0
        result = _invoke(runner, initialized, "--no-auto-session", "session", "list")
        assert "Refactor" in result.output
        assert "Done" in result.output

    def test_end_without_active(self, runner, initialized):
        _invoke(runner, initialized, "--no-auto-session", "session", "cleanup")
        result = _invoke(runner, initialized, "--no-auto-session", "session", "end")
        assert result.exit_code == 1

    def test_invalid_context(self, runner, initialized):
        result = _invoke(runner, initialized, "session", "start", "X", "-c", "[1, 2]")
        assert result.exit_code == 1
        assert "JSON object" in result.output


class TestSearchAndStats:

    def test_search(self, runner, initialized):
        _invoke(runner, initialized, "task", "add", "Upgrade Django")
        result = _invoke(runner, initialized, "search", "django")
        assert "1 results" in result.output
        assert "Upgrade Django" in result.output

        result = _invoke(runner, initialized, "search", "django", "-f", "json")
        assert len(json.loads(result.output)["tasks"]) == 1

    def test_stats_json(self, runner, initialized):
        _invoke(runner, initialized, "task", "add", "One")
        result = _invoke(runner, initialized, "stats", "-f", "json")
        stats = json.loads(result.output)
        assert stats["project_name"] == "demo"
        assert stats["tasks"] == 1


class TestMaintenance:

    def test_backup(self, runner, initialized):
        result = _invoke(runner, initialized, "backup")
        assert result.exit_code == 0
        assert "Backup created" in result.output

    def test_sync_preserves_manual_sections(self, runner, initialized):
        doc = initialized / "CLAUDE.md"
        doc.write_text(doc.read_text()
                       + "<!-- BEGIN MANUAL SECTION: Notes -->hi<!-- END MANUAL SECTION: Notes -->")
        result = _invoke(runner, initialized, "sync")
        assert "preserved manual sections: Notes" in result.output
        assert "hi" in doc.read_text()


class TestExportImport:

    def test_export_to_stdout(self, runner, initialized):
        _invoke(runner, initialized, "task", "add", "One", "--assignee", "bob")
        result = _invoke(runner, initialized, "export", "--types", "tasks", "--sanitized")
        data = json.loads(result.output)
        assert data["tasks"][0]["assignee"] == "REDACTED"
        assert "sessions" not in data

    def test_export_yaml_then_import_elsewhere(self, runner, initialized, tmp_path):
        _invoke(runner, initialized, "task", "add", "Portable task")
        out = tmp_path / "dump.yaml"
        assert _invoke(runner, initialized, "export", str(out)).exit_code == 0

        target = tmp_path / "target"
        target.mkdir()
        _invoke(runner, target, "init")
        result = _invoke(runner, target, "import", str(out), "--types", "tasks")
        assert result.exit_code == 0
        assert "Imported 1 records" in result.output
        tasks = MemoryStore(target, config=QUIET).tasks
        assert [t.description for t in tasks] == ["Portable task"]

    def test_import_dry_run(self, runner, initialized, tmp_path):
        source = tmp_path / "tasks.json"
        source.write_text(json.dumps({"tasks": [{"description": "Maybe"}]}))
        result = _invoke(runner, initialized, "import", str(source), "--dry-run")
        assert "Dry run: would import 1 records" in result.output
        assert MemoryStore(initialized, config=QUIET).tasks == []

    def test_import_validation_error(self, runner, initialized, tmp_path):
        source = tmp_path / "tasks.json"
        source.write_text(json.dumps({"tasks": [{"priority": "high"}, {"description": "ok"}]}))
        result = _invoke(runner, initialized, "import", str(source))
        assert result.exit_code == 1
        assert "tasks[0].description" in result.output
        assert MemoryStore(initialized, config=QUIET).tasks == []
