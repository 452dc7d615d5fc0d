"""Shared fixtures for cmem tests."""

import logging

import pytest

from cmem.config import MemoryConfig
from cmem.store import MemoryStore

# Lifecycle policies off: tests that need them build their own store
QUIET = MemoryConfig(auto_session=False, auto_backup=False)


@pytest.fixture(autouse=True)
def _isolate(monkeypatch):
    """Keep CMEM_* variables from the host out of the tests, and reset CLI logging."""
    for name in ("AUTO_SESSION", "AUTO_SESSION_HOURS", "AUTO_BACKUP", "BACKUP_INTERVAL",
                 "MAX_BACKUP_DAYS", "TOKEN_OPTIMIZATION", "SILENT_MODE", "PROJECT_DIR"):
        monkeypatch.delenv(f"CMEM_{name}", raising=False)
    yield
    package_logger = logging.getLogger("cmem")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def project(tmp_path):
    project = tmp_path / "demo-project"
    project.mkdir()
    return project


@pytest.fixture
def store(project):
    """Empty store with automatic sessions and backups disabled."""
    return MemoryStore(project, project_name="demo", config=QUIET)


@pytest.fixture
def seeded_store(store):
    """Store with a session and a few records of every kind."""
    store.start_session("Auth work", {"branch": "feature/auth"})
    store.record_decision("Use JWT for sessions", "Stateless and works with the mobile app",
                          ["server sessions", "opaque tokens"])
    store.learn_pattern("Flaky refresh test", "Token refresh test fails on slow CI",
                        effectiveness=0.4, priority="high")
    store.learn_pattern("Missing index", "Slow user lookups traced to missing index",
                        priority="critical")
    store.add_task("Rotate signing keys", priority="high", assignee="alice")
    store.add_task("Document auth flow", priority="low")
    store.store_knowledge("db", "PostgreSQL 16 on port 5433", category="infrastructure")
    store.store_knowledge("auth_header", "Authorization: Bearer <token>", category="api")
    return store


@pytest.fixture
def other_store(tmp_path):
    """A second, empty project store for import targets."""
    other = tmp_path / "other-project"
    other.mkdir()
    return MemoryStore(other, project_name="other", config=QUIET)
