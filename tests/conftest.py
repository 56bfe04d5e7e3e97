"""Pytest configuration and shared fixtures."""

import os
from collections.abc import Generator
from pathlib import Path

import pytest
from loguru import logger

# Keep the developer's environment out of the tests
for _key in list(os.environ):
    if _key.startswith("TASKGRAPH_"):
        del os.environ[_key]


@pytest.fixture(autouse=True)
def clean_settings() -> Generator:
    """Clear cached settings and loguru sinks around every test."""
    from taskgraph.core.config import clear_settings_cache

    clear_settings_cache()
    yield
    clear_settings_cache()
    logger.remove()


@pytest.fixture
def settings(tmp_path: Path):
    """Settings pointing at a temporary data directory."""
    from taskgraph.core.config import Settings

    return Settings(
        data_dir=tmp_path / "data",
        backup_retention=3,
        io_retry_base_delay=0,
        lock_timeout=2.0,
    )


@pytest.fixture
def store(settings):
    """Task store on the temporary data directory."""
    from taskgraph.tasks.store import TaskStore

    return TaskStore(settings=settings)


@pytest.fixture
def manager(store):
    """Task manager on the temporary store."""
    from taskgraph.tasks.manager import TaskManager

    return TaskManager(store=store)


@pytest.fixture
def graph(manager):
    """Dependency graph manager sharing the temporary store."""
    from taskgraph.graph.dependency_manager import DependencyGraphManager

    return DependencyGraphManager(task_manager=manager)


@pytest.fixture
def diamond(manager) -> dict[str, str]:
    """
    Tasks A, B, C, D with B->A, C->{A,B}, D->C (arrow = depends on).

    Returns a name -> id mapping.
    """
    a = manager.create_task({"id": "A", "title": "Design schema", "priority": "high"})
    b = manager.create_task({"id": "B", "title": "Write models", "dependencies": ["A"]})
    c = manager.create_task({"id": "C", "title": "Build API", "dependencies": ["A", "B"]})
    d = manager.create_task({"id": "D", "title": "Ship release", "dependencies": ["C"]})
    return {"A": a.id, "B": b.id, "C": c.id, "D": d.id}


@pytest.fixture
def write_raw(store):
    """Write a raw tag payload directly, bypassing validation of edges."""
    import json

    def _write(tasks: list[dict], tag: str = "master") -> None:
        store.path.parent.mkdir(parents=True, exist_ok=True)
        document = {
            "tags": {tag: {"name": tag, "tasks": tasks, "metadata": {}}},
            "currentTag": tag,
            "metadata": {},
        }
        store.path.write_text(json.dumps(document), encoding="utf-8")

    return _write
