# tests/conftest.py

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from types import SimpleNamespace

import pytest

from tasktree.cli.bootstrap import create_initial_state
from tasktree.core.state import AppState
from tasktree.parsing.metadata import MARKER_ORDER, parse
from tasktree.sync.synchronizer import relation_ids
from tasktree.tasks import task_api


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="tasktree-test",
        log_level="DEBUG",
        # Paths (tmp per test run)
        data_dir=tmp_path,
        db_path=tmp_path / "tasks.sqlite3",
        # Task defaults
        default_list="work",
        # Undo history
        undo_max_entries=50,
        undo_retention_days=30,
    )


@pytest.fixture()
def state(settings: SimpleNamespace) -> AppState:
    """
    AppState wired through the real composition root.

    SQLite stays real here: transactional behavior and the recursive queries
    are part of what we want to test.
    """
    return create_initial_state(settings=settings)


@pytest.fixture()
def add(state: AppState) -> Callable[..., str]:
    """Add a task and return its id (fails the test on anything but Success)."""

    def _add(description: str, *, list_name: str | None = None) -> str:
        result = task_api.add_task(state, description, list_name=list_name)
        assert result.is_success, result
        assert result.task is not None
        return result.task.id

    return _add


@pytest.fixture()
def assert_in_sync(state: AppState) -> Callable[[], None]:
    """Every stored task's metadata line matches the relational tables exactly."""

    def _check() -> None:
        for task_id in state.store.all_task_ids():
            description = state.store.get_description(task_id)
            assert description is not None
            meta = parse(description)
            rel = state.graph.relations(task_id)
            for kind in MARKER_ORDER:
                in_text = meta.ids(kind)
                in_tables = relation_ids(rel, kind)
                assert len(in_text) == len(set(in_text)), (task_id, kind, description)
                assert sorted(in_text) == sorted(in_tables), (task_id, kind, description)

    return _check


def snapshot(state: AppState) -> dict:
    """Everything undo must put back, in a comparable form."""
    with state.store.connection() as conn:
        tasks = [tuple(r) for r in conn.execute("SELECT * FROM tasks ORDER BY id")]
        deps = [tuple(r) for r in conn.execute("SELECT * FROM task_dependencies ORDER BY 1, 2")]
        rels = [tuple(r) for r in conn.execute("SELECT * FROM task_relations ORDER BY 1, 2")]
    return {"tasks": tasks, "deps": deps, "rels": rels}


@pytest.fixture()
def take_snapshot(state: AppState) -> Callable[[], dict]:
    return lambda: snapshot(state)
