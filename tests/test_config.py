# tests/test_config.py

from __future__ import annotations

from pathlib import Path

from tasktree.config import Settings


def test_settings_defaults(monkeypatch) -> None:
    for key in (
        "TASKTREE_APP_NAME",
        "TASKTREE_DATA_DIR",
        "TASKTREE_DB_PATH",
        "TASKTREE_DEFAULT_LIST",
        "TASKTREE_UNDO_MAX_ENTRIES",
    ):
        monkeypatch.delenv(key, raising=False)

    s = Settings.from_env()
    assert s.app_name == "tasktree"
    assert s.db_path == Path(".local/tasktree") / "tasks.sqlite3"
    assert s.default_list == "tasks"
    assert s.undo_max_entries == 50


def test_settings_from_env(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TASKTREE_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("TASKTREE_DB_PATH", raising=False)
    monkeypatch.setenv("TASKTREE_DEFAULT_LIST", "inbox")
    monkeypatch.setenv("TASKTREE_UNDO_MAX_ENTRIES", "0")
    monkeypatch.setenv("TASKTREE_UNDO_RETENTION_DAYS", "not a number")

    s = Settings.from_env()
    assert s.data_dir == tmp_path
    assert s.db_path == tmp_path / "tasks.sqlite3"
    assert s.default_list == "inbox"
    assert s.undo_max_entries == 1
    assert s.undo_retention_days == 30
