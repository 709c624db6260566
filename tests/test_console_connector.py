# tests/test_console_connector.py

from __future__ import annotations

import pytest

from tasktree.connectors.console_connector import run_console_loop


def _feed(monkeypatch: pytest.MonkeyPatch, lines: list[str]) -> None:
    it = iter(lines)

    def fake_input(prompt: str = "") -> str:
        try:
            return next(it)
        except StopIteration:
            raise EOFError from None

    monkeypatch.setattr("builtins.input", fake_input)


def test_plain_text_adds_a_task_and_exit_stops(state, monkeypatch, capsys) -> None:
    _feed(monkeypatch, ["Buy milk", "", "/exit", "/add never reached"])
    run_console_loop(state)

    tasks = state.store.list_tasks()
    assert [t.description for t in tasks] == ["Buy milk"]
    assert "Added task (" in capsys.readouterr().out


def test_loop_ends_on_eof_and_survives_handler_errors(state, monkeypatch, capsys) -> None:
    def broken(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr("tasktree.tasks.task_api.add_task", broken)
    _feed(monkeypatch, ["/add crash please", "/nope"])
    run_console_loop(state)

    out = capsys.readouterr().out
    assert "Internal error while handling a command." in out
    assert "Unknown command: /nope" in out
