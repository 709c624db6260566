# src/tasktree/undo/undo_log.py

"""
Two-stack undo/redo log persisted in the task database.

- record() pushes onto the undo stack and clears redo (inside the caller's
  transaction, so the history commits together with the change it describes)
- undo()/redo() run the command in their own transaction and move it across
- history survives restarts; entries older than the retention window are
  dropped on load and each stack keeps at most max_entries commands
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from ..tasks.task_store import TaskStore, utc_now_iso
from .commands import Command, CompositeCommand, command_from_json, command_to_json

if TYPE_CHECKING:
    from ..core.state import AppState

logger = logging.getLogger(__name__)

UNDO_STACK = "undo"
REDO_STACK = "redo"


@dataclass(slots=True)
class HistoryEntry:
    command: Command
    created_at: str


class UndoLog:
    def __init__(
        self,
        store: TaskStore,
        *,
        max_entries: int = 50,
        retention_days: int = 30,
    ) -> None:
        self._store = store
        self._max_entries = max(1, int(max_entries))
        self._retention_days = max(1, int(retention_days))

        self._undo: list[HistoryEntry] = []
        self._redo: list[HistoryEntry] = []

        self._batch: list[Command] | None = None
        self._batch_description = ""

        self.reload()

    # ---- inspection ----

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def undo_count(self) -> int:
        return len(self._undo)

    @property
    def redo_count(self) -> int:
        return len(self._redo)

    def peek_undo(self) -> Command | None:
        return self._undo[-1].command if self._undo else None

    def peek_redo(self) -> Command | None:
        return self._redo[-1].command if self._redo else None

    def undo_descriptions(self) -> list[str]:
        """Most recent first."""
        return [e.command.describe() for e in reversed(self._undo)]

    # ---- recording ----

    def record(self, cmd: Command) -> None:
        if self._batch is not None:
            self._batch.append(cmd)
            return
        self._push(cmd)

    def _push(self, cmd: Command) -> None:
        with self._store.transaction():
            # Another process may have written history since we last looked.
            self.reload()
            undo = [*self._undo, HistoryEntry(cmd, utc_now_iso())]
            undo = undo[-self._max_entries :]
            self._save(undo, [])
        self._undo, self._redo = undo, []
        logger.debug("Undo recorded: %s (depth=%d)", cmd.describe(), len(undo))

    def begin_batch(self, description: str) -> None:
        if self._batch is not None:
            raise RuntimeError("An undo batch is already open")
        self._batch = []
        self._batch_description = description

    def end_batch(self) -> Command | None:
        """Close the batch and record it as one unit. Empty batches record nothing."""
        if self._batch is None:
            raise RuntimeError("No undo batch is open")
        commands, description = self._batch, self._batch_description
        self._batch, self._batch_description = None, ""
        if not commands:
            return None
        cmd = CompositeCommand(description=description, commands=commands)
        self._push(cmd)
        return cmd

    def cancel_batch(self) -> None:
        self._batch, self._batch_description = None, ""

    @contextlib.contextmanager
    def batch(self, description: str) -> Iterator[None]:
        self.begin_batch(description)
        try:
            yield
        except BaseException:
            self.cancel_batch()
            raise
        self.end_batch()

    # ---- undo / redo ----

    def undo(self, state: AppState) -> Command | None:
        if self._batch is not None:
            raise RuntimeError("Cannot undo while an undo batch is open")
        with self._store.transaction():
            self.reload()
            if not self._undo:
                return None
            entry = self._undo[-1]
            entry.command.undo(state)
            undo = self._undo[:-1]
            redo = [*self._redo, HistoryEntry(entry.command, utc_now_iso())][-self._max_entries :]
            self._save(undo, redo)
        self._undo, self._redo = undo, redo
        logger.debug("Undone: %s", entry.command.describe())
        return entry.command

    def redo(self, state: AppState) -> Command | None:
        if self._batch is not None:
            raise RuntimeError("Cannot redo while an undo batch is open")
        with self._store.transaction():
            self.reload()
            if not self._redo:
                return None
            entry = self._redo[-1]
            entry.command.execute(state)
            redo = self._redo[:-1]
            undo = [*self._undo, HistoryEntry(entry.command, utc_now_iso())][-self._max_entries :]
            self._save(undo, redo)
        self._undo, self._redo = undo, redo
        logger.debug("Redone: %s", entry.command.describe())
        return entry.command

    # ---- persistence ----

    def clear_history(self) -> None:
        self._save([], [])
        self._undo, self._redo = [], []
        self.cancel_batch()

    def reload(self) -> int:
        """Re-read both stacks from the database. Returns the number of entries loaded."""
        cutoff = (datetime.now(UTC) - timedelta(days=self._retention_days)).isoformat()
        undo: list[HistoryEntry] = []
        redo: list[HistoryEntry] = []

        for stack, payload, created_at in self._store.load_undo_rows(since_iso=cutoff):
            try:
                cmd = command_from_json(payload)
            except (ValueError, KeyError, TypeError) as e:
                logger.warning("Skipping unreadable undo entry (%s): %s", stack, e)
                continue
            target = undo if stack == UNDO_STACK else redo
            target.append(HistoryEntry(cmd, created_at))

        self._undo = undo[-self._max_entries :]
        self._redo = redo[-self._max_entries :]
        return len(self._undo) + len(self._redo)

    def _save(self, undo: list[HistoryEntry], redo: list[HistoryEntry]) -> None:
        rows = [(UNDO_STACK, command_to_json(e.command), e.created_at) for e in undo]
        rows += [(REDO_STACK, command_to_json(e.command), e.created_at) for e in redo]
        self._store.save_undo_rows(rows)
