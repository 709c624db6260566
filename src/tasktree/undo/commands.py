# src/tasktree/undo/commands.py

"""
Reversible commands and their JSON codec.

Every command is a dataclass tagged with a `kind` string. The tag is written
into the serialized form and COMMAND_TYPES maps it back to the class, so the
persisted history never depends on Python class paths.

Commands capture the exact prior state they overwrite: old status and
completed_at per task, old list and sort key, the ids a cascade touched, full
task records for deletes, and byte-exact description snapshots for every task
whose text was re-synced. undo() puts that state back; execute() re-applies
the recorded net effect (used for redo).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import TYPE_CHECKING, Any, ClassVar

from ..cascade.cascade_engine import MoveEffect
from ..tasks.task_models import EdgeChange, Priority, StatusChange, Task, TaskStatus

if TYPE_CHECKING:
    from ..core.state import AppState

logger = logging.getLogger(__name__)


def _date_to_str(d: date | None) -> str | None:
    return d.isoformat() if d else None


def _str_to_date(s: str | None) -> date | None:
    return date.fromisoformat(s) if s else None


def _prio_to_str(p: Priority | None) -> str | None:
    return p.value if p else None


def _apply_texts(state: AppState, texts: dict[str, str]) -> None:
    for task_id, text in texts.items():
        state.store.set_description(task_id, text)
    # A purge since the snapshot leaves markers pointing at rows that are gone.
    for task_id in texts:
        state.sync.repair(task_id)


def _apply_edges(state: AppState, edges: list[EdgeChange], *, forward: bool) -> None:
    for change in edges if forward else reversed(edges):
        state.graph.apply_edge_change(change, forward=forward)


def _both_exist(state: AppState, a: str, b: str) -> bool:
    return state.store.task_exists(a) and state.store.task_exists(b)


class Command:
    kind: ClassVar[str] = "command"

    def execute(self, state: AppState) -> None:
        raise NotImplementedError

    def undo(self, state: AppState) -> None:
        raise NotImplementedError

    def describe(self) -> str:
        return self.kind

    def payload(self) -> dict[str, Any]:
        raise NotImplementedError

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, **self.payload()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Command:
        raise NotImplementedError


@dataclass(kw_only=True)
class TextSnapshotCommand(Command):
    """A command whose side effects include re-synced descriptions."""

    texts_before: dict[str, str] = field(default_factory=dict)
    texts_after: dict[str, str] = field(default_factory=dict)

    def _texts(self) -> dict[str, Any]:
        return {"texts_before": dict(self.texts_before), "texts_after": dict(self.texts_after)}

    @staticmethod
    def _load_texts(data: dict[str, Any]) -> dict[str, Any]:
        return {
            "texts_before": {str(k): str(v) for k, v in (data.get("texts_before") or {}).items()},
            "texts_after": {str(k): str(v) for k, v in (data.get("texts_after") or {}).items()},
        }


# ---- tasks ----


@dataclass
class AddTaskCommand(TextSnapshotCommand):
    kind: ClassVar[str] = "add"

    task: Task
    edges: list[EdgeChange] = field(default_factory=list)

    def execute(self, state: AppState) -> None:
        if not state.store.task_exists(self.task.id):
            state.store.insert_task(replace(self.task, parent_id=None))
        _apply_edges(state, self.edges, forward=True)
        _apply_texts(state, self.texts_after)

    def undo(self, state: AppState) -> None:
        _apply_edges(state, self.edges, forward=False)
        state.store.delete_task_row(self.task.id)
        _apply_texts(state, {k: v for k, v in self.texts_before.items() if k != self.task.id})

    def describe(self) -> str:
        return f"Add task ({self.task.id})"

    def payload(self) -> dict[str, Any]:
        return {
            "task": self.task.to_dict(),
            "edges": [e.to_dict() for e in self.edges],
            **self._texts(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AddTaskCommand:
        return cls(
            task=Task.from_dict(data["task"]),
            edges=[EdgeChange.from_dict(e) for e in data.get("edges") or []],
            **cls._load_texts(data),
        )


@dataclass
class RenameTaskCommand(TextSnapshotCommand):
    kind: ClassVar[str] = "rename"

    task_id: str
    old_description: str
    new_description: str
    old_priority: Priority | None = None
    new_priority: Priority | None = None
    old_due_date: date | None = None
    new_due_date: date | None = None
    old_tags: list[str] = field(default_factory=list)
    new_tags: list[str] = field(default_factory=list)
    edges: list[EdgeChange] = field(default_factory=list)

    def execute(self, state: AppState) -> None:
        _apply_edges(state, self.edges, forward=True)
        _apply_texts(state, self.texts_after)
        state.store.update_task_fields(
            self.task_id,
            priority=self.new_priority,
            due_date=self.new_due_date,
            tags=list(self.new_tags),
        )

    def undo(self, state: AppState) -> None:
        _apply_edges(state, self.edges, forward=False)
        _apply_texts(state, self.texts_before)
        state.store.update_task_fields(
            self.task_id,
            priority=self.old_priority,
            due_date=self.old_due_date,
            tags=list(self.old_tags),
        )

    def describe(self) -> str:
        return f"Rename task ({self.task_id})"

    def payload(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "old_description": self.old_description,
            "new_description": self.new_description,
            "old_priority": _prio_to_str(self.old_priority),
            "new_priority": _prio_to_str(self.new_priority),
            "old_due_date": _date_to_str(self.old_due_date),
            "new_due_date": _date_to_str(self.new_due_date),
            "old_tags": list(self.old_tags),
            "new_tags": list(self.new_tags),
            "edges": [e.to_dict() for e in self.edges],
            **self._texts(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RenameTaskCommand:
        return cls(
            task_id=str(data["task_id"]),
            old_description=str(data["old_description"]),
            new_description=str(data["new_description"]),
            old_priority=Priority.from_db(data.get("old_priority")),
            new_priority=Priority.from_db(data.get("new_priority")),
            old_due_date=_str_to_date(data.get("old_due_date")),
            new_due_date=_str_to_date(data.get("new_due_date")),
            old_tags=list(data.get("old_tags") or []),
            new_tags=list(data.get("new_tags") or []),
            edges=[EdgeChange.from_dict(e) for e in data.get("edges") or []],
            **cls._load_texts(data),
        )


@dataclass
class MetadataChangedCommand(TextSnapshotCommand):
    """Due date and/or priority edited outside a rename."""

    kind: ClassVar[str] = "metadata"

    task_id: str
    old_due_date: date | None = None
    new_due_date: date | None = None
    old_priority: Priority | None = None
    new_priority: Priority | None = None

    def execute(self, state: AppState) -> None:
        state.store.update_task_fields(
            self.task_id, due_date=self.new_due_date, priority=self.new_priority
        )
        _apply_texts(state, self.texts_after)

    def undo(self, state: AppState) -> None:
        state.store.update_task_fields(
            self.task_id, due_date=self.old_due_date, priority=self.old_priority
        )
        _apply_texts(state, self.texts_before)

    def describe(self) -> str:
        return f"Change metadata of ({self.task_id})"

    def payload(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "old_due_date": _date_to_str(self.old_due_date),
            "new_due_date": _date_to_str(self.new_due_date),
            "old_priority": _prio_to_str(self.old_priority),
            "new_priority": _prio_to_str(self.new_priority),
            **self._texts(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MetadataChangedCommand:
        return cls(
            task_id=str(data["task_id"]),
            old_due_date=_str_to_date(data.get("old_due_date")),
            new_due_date=_str_to_date(data.get("new_due_date")),
            old_priority=Priority.from_db(data.get("old_priority")),
            new_priority=Priority.from_db(data.get("new_priority")),
            **cls._load_texts(data),
        )


# ---- relationships ----


@dataclass
class SetParentCommand(TextSnapshotCommand):
    """Covers unset too (new_parent_id=None)."""

    kind: ClassVar[str] = "set_parent"

    task_id: str
    old_parent_id: str | None
    new_parent_id: str | None

    def _point(self, state: AppState, parent_id: str | None) -> None:
        if parent_id is None or not state.store.task_exists(parent_id):
            state.graph.clear_parent(self.task_id)
        else:
            state.graph.set_parent(self.task_id, parent_id)

    def execute(self, state: AppState) -> None:
        self._point(state, self.new_parent_id)
        _apply_texts(state, self.texts_after)

    def undo(self, state: AppState) -> None:
        self._point(state, self.old_parent_id)
        _apply_texts(state, self.texts_before)

    def describe(self) -> str:
        if self.new_parent_id is None:
            return f"Remove parent of ({self.task_id})"
        return f"Set parent of ({self.task_id}) to ({self.new_parent_id})"

    def payload(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "old_parent_id": self.old_parent_id,
            "new_parent_id": self.new_parent_id,
            **self._texts(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SetParentCommand:
        return cls(
            task_id=str(data["task_id"]),
            old_parent_id=data.get("old_parent_id"),
            new_parent_id=data.get("new_parent_id"),
            **cls._load_texts(data),
        )


@dataclass
class AddBlockerCommand(TextSnapshotCommand):
    kind: ClassVar[str] = "add_blocker"

    blocker_id: str
    blocked_id: str

    def execute(self, state: AppState) -> None:
        if _both_exist(state, self.blocker_id, self.blocked_id):
            state.graph.add_blocking_edge(self.blocker_id, self.blocked_id)
        _apply_texts(state, self.texts_after)

    def undo(self, state: AppState) -> None:
        state.graph.remove_blocking_edge(self.blocker_id, self.blocked_id)
        _apply_texts(state, self.texts_before)

    def describe(self) -> str:
        return f"({self.blocker_id}) blocks ({self.blocked_id})"

    def payload(self) -> dict[str, Any]:
        return {"blocker_id": self.blocker_id, "blocked_id": self.blocked_id, **self._texts()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Command:
        return cls(
            blocker_id=str(data["blocker_id"]),
            blocked_id=str(data["blocked_id"]),
            **cls._load_texts(data),
        )


@dataclass
class RemoveBlockerCommand(AddBlockerCommand):
    kind: ClassVar[str] = "remove_blocker"

    def execute(self, state: AppState) -> None:
        state.graph.remove_blocking_edge(self.blocker_id, self.blocked_id)
        _apply_texts(state, self.texts_after)

    def undo(self, state: AppState) -> None:
        if _both_exist(state, self.blocker_id, self.blocked_id):
            state.graph.add_blocking_edge(self.blocker_id, self.blocked_id)
        _apply_texts(state, self.texts_before)

    def describe(self) -> str:
        return f"({self.blocker_id}) no longer blocks ({self.blocked_id})"


@dataclass
class AddRelatedCommand(TextSnapshotCommand):
    kind: ClassVar[str] = "add_related"

    task_id1: str
    task_id2: str

    def execute(self, state: AppState) -> None:
        if _both_exist(state, self.task_id1, self.task_id2):
            state.graph.add_related_edge(self.task_id1, self.task_id2)
        _apply_texts(state, self.texts_after)

    def undo(self, state: AppState) -> None:
        state.graph.remove_related_edge(self.task_id1, self.task_id2)
        _apply_texts(state, self.texts_before)

    def describe(self) -> str:
        return f"({self.task_id1}) related to ({self.task_id2})"

    def payload(self) -> dict[str, Any]:
        return {"task_id1": self.task_id1, "task_id2": self.task_id2, **self._texts()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Command:
        return cls(
            task_id1=str(data["task_id1"]),
            task_id2=str(data["task_id2"]),
            **cls._load_texts(data),
        )


@dataclass
class RemoveRelatedCommand(AddRelatedCommand):
    kind: ClassVar[str] = "remove_related"

    def execute(self, state: AppState) -> None:
        state.graph.remove_related_edge(self.task_id1, self.task_id2)
        _apply_texts(state, self.texts_after)

    def undo(self, state: AppState) -> None:
        if _both_exist(state, self.task_id1, self.task_id2):
            state.graph.add_related_edge(self.task_id1, self.task_id2)
        _apply_texts(state, self.texts_before)

    def describe(self) -> str:
        return f"({self.task_id1}) no longer related to ({self.task_id2})"


# ---- cascades ----


@dataclass
class SetStatusCommand(Command):
    kind: ClassVar[str] = "set_status"

    task_id: str
    status: TaskStatus
    changes: list[StatusChange] = field(default_factory=list)

    def execute(self, state: AppState) -> None:
        state.cascade.apply_status_changes(self.changes, forward=True)

    def undo(self, state: AppState) -> None:
        state.cascade.apply_status_changes(reversed(self.changes), forward=False)

    def describe(self) -> str:
        return f"Set ({self.task_id}) to {self.status.value}"

    def payload(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "status": self.status.value,
            "changes": [c.to_dict() for c in self.changes],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SetStatusCommand:
        return cls(
            task_id=str(data["task_id"]),
            status=TaskStatus.from_db(data.get("status")),
            changes=[StatusChange.from_dict(c) for c in data.get("changes") or []],
        )


@dataclass
class MoveTaskCommand(Command):
    kind: ClassVar[str] = "move"

    task_id: str
    source_list: str
    target_list: str
    descendant_ids: list[str] = field(default_factory=list)
    old_sort_order: int = 0
    new_sort_order: int = 0

    def _effect(self) -> MoveEffect:
        return MoveEffect(
            source_list=self.source_list,
            target_list=self.target_list,
            descendant_ids=list(self.descendant_ids),
            old_sort_order=self.old_sort_order,
            new_sort_order=self.new_sort_order,
        )

    def execute(self, state: AppState) -> None:
        state.cascade.apply_move(self.task_id, self._effect(), forward=True)

    def undo(self, state: AppState) -> None:
        state.cascade.apply_move(self.task_id, self._effect(), forward=False)

    def describe(self) -> str:
        return f"Move ({self.task_id}) from '{self.source_list}' to '{self.target_list}'"

    def payload(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "source_list": self.source_list,
            "target_list": self.target_list,
            "descendant_ids": list(self.descendant_ids),
            "old_sort_order": self.old_sort_order,
            "new_sort_order": self.new_sort_order,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MoveTaskCommand:
        return cls(
            task_id=str(data["task_id"]),
            source_list=str(data["source_list"]),
            target_list=str(data["target_list"]),
            descendant_ids=[str(i) for i in data.get("descendant_ids") or []],
            old_sort_order=int(data.get("old_sort_order", 0)),
            new_sort_order=int(data.get("new_sort_order", 0)),
        )


@dataclass
class DeleteTaskCommand(Command):
    """Soft delete. Keeps full records so a later purge cannot make it irreversible."""

    kind: ClassVar[str] = "delete"

    task_id: str
    deleted_tasks: list[Task] = field(default_factory=list)

    @property
    def trashed_ids(self) -> list[str]:
        return [t.id for t in self.deleted_tasks]

    def execute(self, state: AppState) -> None:
        state.store.set_trashed(self.trashed_ids, True)

    def undo(self, state: AppState) -> None:
        state.cascade.reinstate(self.deleted_tasks)
        state.store.set_trashed(self.trashed_ids, False)

    def describe(self) -> str:
        extra = len(self.deleted_tasks) - 1
        if extra > 0:
            return f"Delete ({self.task_id}) and {extra} subtask(s)"
        return f"Delete ({self.task_id})"

    def payload(self) -> dict[str, Any]:
        return {"task_id": self.task_id, "deleted_tasks": [t.to_dict() for t in self.deleted_tasks]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeleteTaskCommand:
        return cls(
            task_id=str(data["task_id"]),
            deleted_tasks=[Task.from_dict(t) for t in data.get("deleted_tasks") or []],
        )


@dataclass
class RestoreTaskCommand(Command):
    kind: ClassVar[str] = "restore"

    task_id: str
    restored_ids: list[str] = field(default_factory=list)

    def execute(self, state: AppState) -> None:
        state.store.set_trashed(self.restored_ids, False)

    def undo(self, state: AppState) -> None:
        state.store.set_trashed(self.restored_ids, True)

    def describe(self) -> str:
        return f"Restore ({self.task_id})"

    def payload(self) -> dict[str, Any]:
        return {"task_id": self.task_id, "restored_ids": list(self.restored_ids)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RestoreTaskCommand:
        return cls(
            task_id=str(data["task_id"]),
            restored_ids=[str(i) for i in data.get("restored_ids") or []],
        )


@dataclass
class CompositeCommand(Command):
    """Several commands from one user action; undone and redone as one unit."""

    kind: ClassVar[str] = "batch"

    description: str
    commands: list[Command] = field(default_factory=list)

    def execute(self, state: AppState) -> None:
        for cmd in self.commands:
            cmd.execute(state)

    def undo(self, state: AppState) -> None:
        for cmd in reversed(self.commands):
            cmd.undo(state)

    def describe(self) -> str:
        return self.description

    def payload(self) -> dict[str, Any]:
        return {"description": self.description, "commands": [c.to_dict() for c in self.commands]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CompositeCommand:
        return cls(
            description=str(data.get("description") or ""),
            commands=[command_from_dict(c) for c in data.get("commands") or []],
        )


COMMAND_TYPES: dict[str, type[Command]] = {
    cls.kind: cls
    for cls in (
        AddTaskCommand,
        RenameTaskCommand,
        MetadataChangedCommand,
        SetParentCommand,
        AddBlockerCommand,
        RemoveBlockerCommand,
        AddRelatedCommand,
        RemoveRelatedCommand,
        SetStatusCommand,
        MoveTaskCommand,
        DeleteTaskCommand,
        RestoreTaskCommand,
        CompositeCommand,
    )
}


def command_from_dict(data: dict[str, Any]) -> Command:
    kind = data.get("kind")
    cls = COMMAND_TYPES.get(str(kind))
    if cls is None:
        raise ValueError(f"unknown command kind: {kind!r}")
    return cls.from_dict(data)


def command_to_json(cmd: Command) -> str:
    return json.dumps(cmd.to_dict(), ensure_ascii=False)


def command_from_json(payload: str) -> Command:
    data = json.loads(payload)
    if not isinstance(data, dict):
        raise ValueError("command payload must be a JSON object")
    return command_from_dict(data)
