# src/tasktree/tasks/task_models.py

from __future__ import annotations

import random
from dataclasses import asdict, dataclass, field
from datetime import date
from enum import StrEnum
from typing import Any

ID_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
ID_LENGTH = 3

# Edge graphs recorded in EdgeChange.graph
EDGE_PARENT = "parent"
EDGE_BLOCKS = "blocks"
EDGE_RELATED = "related"

# Sentinel for "argument not given" where None is a meaningful value.
UNSET: Any = object()


def generate_task_id() -> str:
    return "".join(random.choices(ID_ALPHABET, k=ID_LENGTH))


class TaskStatus(StrEnum):
    """Task lifecycle status."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING


class Priority(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def from_db(cls, raw: str | None) -> Priority | None:
        if not raw:
            return None
        try:
            return cls(raw)
        except ValueError:
            return None


@dataclass(slots=True)
class Task:
    id: str
    description: str
    status: TaskStatus
    created_at: str
    list_name: str

    completed_at: str | None = None
    due_date: date | None = None
    priority: Priority | None = None
    tags: list[str] = field(default_factory=list)

    is_trashed: bool = False
    sort_order: int = 0
    parent_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe record (used by the undo log)."""
        data = asdict(self)
        data["status"] = self.status.value
        data["priority"] = self.priority.value if self.priority else None
        data["due_date"] = self.due_date.isoformat() if self.due_date else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        due = data.get("due_date")
        return cls(
            id=str(data["id"]),
            description=str(data["description"]),
            status=TaskStatus.from_db(data.get("status")),
            created_at=str(data["created_at"]),
            list_name=str(data["list_name"]),
            completed_at=data.get("completed_at"),
            due_date=date.fromisoformat(due) if due else None,
            priority=Priority.from_db(data.get("priority")),
            tags=list(data.get("tags") or []),
            is_trashed=bool(data.get("is_trashed", False)),
            sort_order=int(data.get("sort_order", 0)),
            parent_id=data.get("parent_id"),
        )


@dataclass(slots=True)
class Relations:
    """Relational truth for one task, in the same shape as its metadata markers."""

    parent_id: str | None = None
    subtask_ids: list[str] = field(default_factory=list)
    blocks_ids: list[str] = field(default_factory=list)
    blocked_by_ids: list[str] = field(default_factory=list)
    related_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class EdgeChange:
    """
    One graph mutation, in the order it happened.

    graph="parent":  source is the child, target the parent.
    graph="blocks":  source blocks target.
    graph="related": source/target in canonical (lo, hi) order.
    """

    graph: str
    source: str
    target: str
    added: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EdgeChange:
        return cls(
            graph=str(data["graph"]),
            source=str(data["source"]),
            target=str(data["target"]),
            added=bool(data["added"]),
        )


@dataclass(frozen=True, slots=True)
class StatusChange:
    task_id: str
    old_status: TaskStatus
    old_completed_at: str | None
    new_status: TaskStatus
    new_completed_at: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "old_status": self.old_status.value,
            "old_completed_at": self.old_completed_at,
            "new_status": self.new_status.value,
            "new_completed_at": self.new_completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StatusChange:
        return cls(
            task_id=str(data["task_id"]),
            old_status=TaskStatus.from_db(data.get("old_status")),
            old_completed_at=data.get("old_completed_at"),
            new_status=TaskStatus.from_db(data.get("new_status")),
            new_completed_at=data.get("new_completed_at"),
        )
