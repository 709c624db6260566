# src/tasktree/core/results.py

"""
Typed outcomes of every entry point.

Bad ids and semantic no-ops are routine user input, so they are returned,
never raised. Messages are short and machine-checkable; the presentation
layer owns the wording shown to people.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..tasks.task_models import Task


class TaskResult:
    @property
    def is_success(self) -> bool:
        return isinstance(self, Success)

    @property
    def is_error(self) -> bool:
        return isinstance(self, (Error, NotFound))


@dataclass(frozen=True, slots=True)
class Success(TaskResult):
    message: str
    warnings: list[str] = field(default_factory=list)
    task: Task | None = None


@dataclass(frozen=True, slots=True)
class NotFound(TaskResult):
    task_id: str


@dataclass(frozen=True, slots=True)
class NoChange(TaskResult):
    message: str


@dataclass(frozen=True, slots=True)
class Error(TaskResult):
    message: str


@dataclass(frozen=True, slots=True)
class BatchResult:
    results: list[TaskResult]

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.is_success)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if r.is_error)

    @property
    def all_succeeded(self) -> bool:
        return all(r.is_success for r in self.results)

    @property
    def any_failed(self) -> bool:
        return any(r.is_error for r in self.results)
