# src/tasktree/tasks/task_api.py

"""
Entry points, one per user-facing verb.

Every mutation runs in a single store transaction with the change journal
recording, so the graph writes, the re-synced descriptions and the undo entry
commit together. Failures inside roll everything back and propagate; routine
bad input comes back as a typed result instead.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date

from ..cascade.cascade_engine import status_label
from ..core.results import BatchResult, Error, NoChange, NotFound, Success, TaskResult
from ..core.state import AppState
from ..undo.commands import (
    AddBlockerCommand,
    AddRelatedCommand,
    AddTaskCommand,
    DeleteTaskCommand,
    MetadataChangedCommand,
    MoveTaskCommand,
    RemoveBlockerCommand,
    RemoveRelatedCommand,
    RenameTaskCommand,
    RestoreTaskCommand,
    SetParentCommand,
    SetStatusCommand,
)
from .task_models import Priority, Task, TaskStatus
from .task_store import ChangeJournal, utc_now_iso

logger = logging.getLogger(__name__)


def _snapshots(journal: ChangeJournal) -> dict[str, dict[str, str]]:
    return {
        "texts_before": dict(journal.texts_before),
        "texts_after": dict(journal.texts_after),
    }


# ---- reads ----


def get_task(state: AppState, task_id: str, *, include_trashed: bool = False) -> Task | None:
    return state.store.get_task(task_id, include_trashed=include_trashed)


def list_tasks(state: AppState, list_name: str | None = None, *, trashed: bool = False) -> list[Task]:
    return state.store.list_tasks(list_name, trashed=trashed)


# ---- add / rename ----


def add_task(state: AppState, description: str, *, list_name: str | None = None) -> TaskResult:
    """
    Create a task from free text and establish the relationships its
    metadata line declares. Bad markers become warnings, not failures.
    """
    text = (description or "").strip()
    if not text:
        return Error("Description cannot be empty")

    store = state.store
    target = list_name or state.settings.default_list
    warnings: list[str] = []

    with store.transaction(), store.recording() as journal:
        parsed = state.sync.parse(text)
        target = state.reconciler.adopt_parent_list(parsed, target, warnings)

        task = Task(
            id=store.new_task_id(),
            description=text,
            status=TaskStatus.PENDING,
            created_at=utc_now_iso(),
            list_name=target,
            due_date=parsed.due_date,
            priority=parsed.priority,
            tags=list(parsed.tags),
            sort_order=store.next_sort_order(target),
        )
        store.insert_task(task)
        warnings += state.reconciler.establish(task, parsed)

        created = store.get_task(task.id)
        assert created is not None
        state.undo.record(
            AddTaskCommand(task=created, edges=list(journal.edges), **_snapshots(journal))
        )

    state.mark_seen()
    logger.debug("Added task id=%s list=%s warnings=%d", created.id, created.list_name, len(warnings))
    return Success(f"Added task ({created.id})", warnings=warnings, task=created)


def rename_task(state: AppState, task_id: str, new_description: str) -> TaskResult:
    """
    Replace a description wholesale.

    Without a metadata line every relationship and field is kept. With one,
    relationships are reconciled marker category by marker category.
    """
    text = (new_description or "").strip()
    if not text:
        return Error("Description cannot be empty")

    store = state.store
    with store.transaction(), store.recording() as journal:
        task = store.get_task(task_id)
        if task is None:
            return NotFound(task_id)
        if task.description == text:
            return NoChange(f"Task ({task_id}) already has this description")

        outcome = state.reconciler.reconcile_rename(task, text)
        store.update_task_fields(
            task_id,
            priority=outcome.priority,
            due_date=outcome.due_date,
            tags=outcome.tags,
        )
        state.undo.record(
            RenameTaskCommand(
                task_id=task_id,
                old_description=task.description,
                new_description=store.get_description(task_id) or text,
                old_priority=task.priority,
                new_priority=outcome.priority,
                old_due_date=task.due_date,
                new_due_date=outcome.due_date,
                old_tags=list(task.tags),
                new_tags=list(outcome.tags),
                edges=list(journal.edges),
                **_snapshots(journal),
            )
        )

    state.mark_seen()
    return Success(f"Renamed task: {task_id}", warnings=outcome.warnings, task=store.get_task(task_id))


# ---- parent / subtask ----


def set_parent(state: AppState, task_id: str, parent_id: str) -> TaskResult:
    store, graph = state.store, state.graph
    with store.transaction(), store.recording() as journal:
        task = store.get_task(task_id)
        if task is None:
            return NotFound(task_id)
        parent = store.get_task(parent_id)
        if parent is None:
            return NotFound(parent_id)
        if task_id == parent_id:
            return Error("A task cannot be its own parent")
        if task.list_name != parent.list_name:
            return Error(
                f"Cannot set parent: task ({task_id}) and parent ({parent_id}) are in different lists."
            )
        if task.parent_id == parent_id:
            return NoChange(f"({task_id}) is already a subtask of ({parent_id})")
        if graph.would_create_parent_cycle(task_id, parent_id):
            return Error(f"Circular reference: ({parent_id}) is already a descendant of ({task_id})")

        old = graph.set_parent(task_id, parent_id)
        state.sync.parent_set(task_id, old, parent_id)
        state.undo.record(
            SetParentCommand(
                task_id=task_id, old_parent_id=old, new_parent_id=parent_id, **_snapshots(journal)
            )
        )

    state.mark_seen()
    return Success(f"Set ({task_id}) as subtask of ({parent_id})")


def unset_parent(state: AppState, task_id: str) -> TaskResult:
    store = state.store
    with store.transaction(), store.recording() as journal:
        task = store.get_task(task_id)
        if task is None:
            return NotFound(task_id)
        if not task.parent_id:
            return NoChange(f"Task ({task_id}) has no parent")

        old = state.graph.clear_parent(task_id)
        assert old is not None
        state.sync.parent_cleared(task_id, old)
        state.undo.record(
            SetParentCommand(
                task_id=task_id, old_parent_id=old, new_parent_id=None, **_snapshots(journal)
            )
        )

    state.mark_seen()
    return Success(f"Removed parent from ({task_id})")


# ---- blocking ----


def add_blocker(state: AppState, blocker_id: str, blocked_id: str) -> TaskResult:
    """blocker_id must be finished before blocked_id."""
    if blocker_id == blocked_id:
        return Error("A task cannot block itself")

    store, graph = state.store, state.graph
    with store.transaction(), store.recording() as journal:
        if store.get_task(blocker_id) is None:
            return NotFound(blocker_id)
        if store.get_task(blocked_id) is None:
            return NotFound(blocked_id)
        if graph.has_blocking_edge(blocker_id, blocked_id):
            return NoChange(f"({blocker_id}) already blocks ({blocked_id})")
        if graph.would_create_cycle(blocker_id, blocked_id):
            return Error(f"Circular dependency: ({blocked_id}) already blocks ({blocker_id})")

        graph.add_blocking_edge(blocker_id, blocked_id)
        state.sync.blocker_added(blocker_id, blocked_id)
        state.undo.record(
            AddBlockerCommand(blocker_id=blocker_id, blocked_id=blocked_id, **_snapshots(journal))
        )

    state.mark_seen()
    return Success(f"({blocker_id}) now blocks ({blocked_id})")


def remove_blocker(state: AppState, blocker_id: str, blocked_id: str) -> TaskResult:
    store, graph = state.store, state.graph
    with store.transaction(), store.recording() as journal:
        if not graph.remove_blocking_edge(blocker_id, blocked_id):
            return NoChange(f"({blocker_id}) does not block ({blocked_id})")

        state.sync.blocker_removed(blocker_id, blocked_id)
        state.undo.record(
            RemoveBlockerCommand(blocker_id=blocker_id, blocked_id=blocked_id, **_snapshots(journal))
        )

    state.mark_seen()
    return Success(f"({blocker_id}) no longer blocks ({blocked_id})")


# ---- related ----


def add_related(state: AppState, task_id1: str, task_id2: str) -> TaskResult:
    if task_id1 == task_id2:
        return Error("A task cannot be related to itself")

    store, graph = state.store, state.graph
    with store.transaction(), store.recording() as journal:
        if store.get_task(task_id1) is None:
            return NotFound(task_id1)
        if store.get_task(task_id2) is None:
            return NotFound(task_id2)
        if not graph.add_related_edge(task_id1, task_id2):
            return NoChange(f"({task_id1}) is already related to ({task_id2})")

        state.sync.related_added(task_id1, task_id2)
        state.undo.record(
            AddRelatedCommand(task_id1=task_id1, task_id2=task_id2, **_snapshots(journal))
        )

    state.mark_seen()
    return Success(f"({task_id1}) is now related to ({task_id2})")


def remove_related(state: AppState, task_id1: str, task_id2: str) -> TaskResult:
    store, graph = state.store, state.graph
    with store.transaction(), store.recording() as journal:
        if not graph.remove_related_edge(task_id1, task_id2):
            return NoChange(f"({task_id1}) is not related to ({task_id2})")

        state.sync.related_removed(task_id1, task_id2)
        state.undo.record(
            RemoveRelatedCommand(task_id1=task_id1, task_id2=task_id2, **_snapshots(journal))
        )

    state.mark_seen()
    return Success(f"({task_id1}) is no longer related to ({task_id2})")


# ---- status ----


def set_status(state: AppState, task_id: str, status: TaskStatus) -> TaskResult:
    with state.store.transaction():
        result, changes = state.cascade.set_status(task_id, status)
        if result.is_success:
            state.undo.record(SetStatusCommand(task_id=task_id, status=status, changes=changes))

    state.mark_seen()
    return result


def set_statuses(state: AppState, task_ids: Iterable[str], status: TaskStatus) -> BatchResult:
    """One transaction, one undo unit, one result per id."""
    ids = list(task_ids)
    results: list[TaskResult] = []

    with state.store.transaction(), state.undo.batch(
        f"Set {len(ids)} task(s) to {status_label(status)}"
    ):
        for task_id in ids:
            result, changes = state.cascade.set_status(task_id, status)
            results.append(result)
            if result.is_success:
                state.undo.record(
                    SetStatusCommand(task_id=task_id, status=status, changes=changes)
                )

    state.mark_seen()
    return BatchResult(results)


# ---- move ----


def move_task(state: AppState, task_id: str, target_list: str) -> TaskResult:
    with state.store.transaction():
        result, effect = state.cascade.move(task_id, target_list)
        if effect is not None:
            state.undo.record(
                MoveTaskCommand(
                    task_id=task_id,
                    source_list=effect.source_list,
                    target_list=effect.target_list,
                    descendant_ids=list(effect.descendant_ids),
                    old_sort_order=effect.old_sort_order,
                    new_sort_order=effect.new_sort_order,
                )
            )

    state.mark_seen()
    return result


# ---- delete / restore / purge ----


def delete_task(state: AppState, task_id: str) -> TaskResult:
    with state.store.transaction():
        result, effect = state.cascade.delete(task_id)
        if effect is not None:
            state.undo.record(
                DeleteTaskCommand(task_id=task_id, deleted_tasks=list(effect.deleted_tasks))
            )

    state.mark_seen()
    return result


def delete_tasks(state: AppState, task_ids: Iterable[str]) -> BatchResult:
    """Trash several tasks as one undo unit. Ids already trashed by an earlier cascade report NotFound."""
    ids = list(task_ids)
    results: list[TaskResult] = []

    with state.store.transaction(), state.undo.batch(f"Delete {len(ids)} task(s)"):
        for task_id in ids:
            result, effect = state.cascade.delete(task_id)
            results.append(result)
            if effect is not None:
                state.undo.record(
                    DeleteTaskCommand(task_id=task_id, deleted_tasks=list(effect.deleted_tasks))
                )

    state.mark_seen()
    return BatchResult(results)


def restore_task(state: AppState, task_id: str) -> TaskResult:
    with state.store.transaction():
        result, restored = state.cascade.restore(task_id)
        if restored:
            state.undo.record(RestoreTaskCommand(task_id=task_id, restored_ids=restored))

    state.mark_seen()
    return result


def hard_delete(state: AppState, task_id: str) -> TaskResult:
    """Permanently remove a trashed task and its trashed subtasks. Not undoable."""
    store = state.store
    with store.transaction():
        task = store.get_task(task_id, include_trashed=True)
        if task is None:
            return NotFound(task_id)
        if not task.is_trashed:
            return Error(f"Task ({task_id}) is not in trash; delete it first")
        count = state.cascade.purge(state.cascade.trashed_subtree(task_id))

    state.mark_seen()
    return Success(f"Permanently deleted {count} task(s)")


def clear_trash(state: AppState, list_name: str | None = None) -> TaskResult:
    store = state.store
    with store.transaction():
        trashed = store.list_tasks(list_name, trashed=True)
        if not trashed:
            return NoChange("Trash is empty")
        ids: list[str] = []
        for task in trashed:
            ids.extend(state.cascade.trashed_subtree(task.id))
        count = state.cascade.purge(ids)

    state.mark_seen()
    return Success(f"Permanently deleted {count} task(s) from trash")


# ---- due date / priority ----


def set_due_date(state: AppState, task_id: str, due_date: date | None) -> TaskResult:
    store = state.store
    with store.transaction(), store.recording() as journal:
        task = store.get_task(task_id)
        if task is None:
            return NotFound(task_id)
        if task.due_date == due_date:
            return NoChange(f"Task ({task_id}) due date unchanged")

        store.update_task_fields(task_id, due_date=due_date)
        state.sync.set_fields(task_id, due_date=due_date)
        state.undo.record(
            MetadataChangedCommand(
                task_id=task_id,
                old_due_date=task.due_date,
                new_due_date=due_date,
                old_priority=task.priority,
                new_priority=task.priority,
                **_snapshots(journal),
            )
        )

    state.mark_seen()
    if due_date is None:
        return Success(f"Cleared due date for {task_id}")
    return Success(f"Set due date for {task_id}: {due_date.isoformat()}")


def set_priority(state: AppState, task_id: str, priority: Priority | None) -> TaskResult:
    store = state.store
    with store.transaction(), store.recording() as journal:
        task = store.get_task(task_id)
        if task is None:
            return NotFound(task_id)
        if task.priority == priority:
            return NoChange(f"Task ({task_id}) priority unchanged")

        store.update_task_fields(task_id, priority=priority)
        state.sync.set_fields(task_id, priority=priority)
        state.undo.record(
            MetadataChangedCommand(
                task_id=task_id,
                old_due_date=task.due_date,
                new_due_date=task.due_date,
                old_priority=task.priority,
                new_priority=priority,
                **_snapshots(journal),
            )
        )

    state.mark_seen()
    if priority is None:
        return Success(f"Cleared priority for {task_id}")
    return Success(f"Set priority for {task_id}: {priority.value}")


# ---- history ----


def undo(state: AppState) -> TaskResult:
    cmd = state.undo.undo(state)
    if cmd is None:
        return NoChange("Nothing to undo")
    state.mark_seen()
    return Success(f"Undone: {cmd.describe()}")


def redo(state: AppState) -> TaskResult:
    cmd = state.undo.redo(state)
    if cmd is None:
        return NoChange("Nothing to redo")
    state.mark_seen()
    return Success(f"Redone: {cmd.describe()}")
