# src/tasktree/cascade/cascade_engine.py

"""
Subtree-wide state changes: delete/restore, status, list move and purge.

Callers run these inside TaskStore.transaction(), so the root change and
every descendant change commit together or not at all. Each operation
returns its typed result plus the exact set of affected ids, which the
undo commands keep for reversal.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field, replace

from ..core.results import Error, NoChange, NotFound, Success, TaskResult
from ..graph.graph_store import GraphStore
from ..sync.synchronizer import Synchronizer
from ..tasks.task_models import StatusChange, Task, TaskStatus
from ..tasks.task_store import TaskStore, utc_now_iso

logger = logging.getLogger(__name__)

_STATUS_LABELS = {
    TaskStatus.PENDING: "pending",
    TaskStatus.IN_PROGRESS: "in progress",
    TaskStatus.DONE: "done",
}


def status_label(status: TaskStatus) -> str:
    return _STATUS_LABELS[status]


@dataclass(slots=True)
class DeleteEffect:
    deleted_tasks: list[Task] = field(default_factory=list)

    @property
    def trashed_ids(self) -> list[str]:
        return [t.id for t in self.deleted_tasks]


@dataclass(slots=True)
class MoveEffect:
    source_list: str
    target_list: str
    descendant_ids: list[str]
    old_sort_order: int
    new_sort_order: int


class CascadeEngine:
    def __init__(self, store: TaskStore, graph: GraphStore, sync: Synchronizer) -> None:
        self._store = store
        self._graph = graph
        self._sync = sync

    # ---- delete / restore ----

    def delete(self, task_id: str) -> tuple[TaskResult, DeleteEffect | None]:
        """Trash task_id and every active descendant."""
        task = self._store.get_task(task_id)
        if task is None:
            return NotFound(task_id), None

        descendant_ids = self._graph.get_descendant_ids(task_id)
        records = [task]
        for did in descendant_ids:
            child = self._store.get_task(did)
            if child is not None:
                records.append(child)

        effect = DeleteEffect(deleted_tasks=records)
        self._store.set_trashed(effect.trashed_ids, True)
        logger.debug("Trashed id=%s descendants=%s", task_id, descendant_ids)

        if descendant_ids:
            msg = f"Deleted task ({task_id}) and {len(descendant_ids)} subtask(s)"
        else:
            msg = f"Deleted task: {task_id}"
        return Success(msg), effect

    def restore(self, task_id: str) -> tuple[TaskResult, list[str] | None]:
        """Bring back a trashed task plus the subtasks that were trashed under it."""
        task = self._store.get_task(task_id, include_trashed=True)
        if task is None:
            return NotFound(task_id), None
        if not task.is_trashed:
            return NoChange(f"Task ({task_id}) is not in trash"), None

        ids = [task_id, *self._graph.get_trashed_descendant_ids(task_id)]
        self._store.set_trashed(ids, False)
        logger.debug("Restored ids=%s", ids)

        if len(ids) > 1:
            msg = f"Restored task ({task_id}) and {len(ids) - 1} subtask(s)"
        else:
            msg = f"Restored task: {task_id}"
        return Success(msg), ids

    def reinstate(self, records: Iterable[Task]) -> list[str]:
        """Re-insert saved records whose rows were purged. Returns the ids re-created."""
        created: list[str] = []
        for record in records:
            if self._store.task_exists(record.id):
                continue
            parent_id = record.parent_id
            if parent_id is not None and not self._store.task_exists(parent_id):
                parent_id = None
            self._store.ensure_list(record.list_name)
            self._store.insert_task(replace(record, parent_id=parent_id))
            created.append(record.id)
        for tid in created:
            self._sync.resync(tid)
        for tid in created:
            parent_id = self._graph.get_parent(tid)
            if parent_id is not None:
                self._sync.resync(parent_id)
        return created

    # ---- status ----

    def set_status(
        self, task_id: str, status: TaskStatus
    ) -> tuple[TaskResult, list[StatusChange]]:
        """
        Done cascades to every active descendant that is not Done yet.

        Any other status touches the task alone and clears completed_at.
        """
        task = self._store.get_task(task_id)
        if task is None:
            return NotFound(task_id), []
        if task.status == status:
            return NoChange(f"Task {task_id} is already {status_label(status)}"), []

        completed_at = utc_now_iso() if status == TaskStatus.DONE else None
        changes = [
            StatusChange(task_id, task.status, task.completed_at, status, completed_at)
        ]
        if status == TaskStatus.DONE:
            for did in self._graph.get_descendant_ids(task_id):
                child = self._store.get_task(did)
                if child is None or child.status == TaskStatus.DONE:
                    continue
                changes.append(
                    StatusChange(did, child.status, child.completed_at, status, completed_at)
                )

        self.apply_status_changes(changes)

        cascaded = len(changes) - 1
        if cascaded:
            msg = f"Set {task_id} and {cascaded} subtask(s) to {status_label(status)}"
        else:
            msg = f"Set {task_id} to {status_label(status)}"
        return Success(msg), changes

    def apply_status_changes(self, changes: Iterable[StatusChange], *, forward: bool = True) -> None:
        for change in changes:
            if forward:
                status, completed_at = change.new_status, change.new_completed_at
            else:
                status, completed_at = change.old_status, change.old_completed_at
            self._store.update_task_fields(
                change.task_id, status=status, completed_at=completed_at
            )
            logger.debug("Status id=%s -> %s", change.task_id, status)

    # ---- move ----

    def move(self, task_id: str, target_list: str) -> tuple[TaskResult, MoveEffect | None]:
        """Move a top-level task and its whole subtree (trashed subtasks included)."""
        if not target_list or not target_list.strip():
            return Error("Target list name is required"), None
        task = self._store.get_task(task_id)
        if task is None:
            return NotFound(task_id), None
        if task.parent_id:
            return (
                Error(
                    f"Cannot move subtask ({task_id}) on its own. "
                    "Remove parent first, or move its parent."
                ),
                None,
            )
        if task.list_name == target_list:
            return NoChange(f"Task is already in '{target_list}'"), None

        descendant_ids = self._graph.get_all_descendant_ids(task_id)
        effect = MoveEffect(
            source_list=task.list_name,
            target_list=target_list,
            descendant_ids=descendant_ids,
            old_sort_order=task.sort_order,
            new_sort_order=self._store.next_sort_order(target_list),
        )
        self.apply_move(task_id, effect)

        if descendant_ids:
            msg = (
                f"Moved ({task_id}) and {len(descendant_ids)} subtask(s) "
                f"from '{effect.source_list}' to '{target_list}'"
            )
        else:
            msg = f"Moved task {task_id} from '{effect.source_list}' to '{target_list}'"
        return Success(msg), effect

    def apply_move(self, task_id: str, effect: MoveEffect, *, forward: bool = True) -> None:
        target = effect.target_list if forward else effect.source_list
        sort_order = effect.new_sort_order if forward else effect.old_sort_order
        self._store.set_list([task_id, *effect.descendant_ids], target)
        self._store.update_task_fields(task_id, sort_order=sort_order)
        logger.debug("Moved id=%s to list=%s", task_id, target)

    # ---- purge ----

    def purge(self, task_ids: Iterable[str]) -> int:
        """
        Permanently remove rows. Edges go with them (FK cascade), children
        outside the purged set lose their parent, and every surviving
        counterpart is re-projected so its markers match the tables again.
        """
        doomed = list(dict.fromkeys(task_ids))
        if not doomed:
            return 0
        doomed_set = set(doomed)

        counterparts: list[str] = []
        for tid in doomed:
            rel = self._graph.relations(tid)
            refs = [
                rel.parent_id,
                *rel.subtask_ids,
                *rel.blocks_ids,
                *rel.blocked_by_ids,
                *rel.related_ids,
            ]
            counterparts.extend(r for r in refs if r and r not in doomed_set)

        for tid in doomed:
            self._store.delete_task_row(tid)
        for tid in dict.fromkeys(counterparts):
            self._sync.resync(tid)

        logger.info("Purged %d task(s)", len(doomed))
        return len(doomed)

    def trashed_subtree(self, task_id: str) -> list[str]:
        return [task_id, *self._graph.get_trashed_descendant_ids(task_id)]

