# src/tasktree/sync/reconciler.py

"""
Text -> graph reconciliation for the two paths where text is the input:
adding a task and renaming one.

This is the only place that derives relationships from description text.
Markers are diffed against the relational tables (not against the old text),
removals run before additions, and every addition is validated. A marker
that fails validation is dropped from the text and reported as a warning;
it never aborts the add/rename itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date

from ..graph.graph_store import GraphStore
from ..parsing.metadata import MARKER_ORDER, MarkerKind, ParsedMetadata, render
from ..tasks.task_models import Priority, Task
from ..tasks.task_store import TaskStore
from .synchronizer import Synchronizer, relation_ids

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RenameOutcome:
    """Fields a rename leaves on the task, plus skipped-marker warnings."""

    priority: Priority | None
    due_date: date | None
    tags: list[str]
    warnings: list[str] = field(default_factory=list)


class TextReconciler:
    def __init__(self, store: TaskStore, graph: GraphStore, sync: Synchronizer) -> None:
        self._store = store
        self._graph = graph
        self._sync = sync

    # ---- add ----

    def adopt_parent_list(self, parsed: ParsedMetadata, list_name: str, warnings: list[str]) -> str:
        """A new subtask lives in its parent's list."""
        if not parsed.parent_id:
            return list_name
        parent = self._store.get_task(parsed.parent_id)
        if parent is None or parent.list_name == list_name:
            return list_name
        warnings.append(
            f"Subtask moved to list '{parent.list_name}' to match parent ({parent.id})"
        )
        return parent.list_name

    def establish(self, task: Task, parsed: ParsedMetadata) -> list[str]:
        """Create the relationships a freshly inserted task declares."""
        warnings: list[str] = []
        if parsed.has_metadata:
            self._add_markers(task, parsed, warnings)
        self._sync.resync(task.id)
        return warnings

    # ---- rename ----

    def reconcile_rename(self, task: Task, new_description: str) -> RenameOutcome:
        old = self._sync.parse(task.description)
        new = self._sync.parse(new_description)

        if not new.has_metadata:
            # No metadata line: keep every relationship and field, re-rendered under the new text.
            self._store.set_description(task.id, render(replace(old, plain_text=new.plain_text)))
            self._sync.resync(task.id)
            return RenameOutcome(priority=task.priority, due_date=task.due_date, tags=list(task.tags))

        # Raw token unchanged: keep the stored date so relative tokens do not drift.
        due = task.due_date if new.due_raw == old.due_raw else new.due_date
        outcome = RenameOutcome(priority=new.priority, due_date=due, tags=list(new.tags))

        self._store.set_description(task.id, new_description)
        rel = self._graph.relations(task.id)
        for kind in MARKER_ORDER:
            wanted = new.ids(kind)
            for ref in relation_ids(rel, kind):
                if ref not in wanted:
                    self._remove(task.id, kind, ref)

        remaining = self._graph.relations(task.id)
        additions = new
        for kind in MARKER_ORDER:
            have = relation_ids(remaining, kind)
            additions = additions.with_ids(kind, [i for i in new.ids(kind) if i not in have])
        self._add_markers(task, additions, outcome.warnings)

        self._sync.resync(task.id)
        return outcome

    # ---- shared ----

    def _remove(self, task_id: str, kind: MarkerKind, ref: str) -> None:
        if kind is MarkerKind.PARENT:
            old = self._graph.clear_parent(task_id)
            if old is not None:
                self._sync.parent_cleared(task_id, old)
        elif kind is MarkerKind.SUBTASK:
            if self._graph.get_parent(ref) == task_id:
                self._graph.clear_parent(ref)
                self._sync.parent_cleared(ref, task_id)
        elif kind is MarkerKind.BLOCKS:
            if self._graph.remove_blocking_edge(task_id, ref):
                self._sync.blocker_removed(task_id, ref)
        elif kind is MarkerKind.BLOCKED_BY:
            if self._graph.remove_blocking_edge(ref, task_id):
                self._sync.blocker_removed(ref, task_id)
        elif self._graph.remove_related_edge(task_id, ref):
            self._sync.related_removed(task_id, ref)

    def _add_markers(self, task: Task, meta: ParsedMetadata, warnings: list[str]) -> None:
        if meta.parent_id:
            self._add_parent(task, meta.parent_id, warnings)
        for ref in meta.blocks_ids:
            self._add_blocks(task, ref, warnings)
        for ref in meta.subtask_ids:
            self._add_subtask(task, ref, warnings)
        for ref in meta.blocked_by_ids:
            self._add_blocked_by(task, ref, warnings)
        for ref in meta.related_ids:
            self._add_related(task, ref, warnings)

    def _skip(self, task: Task, warnings: list[str], message: str) -> None:
        logger.info("Skipped marker on %s: %s", task.id, message)
        warnings.append(message)

    def _add_parent(self, task: Task, parent_id: str, warnings: list[str]) -> None:
        parent = self._store.get_task(parent_id)
        if parent is None:
            self._skip(task, warnings, f"Parent task ({parent_id}) not found, skipping parent relationship")
            return
        if parent_id == task.id:
            self._skip(task, warnings, "A task cannot be its own parent, skipping")
            return
        if parent.list_name != task.list_name:
            self._skip(
                task,
                warnings,
                f"Parent task ({parent_id}) is in a different list, skipping parent relationship",
            )
            return
        if self._graph.would_create_parent_cycle(task.id, parent_id):
            self._skip(
                task, warnings, f"Circular reference with ({parent_id}), skipping parent relationship"
            )
            return
        old = self._graph.set_parent(task.id, parent_id)
        self._sync.parent_set(task.id, old, parent_id)

    def _add_subtask(self, task: Task, child_id: str, warnings: list[str]) -> None:
        child = self._store.get_task(child_id)
        if child is None:
            self._skip(
                task,
                warnings,
                f"Subtask ({child_id}) not found, skipping inverse parent relationship",
            )
            return
        if child_id == task.id:
            self._skip(task, warnings, "A task cannot be its own subtask, skipping")
            return
        if child.list_name != task.list_name:
            self._skip(
                task,
                warnings,
                f"Subtask ({child_id}) is in a different list, skipping inverse parent relationship",
            )
            return
        if self._graph.would_create_parent_cycle(child_id, task.id):
            self._skip(
                task,
                warnings,
                f"Circular reference with ({child_id}), skipping inverse parent relationship",
            )
            return
        old = self._graph.set_parent(child_id, task.id)
        self._sync.parent_set(child_id, old, task.id)

    def _add_blocks(self, task: Task, blocked_id: str, warnings: list[str]) -> None:
        if blocked_id == task.id:
            self._skip(task, warnings, "A task cannot block itself, skipping")
            return
        if self._store.get_task(blocked_id) is None:
            self._skip(
                task,
                warnings,
                f"Blocked task ({blocked_id}) not found, skipping blocker relationship",
            )
            return
        if self._graph.would_create_cycle(task.id, blocked_id):
            self._skip(
                task,
                warnings,
                f"Circular dependency with ({blocked_id}), skipping blocker relationship",
            )
            return
        if self._graph.add_blocking_edge(task.id, blocked_id):
            self._sync.blocker_added(task.id, blocked_id)

    def _add_blocked_by(self, task: Task, blocker_id: str, warnings: list[str]) -> None:
        if blocker_id == task.id:
            self._skip(task, warnings, "A task cannot block itself, skipping")
            return
        if self._store.get_task(blocker_id) is None:
            self._skip(
                task,
                warnings,
                f"Blocker task ({blocker_id}) not found, skipping inverse blocker relationship",
            )
            return
        if self._graph.would_create_cycle(blocker_id, task.id):
            self._skip(
                task,
                warnings,
                f"Circular dependency with ({blocker_id}), skipping inverse blocker relationship",
            )
            return
        if self._graph.add_blocking_edge(blocker_id, task.id):
            self._sync.blocker_added(blocker_id, task.id)

    def _add_related(self, task: Task, related_id: str, warnings: list[str]) -> None:
        if related_id == task.id:
            self._skip(task, warnings, "A task cannot be related to itself, skipping")
            return
        if self._store.get_task(related_id) is None:
            self._skip(
                task,
                warnings,
                f"Related task ({related_id}) not found, skipping related relationship",
            )
            return
        if self._graph.add_related_edge(task.id, related_id):
            self._sync.related_added(task.id, related_id)
