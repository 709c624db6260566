# src/tasktree/sync/synchronizer.py

"""
One-way projector: graph mutation events -> description text.

Each event re-parses the affected descriptions, swaps exactly one marker
category and renders the result back. Plain text, priority, due token and
tags pass through untouched. Nothing here ever reads relationships out of
text; the relational tables are the source of truth.
"""

from __future__ import annotations

import logging
from datetime import date

from ..core.ports import DateResolver
from ..graph.graph_store import GraphStore
from ..parsing.dates import resolve_date
from ..parsing.metadata import MARKER_ORDER, MarkerKind, ParsedMetadata, parse, render
from ..tasks.task_models import UNSET, Priority, Relations
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def relation_ids(rel: Relations, kind: MarkerKind) -> list[str]:
    if kind is MarkerKind.PARENT:
        return [rel.parent_id] if rel.parent_id else []
    if kind is MarkerKind.SUBTASK:
        return list(rel.subtask_ids)
    if kind is MarkerKind.BLOCKS:
        return list(rel.blocks_ids)
    if kind is MarkerKind.BLOCKED_BY:
        return list(rel.blocked_by_ids)
    return list(rel.related_ids)


class Synchronizer:
    def __init__(
        self, store: TaskStore, graph: GraphStore, *, resolve: DateResolver = resolve_date
    ) -> None:
        self._store = store
        self._graph = graph
        self._resolve = resolve

    def parse(self, description: str) -> ParsedMetadata:
        return parse(description, resolve=self._resolve)

    def _rewrite(self, task_id: str, meta: ParsedMetadata, old: str) -> bool:
        new = render(meta)
        if new == old:
            return False
        changed = self._store.set_description(task_id, new)
        if changed:
            logger.debug("Description synced id=%s", task_id)
        return changed

    def _edit(
        self,
        task_id: str | None,
        kind: MarkerKind,
        *,
        add: str | None = None,
        remove: str | None = None,
    ) -> bool:
        """Replace one marker category on task_id. Missing tasks are ignored."""
        if task_id is None:
            return False
        description = self._store.get_description(task_id)
        if description is None:
            return False

        meta = self.parse(description)
        ids = meta.ids(kind)
        if remove is not None:
            ids = [i for i in ids if i != remove]
        if add is not None and add not in ids:
            ids = [add] if kind is MarkerKind.PARENT else [*ids, add]
        return self._rewrite(task_id, meta.with_ids(kind, ids), description)

    # ---- events ----

    def parent_set(self, child_id: str, old_parent_id: str | None, new_parent_id: str) -> None:
        self._edit(child_id, MarkerKind.PARENT, add=new_parent_id, remove=old_parent_id)
        if old_parent_id and old_parent_id != new_parent_id:
            self._edit(old_parent_id, MarkerKind.SUBTASK, remove=child_id)
        self._edit(new_parent_id, MarkerKind.SUBTASK, add=child_id)

    def parent_cleared(self, child_id: str, old_parent_id: str) -> None:
        self._edit(child_id, MarkerKind.PARENT, remove=old_parent_id)
        self._edit(old_parent_id, MarkerKind.SUBTASK, remove=child_id)

    def blocker_added(self, blocker_id: str, blocked_id: str) -> None:
        self._edit(blocker_id, MarkerKind.BLOCKS, add=blocked_id)
        self._edit(blocked_id, MarkerKind.BLOCKED_BY, add=blocker_id)

    def blocker_removed(self, blocker_id: str, blocked_id: str) -> None:
        self._edit(blocker_id, MarkerKind.BLOCKS, remove=blocked_id)
        self._edit(blocked_id, MarkerKind.BLOCKED_BY, remove=blocker_id)

    def related_added(self, a: str, b: str) -> None:
        self._edit(a, MarkerKind.RELATED, add=b)
        self._edit(b, MarkerKind.RELATED, add=a)

    def related_removed(self, a: str, b: str) -> None:
        self._edit(a, MarkerKind.RELATED, remove=b)
        self._edit(b, MarkerKind.RELATED, remove=a)

    # ---- whole-task projection ----

    def resync(self, task_id: str) -> bool:
        """
        Project every relationship of task_id onto its metadata line.

        Markers that survive keep their position; new ones are appended.
        Returns True if the description changed.
        """
        description = self._store.get_description(task_id)
        if description is None:
            return False
        meta, _ = self._project(task_id, description)
        return self._rewrite(task_id, meta, description)

    def repair(self, task_id: str) -> bool:
        """Like resync, but text whose markers already match the tables is left byte-for-byte."""
        description = self._store.get_description(task_id)
        if description is None:
            return False
        meta, drifted = self._project(task_id, description)
        if not drifted:
            return False
        logger.info("Repairing stale markers id=%s", task_id)
        return self._rewrite(task_id, meta, description)

    def _project(self, task_id: str, description: str) -> tuple[ParsedMetadata, bool]:
        rel = self._graph.relations(task_id)
        meta = self.parse(description)
        drifted = False
        for kind in MARKER_ORDER:
            truth = relation_ids(rel, kind)
            current = meta.ids(kind)
            ordered = [i for i in current if i in truth]
            ordered += [i for i in truth if i not in ordered]
            if ordered != current:
                drifted = True
            meta = meta.with_ids(kind, ordered)
        return meta, drifted

    def set_fields(
        self,
        task_id: str,
        *,
        priority: Priority | None = UNSET,
        due_date: date | None = UNSET,
    ) -> bool:
        """Rewrite the priority and/or due token on the metadata line, nothing else."""
        description = self._store.get_description(task_id)
        if description is None:
            return False

        meta = self.parse(description)
        if priority is not UNSET:
            meta.priority = priority
        if due_date is not UNSET:
            meta.due_raw = None
            meta.due_date = due_date
        return self._rewrite(task_id, meta, description)
