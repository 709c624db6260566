# src/tasktree/graph/graph_store.py

"""
Relationship graphs over the task tables.

Three graphs live here:
- the parent forest (tasks.parent_id),
- the blocking DAG (task_dependencies: task_id blocks blocks_task_id),
- the symmetric related graph (task_relations, stored lo < hi).

Every mutation is a plain relational write plus a journal entry. Keeping the
description text in sync is the Synchronizer's job, not this module's.

Traversals that decide cycles or cascades skip trashed tasks. Edge getters
can include trashed counterparts because the edges themselves survive a
soft delete (and so do the markers that mirror them).
"""

from __future__ import annotations

import logging

from ..tasks.task_models import (
    EDGE_BLOCKS,
    EDGE_PARENT,
    EDGE_RELATED,
    EdgeChange,
    Relations,
)
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def canonical_pair(a: str, b: str) -> tuple[str, str]:
    return (a, b) if a < b else (b, a)


class GraphStore:
    def __init__(self, store: TaskStore) -> None:
        self._store = store

    # ---- parent forest ----

    def get_parent(self, task_id: str) -> str | None:
        with self._store.connection() as conn:
            row = conn.execute("SELECT parent_id FROM tasks WHERE id = ?", (task_id,)).fetchone()
            return row["parent_id"] if row else None

    def get_children(self, task_id: str, *, include_trashed: bool = False) -> list[str]:
        sql = "SELECT id FROM tasks WHERE parent_id = ?"
        if not include_trashed:
            sql += " AND is_trashed = 0"
        sql += " ORDER BY created_at, rowid"
        with self._store.connection() as conn:
            return [str(r["id"]) for r in conn.execute(sql, (task_id,)).fetchall()]

    def get_descendant_ids(self, task_id: str) -> list[str]:
        """Transitive subtasks that are not trashed, in one recursive query."""
        return self._descendants(task_id, "AND t.is_trashed = 0")

    def get_trashed_descendant_ids(self, task_id: str) -> list[str]:
        """Subtasks reachable through trashed tasks only (what a restore brings back)."""
        return self._descendants(task_id, "AND t.is_trashed = 1")

    def get_all_descendant_ids(self, task_id: str) -> list[str]:
        return self._descendants(task_id, "")

    def _descendants(self, task_id: str, trashed_filter: str) -> list[str]:
        sql = f"""
            WITH RECURSIVE descendants(id, depth) AS (
                SELECT t.id, 1 FROM tasks t WHERE t.parent_id = ? {trashed_filter}
                UNION
                SELECT t.id, d.depth + 1
                FROM tasks t JOIN descendants d ON t.parent_id = d.id
                WHERE 1 = 1 {trashed_filter}
            )
            SELECT id, MIN(depth) AS depth FROM descendants
            GROUP BY id
            ORDER BY depth, id
        """
        with self._store.connection() as conn:
            return [str(r["id"]) for r in conn.execute(sql, (task_id,)).fetchall()]

    def would_create_parent_cycle(self, task_id: str, parent_id: str) -> bool:
        """True if making parent_id the parent of task_id would close a loop."""
        if task_id == parent_id:
            return True
        return parent_id in self.get_descendant_ids(task_id)

    def set_parent(self, task_id: str, parent_id: str) -> str | None:
        """Point task_id at parent_id. Returns the previous parent."""
        old = self.get_parent(task_id)
        if old == parent_id:
            return old
        with self._store.connection() as conn:
            conn.execute("UPDATE tasks SET parent_id = ? WHERE id = ?", (parent_id, task_id))
        if old is not None:
            self._store.journal_edge(EdgeChange(EDGE_PARENT, task_id, old, added=False))
        self._store.journal_edge(EdgeChange(EDGE_PARENT, task_id, parent_id, added=True))
        logger.debug("Parent set child=%s parent=%s old=%s", task_id, parent_id, old)
        return old

    def clear_parent(self, task_id: str) -> str | None:
        """Detach task_id from its parent. Returns the previous parent (None if it had none)."""
        old = self.get_parent(task_id)
        if old is None:
            return None
        with self._store.connection() as conn:
            conn.execute("UPDATE tasks SET parent_id = NULL WHERE id = ?", (task_id,))
        self._store.journal_edge(EdgeChange(EDGE_PARENT, task_id, old, added=False))
        logger.debug("Parent cleared child=%s old=%s", task_id, old)
        return old

    # ---- blocking DAG ----

    def get_blocks(self, task_id: str, *, include_trashed: bool = False) -> list[str]:
        """Tasks that task_id blocks."""
        sql = """
            SELECT d.blocks_task_id AS id
            FROM task_dependencies d JOIN tasks t ON t.id = d.blocks_task_id
            WHERE d.task_id = ?
        """
        if not include_trashed:
            sql += " AND t.is_trashed = 0"
        sql += " ORDER BY d.rowid"
        with self._store.connection() as conn:
            return [str(r["id"]) for r in conn.execute(sql, (task_id,)).fetchall()]

    def get_blocked_by(self, task_id: str, *, include_trashed: bool = False) -> list[str]:
        """Tasks that block task_id."""
        sql = """
            SELECT d.task_id AS id
            FROM task_dependencies d JOIN tasks t ON t.id = d.task_id
            WHERE d.blocks_task_id = ?
        """
        if not include_trashed:
            sql += " AND t.is_trashed = 0"
        sql += " ORDER BY d.rowid"
        with self._store.connection() as conn:
            return [str(r["id"]) for r in conn.execute(sql, (task_id,)).fetchall()]

    def has_blocking_edge(self, blocker_id: str, blocked_id: str) -> bool:
        with self._store.connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM task_dependencies WHERE task_id = ? AND blocks_task_id = ?",
                (blocker_id, blocked_id),
            ).fetchone()
            return row is not None

    def would_create_cycle(self, blocker_id: str, blocked_id: str) -> bool:
        """True iff blocked_id can already reach blocker_id (or they are the same task)."""
        sql = """
            WITH RECURSIVE reach(id) AS (
                SELECT ?
                UNION
                SELECT d.blocks_task_id
                FROM task_dependencies d
                JOIN reach r ON d.task_id = r.id
                JOIN tasks t ON t.id = d.blocks_task_id
                WHERE t.is_trashed = 0
            )
            SELECT 1 FROM reach WHERE id = ? LIMIT 1
        """
        with self._store.connection() as conn:
            return conn.execute(sql, (blocked_id, blocker_id)).fetchone() is not None

    def add_blocking_edge(self, blocker_id: str, blocked_id: str) -> bool:
        """Insert blocker -> blocked. Returns False if the edge already existed."""
        with self._store.connection() as conn:
            cur = conn.execute(
                "INSERT OR IGNORE INTO task_dependencies(task_id, blocks_task_id) VALUES (?, ?)",
                (blocker_id, blocked_id),
            )
            if cur.rowcount == 0:
                return False
        self._store.journal_edge(EdgeChange(EDGE_BLOCKS, blocker_id, blocked_id, added=True))
        logger.debug("Blocking edge added %s -> %s", blocker_id, blocked_id)
        return True

    def remove_blocking_edge(self, blocker_id: str, blocked_id: str) -> bool:
        with self._store.connection() as conn:
            cur = conn.execute(
                "DELETE FROM task_dependencies WHERE task_id = ? AND blocks_task_id = ?",
                (blocker_id, blocked_id),
            )
            if cur.rowcount == 0:
                return False
        self._store.journal_edge(EdgeChange(EDGE_BLOCKS, blocker_id, blocked_id, added=False))
        logger.debug("Blocking edge removed %s -> %s", blocker_id, blocked_id)
        return True

    # ---- related graph ----

    def get_related(self, task_id: str, *, include_trashed: bool = False) -> list[str]:
        sql = """
            SELECT other AS id FROM (
                SELECT task_id_2 AS other, rowid AS r FROM task_relations WHERE task_id_1 = ?
                UNION ALL
                SELECT task_id_1 AS other, rowid AS r FROM task_relations WHERE task_id_2 = ?
            ) rel JOIN tasks t ON t.id = rel.other
        """
        if not include_trashed:
            sql += " WHERE t.is_trashed = 0"
        sql += " ORDER BY rel.r"
        with self._store.connection() as conn:
            return [str(r["id"]) for r in conn.execute(sql, (task_id, task_id)).fetchall()]

    def has_related_edge(self, a: str, b: str) -> bool:
        lo, hi = canonical_pair(a, b)
        with self._store.connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM task_relations WHERE task_id_1 = ? AND task_id_2 = ?", (lo, hi)
            ).fetchone()
            return row is not None

    def add_related_edge(self, a: str, b: str) -> bool:
        """Insert the unordered pair. Duplicates are no-ops (returns False)."""
        if a == b:
            raise ValueError("a task cannot be related to itself")
        lo, hi = canonical_pair(a, b)
        with self._store.connection() as conn:
            cur = conn.execute(
                "INSERT OR IGNORE INTO task_relations(task_id_1, task_id_2) VALUES (?, ?)",
                (lo, hi),
            )
            if cur.rowcount == 0:
                return False
        self._store.journal_edge(EdgeChange(EDGE_RELATED, lo, hi, added=True))
        logger.debug("Related edge added %s ~ %s", lo, hi)
        return True

    def remove_related_edge(self, a: str, b: str) -> bool:
        lo, hi = canonical_pair(a, b)
        with self._store.connection() as conn:
            cur = conn.execute(
                "DELETE FROM task_relations WHERE task_id_1 = ? AND task_id_2 = ?", (lo, hi)
            )
            if cur.rowcount == 0:
                return False
        self._store.journal_edge(EdgeChange(EDGE_RELATED, lo, hi, added=False))
        logger.debug("Related edge removed %s ~ %s", lo, hi)
        return True

    # ---- whole-task views ----

    def relations(self, task_id: str) -> Relations:
        """Everything the tables record for task_id, trashed counterparts included."""
        return Relations(
            parent_id=self.get_parent(task_id),
            subtask_ids=self.get_children(task_id, include_trashed=True),
            blocks_ids=self.get_blocks(task_id, include_trashed=True),
            blocked_by_ids=self.get_blocked_by(task_id, include_trashed=True),
            related_ids=self.get_related(task_id, include_trashed=True),
        )

    def apply_edge_change(self, change: EdgeChange, *, forward: bool = True) -> None:
        """
        Replay (forward) or revert one journaled edge change.

        Rows that no longer exist are tolerated: replay never fails on
        a counterpart that has been purged in the meantime.
        """
        add = change.added if forward else not change.added
        with self._store.connection() as conn:
            if change.graph == EDGE_PARENT:
                if add:
                    conn.execute(
                        """
                        UPDATE tasks SET parent_id = ?
                        WHERE id = ? AND EXISTS (SELECT 1 FROM tasks WHERE id = ?)
                        """,
                        (change.target, change.source, change.target),
                    )
                else:
                    conn.execute(
                        "UPDATE tasks SET parent_id = NULL WHERE id = ? AND parent_id = ?",
                        (change.source, change.target),
                    )
            elif change.graph == EDGE_BLOCKS:
                if add:
                    conn.execute(
                        """
                        INSERT OR IGNORE INTO task_dependencies(task_id, blocks_task_id)
                        SELECT ?, ?
                        WHERE EXISTS (SELECT 1 FROM tasks WHERE id = ?)
                          AND EXISTS (SELECT 1 FROM tasks WHERE id = ?)
                        """,
                        (change.source, change.target, change.source, change.target),
                    )
                else:
                    conn.execute(
                        "DELETE FROM task_dependencies WHERE task_id = ? AND blocks_task_id = ?",
                        (change.source, change.target),
                    )
            elif change.graph == EDGE_RELATED:
                lo, hi = canonical_pair(change.source, change.target)
                if add:
                    conn.execute(
                        """
                        INSERT OR IGNORE INTO task_relations(task_id_1, task_id_2)
                        SELECT ?, ?
                        WHERE EXISTS (SELECT 1 FROM tasks WHERE id = ?)
                          AND EXISTS (SELECT 1 FROM tasks WHERE id = ?)
                        """,
                        (lo, hi, lo, hi),
                    )
                else:
                    conn.execute(
                        "DELETE FROM task_relations WHERE task_id_1 = ? AND task_id_2 = ?",
                        (lo, hi),
                    )
            else:
                raise ValueError(f"unknown edge graph: {change.graph!r}")
