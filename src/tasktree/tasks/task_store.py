# src/tasktree/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any

from .task_models import UNSET, EdgeChange, Priority, Task, TaskStatus, generate_task_id

logger = logging.getLogger(__name__)

_MAX_ID_ATTEMPTS = 500


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(slots=True)
class ChangeJournal:
    """
    What one logical operation changed, for exact undo/redo.

    texts_before keeps the FIRST old description seen per task,
    texts_after the LAST new one. edges is in execution order.
    """

    texts_before: dict[str, str] = field(default_factory=dict)
    texts_after: dict[str, str] = field(default_factory=dict)
    edges: list[EdgeChange] = field(default_factory=list)


class TaskStore:
    """
    SQLite task store.

    The schema is intentionally simple and migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Connections:
    - outside a transaction each method opens its own short-lived connection
    - inside transaction() every call on the same thread joins one connection,
      so a multi-step operation commits or rolls back as a unit
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except sqlite3.Error:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        # Autocommit mode: transactions are explicit (see transaction()).
        conn = sqlite3.connect(str(self._db_path), timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.DatabaseError):
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")

    @contextlib.contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """The active transaction's connection, or a fresh short-lived one."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            yield conn
            return

        conn = self._get_conn()
        try:
            yield conn
        finally:
            conn.close()

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        One atomic write transaction. Nested calls join the outer one.

        Any exception rolls everything back and propagates.
        """
        outer = getattr(self._local, "conn", None)
        if outer is not None:
            yield outer
            return

        conn = self._get_conn()
        conn.execute("BEGIN IMMEDIATE")
        self._local.conn = conn
        try:
            yield conn
            if conn.total_changes:
                conn.execute("UPDATE store_meta SET value = value + 1 WHERE key = 'revision'")
            conn.execute("COMMIT")
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        finally:
            self._local.conn = None
            conn.close()

    @property
    def in_transaction(self) -> bool:
        return getattr(self._local, "conn", None) is not None

    # ---- change journal ----

    @contextlib.contextmanager
    def recording(self) -> Iterator[ChangeJournal]:
        """Collect description and edge changes made inside the block."""
        journal = ChangeJournal()
        previous = getattr(self._local, "journal", None)
        self._local.journal = journal
        try:
            yield journal
        finally:
            self._local.journal = previous

    def journal_edge(self, change: EdgeChange) -> None:
        journal: ChangeJournal | None = getattr(self._local, "journal", None)
        if journal is not None:
            journal.edges.append(change)

    def _journal_text(self, task_id: str, old: str, new: str) -> None:
        journal: ChangeJournal | None = getattr(self._local, "journal", None)
        if journal is None:
            return
        journal.texts_before.setdefault(task_id, old)
        journal.texts_after[task_id] = new

    # ---- schema ----

    def _ensure_schema(self) -> None:
        with self.connection() as conn:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS lists (
                    name TEXT PRIMARY KEY,
                    sort_order INTEGER NOT NULL DEFAULT 0
                )
                """
            )

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    description TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at TEXT NOT NULL,
                    completed_at TEXT,
                    list_name TEXT NOT NULL
                        REFERENCES lists(name) ON UPDATE CASCADE,
                    due_date TEXT,
                    priority TEXT,
                    tags TEXT,
                    is_trashed INTEGER NOT NULL DEFAULT 0,
                    sort_order INTEGER NOT NULL DEFAULT 0,
                    parent_id TEXT
                        REFERENCES tasks(id) ON DELETE SET NULL
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("completed_at", "TEXT")
            add_col("due_date", "TEXT")
            add_col("priority", "TEXT")
            add_col("tags", "TEXT")
            add_col("is_trashed", "INTEGER NOT NULL DEFAULT 0")
            add_col("sort_order", "INTEGER NOT NULL DEFAULT 0")
            add_col("parent_id", "TEXT REFERENCES tasks(id) ON DELETE SET NULL")

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS task_dependencies (
                    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    blocks_task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    PRIMARY KEY (task_id, blocks_task_id),
                    CHECK (task_id != blocks_task_id)
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS task_relations (
                    task_id_1 TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    task_id_2 TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    PRIMARY KEY (task_id_1, task_id_2),
                    CHECK (task_id_1 < task_id_2)
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS undo_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    stack_type TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    command_json TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS store_meta (
                    key TEXT PRIMARY KEY,
                    value INTEGER NOT NULL
                )
                """
            )
            cur.execute("INSERT OR IGNORE INTO store_meta(key, value) VALUES ('revision', 0)")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_list ON tasks(list_name, is_trashed)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_parent ON tasks(parent_id)")
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_deps_blocked ON task_dependencies(blocks_task_id)"
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_relations_2 ON task_relations(task_id_2)")

    @staticmethod
    def _tags_to_str(tags: list[str] | None) -> str | None:
        if not tags:
            return None
        return json.dumps(list(tags), ensure_ascii=False)

    @staticmethod
    def _str_to_tags(s: str | None) -> list[str]:
        if not s:
            return []
        try:
            val = json.loads(s)
        except ValueError:
            return []
        return [str(t) for t in val] if isinstance(val, list) else []

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        due = row["due_date"]
        try:
            due_date = date.fromisoformat(due) if due else None
        except ValueError:
            due_date = None
        return Task(
            id=str(row["id"]),
            description=str(row["description"] or ""),
            status=TaskStatus.from_db(row["status"]),
            created_at=str(row["created_at"] or ""),
            list_name=str(row["list_name"]),
            completed_at=row["completed_at"],
            due_date=due_date,
            priority=Priority.from_db(row["priority"]),
            tags=self._str_to_tags(row["tags"]),
            is_trashed=bool(row["is_trashed"]),
            sort_order=int(row["sort_order"] or 0),
            parent_id=row["parent_id"],
        )

    # ---- public API: reads ----

    def count_tasks(self) -> int:
        with self.connection() as conn:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)

    def revision(self) -> int:
        """Committed write transactions so far, across all processes."""
        with self.connection() as conn:
            row = conn.execute("SELECT value FROM store_meta WHERE key = 'revision'").fetchone()
            return int(row["value"]) if row else 0

    def task_exists(self, task_id: str) -> bool:
        """True for any stored task, trashed included."""
        with self.connection() as conn:
            row = conn.execute("SELECT 1 FROM tasks WHERE id = ?", (task_id,)).fetchone()
            return row is not None

    def get_task(self, task_id: str, *, include_trashed: bool = False) -> Task | None:
        """Point lookup. Trashed tasks are invisible unless include_trashed."""
        sql = "SELECT * FROM tasks WHERE id = ?"
        if not include_trashed:
            sql += " AND is_trashed = 0"
        with self.connection() as conn:
            row = conn.execute(sql, (task_id,)).fetchone()
            return self._row_to_task(row) if row else None

    def get_trashed_task(self, task_id: str) -> Task | None:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM tasks WHERE id = ? AND is_trashed = 1", (task_id,)
            ).fetchone()
            return self._row_to_task(row) if row else None

    def get_description(self, task_id: str) -> str | None:
        with self.connection() as conn:
            row = conn.execute("SELECT description FROM tasks WHERE id = ?", (task_id,)).fetchone()
            return str(row["description"]) if row else None

    def list_tasks(self, list_name: str | None = None, *, trashed: bool = False) -> list[Task]:
        """Tasks in display order (highest sort_order first)."""
        sql = "SELECT * FROM tasks WHERE is_trashed = ?"
        params: list[Any] = [1 if trashed else 0]
        if list_name is not None:
            sql += " AND list_name = ?"
            params.append(list_name)
        sql += " ORDER BY sort_order DESC, created_at DESC"
        with self.connection() as conn:
            return [self._row_to_task(r) for r in conn.execute(sql, params).fetchall()]

    def all_task_ids(self) -> list[str]:
        with self.connection() as conn:
            return [str(r["id"]) for r in conn.execute("SELECT id FROM tasks ORDER BY id")]

    def list_names(self) -> list[str]:
        with self.connection() as conn:
            rows = conn.execute("SELECT name FROM lists ORDER BY sort_order, name").fetchall()
            return [str(r["name"]) for r in rows]

    def next_sort_order(self, list_name: str) -> int:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT MAX(sort_order) AS m FROM tasks WHERE list_name = ? AND is_trashed = 0",
                (list_name,),
            ).fetchone()
            current = row["m"] if row else None
            return (int(current) if current is not None else -1) + 1

    def new_task_id(self) -> str:
        """Random short id, unique among all stored tasks (trashed included)."""
        for _ in range(_MAX_ID_ATTEMPTS):
            candidate = generate_task_id()
            if not self.task_exists(candidate):
                return candidate
        raise RuntimeError("Could not allocate a free task id; id space is exhausted")

    # ---- public API: writes ----

    def ensure_list(self, list_name: str) -> None:
        if not list_name or not list_name.strip():
            raise ValueError("list_name is required")
        with self.connection() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO lists(name, sort_order)
                VALUES (?, (SELECT COALESCE(MAX(sort_order), -1) + 1 FROM lists))
                """,
                (list_name,),
            )

    def insert_task(self, task: Task) -> None:
        """Insert a full record as-is (sort_order included)."""
        if not task.description or not task.description.strip():
            raise ValueError("description is required")
        self.ensure_list(task.list_name)

        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO tasks(
                    id, description, status, created_at, completed_at,
                    list_name, due_date, priority, tags,
                    is_trashed, sort_order, parent_id
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.id,
                    task.description,
                    task.status.value,
                    task.created_at,
                    task.completed_at,
                    task.list_name,
                    task.due_date.isoformat() if task.due_date else None,
                    task.priority.value if task.priority else None,
                    self._tags_to_str(task.tags),
                    1 if task.is_trashed else 0,
                    int(task.sort_order),
                    task.parent_id,
                ),
            )
        logger.debug(
            "Task inserted id=%s list=%s parent=%s trashed=%s",
            task.id,
            task.list_name,
            task.parent_id,
            task.is_trashed,
        )

    def update_task_fields(
        self,
        task_id: str,
        *,
        status: TaskStatus | None = None,
        completed_at: str | None = UNSET,
        list_name: str | None = None,
        due_date: date | None = UNSET,
        priority: Priority | None = UNSET,
        tags: list[str] | None = UNSET,
        is_trashed: bool | None = None,
        sort_order: int | None = None,
    ) -> None:
        """Update plain columns. Descriptions go through set_description, parents through the graph."""
        fields: list[str] = []
        params: list[Any] = []

        if status is not None:
            fields.append("status = ?")
            params.append(status.value)

        if completed_at is not UNSET:
            fields.append("completed_at = ?")
            params.append(completed_at)

        if list_name is not None:
            self.ensure_list(list_name)
            fields.append("list_name = ?")
            params.append(list_name)

        if due_date is not UNSET:
            fields.append("due_date = ?")
            params.append(due_date.isoformat() if due_date else None)

        if priority is not UNSET:
            fields.append("priority = ?")
            params.append(priority.value if priority else None)

        if tags is not UNSET:
            fields.append("tags = ?")
            params.append(self._tags_to_str(tags))

        if is_trashed is not None:
            fields.append("is_trashed = ?")
            params.append(1 if is_trashed else 0)

        if sort_order is not None:
            fields.append("sort_order = ?")
            params.append(int(sort_order))

        if not fields:
            return

        params.append(task_id)
        sql = f"UPDATE tasks SET {', '.join(fields)} WHERE id = ?"
        with self.connection() as conn:
            conn.execute(sql, params)

    def set_description(self, task_id: str, description: str) -> bool:
        """Replace a description (journaled). Returns False if unchanged or missing."""
        with self.connection() as conn:
            row = conn.execute("SELECT description FROM tasks WHERE id = ?", (task_id,)).fetchone()
            if row is None:
                return False
            old = str(row["description"])
            if old == description:
                return False
            conn.execute("UPDATE tasks SET description = ? WHERE id = ?", (description, task_id))
        self._journal_text(task_id, old, description)
        return True

    def set_trashed(self, task_ids: Iterable[str], trashed: bool) -> None:
        ids = list(task_ids)
        if not ids:
            return
        with self.connection() as conn:
            conn.executemany(
                "UPDATE tasks SET is_trashed = ? WHERE id = ?",
                [(1 if trashed else 0, tid) for tid in ids],
            )

    def set_list(self, task_ids: Iterable[str], list_name: str) -> None:
        ids = list(task_ids)
        if not ids:
            return
        self.ensure_list(list_name)
        with self.connection() as conn:
            conn.executemany(
                "UPDATE tasks SET list_name = ? WHERE id = ?", [(list_name, tid) for tid in ids]
            )

    def delete_task_row(self, task_id: str) -> None:
        """Hard delete. Edges cascade away; children lose their parent (SET NULL)."""
        with self.connection() as conn:
            conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        logger.debug("Task row deleted id=%s", task_id)

    # ---- undo history persistence ----

    def load_undo_rows(self, *, since_iso: str) -> list[tuple[str, str, str]]:
        """(stack_type, command_json, created_at) rows newer than since_iso, oldest first per stack."""
        with self.connection() as conn:
            rows = conn.execute(
                """
                SELECT stack_type, command_json, created_at
                FROM undo_history
                WHERE created_at > ?
                ORDER BY stack_type, position ASC
                """,
                (since_iso,),
            ).fetchall()
            return [
                (str(r["stack_type"]), str(r["command_json"]), str(r["created_at"]))
                for r in rows
            ]

    def save_undo_rows(self, rows: Iterable[tuple[str, str, str]]) -> None:
        """Replace the whole history with (stack_type, command_json, created_at) rows."""
        with self.transaction() as conn:
            conn.execute("DELETE FROM undo_history")
            conn.executemany(
                """
                INSERT INTO undo_history(stack_type, position, command_json, created_at)
                VALUES (?, ?, ?, ?)
                """,
                [(stack, pos, payload, created) for pos, (stack, payload, created) in enumerate(rows)],
            )
