# src/tasktree/core/state.py

"""
AppState: the explicit context object handed to every entry point.

It is built by the composition root (cli.bootstrap.create_initial_state) and
holds one instance of each engine component, wired to the same TaskStore.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..cascade.cascade_engine import CascadeEngine
from ..graph.graph_store import GraphStore
from ..sync.reconciler import TextReconciler
from ..sync.synchronizer import Synchronizer
from ..tasks.task_store import TaskStore
from ..undo.undo_log import UndoLog

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    # Settings object (frozen Settings or any object exposing the same attributes).
    settings: Any

    store: TaskStore
    graph: GraphStore
    sync: Synchronizer
    reconciler: TextReconciler
    cascade: CascadeEngine
    undo: UndoLog

    # Store revision after this session's last read/write; -1 means never seen.
    seen_revision: int = -1

    def mark_seen(self) -> None:
        self.seen_revision = self.store.revision()

    def refresh_if_stale(self) -> bool:
        """
        Detect writes by another process since mark_seen().

        Reloads the undo history when stale and returns True so the caller can
        re-query whatever it displays.
        """
        current = self.store.revision()
        if current == self.seen_revision:
            return False
        logger.info("Store changed externally (rev %s -> %s), reloading", self.seen_revision, current)
        self.undo.reload()
        self.seen_revision = current
        return True
