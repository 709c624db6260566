# src/tasktree/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the store, graph, synchronizer, cascade engine and undo log into AppState.
"""

from __future__ import annotations

import logging
from pathlib import Path

from ..cascade.cascade_engine import CascadeEngine
from ..config import get_settings
from ..core.state import AppState
from ..graph.graph_store import GraphStore
from ..sync.reconciler import TextReconciler
from ..sync.synchronizer import Synchronizer
from ..tasks.task_store import TaskStore
from ..undo.undo_log import UndoLog

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    Path(settings.data_dir).mkdir(parents=True, exist_ok=True)
    Path(settings.db_path).parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = TaskStore(settings.db_path)
    graph = GraphStore(store)
    sync = Synchronizer(store, graph)

    state = AppState(
        settings=settings,
        store=store,
        graph=graph,
        sync=sync,
        reconciler=TextReconciler(store, graph, sync),
        cascade=CascadeEngine(store, graph, sync),
        undo=UndoLog(
            store,
            max_entries=int(getattr(settings, "undo_max_entries", 50)),
            retention_days=int(getattr(settings, "undo_retention_days", 30)),
        ),
    )
    state.mark_seen()
    logger.debug("AppState ready db=%s undo=%d", settings.db_path, state.undo.undo_count)
    return state
