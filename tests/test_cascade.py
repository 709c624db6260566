# tests/test_cascade.py

from __future__ import annotations

from collections.abc import Callable
from types import SimpleNamespace

import pytest

from tasktree.core.results import BatchResult, Error, NoChange, NotFound, Success
from tasktree.core.state import AppState
from tasktree.tasks import task_api
from tasktree.tasks.task_models import TaskStatus


def _status(state: AppState, task_id: str) -> TaskStatus:
    task = state.store.get_task(task_id, include_trashed=True)
    assert task is not None
    return task.status


def _tree(state: AppState, add) -> tuple[str, str, str]:
    """A <- B <- C in list "work"."""
    a = add("A")
    b = add("B")
    c = add("C")
    assert task_api.set_parent(state, b, a).is_success
    assert task_api.set_parent(state, c, b).is_success
    return a, b, c


def test_parent_and_blocking_cycles_then_status_cascade(state: AppState, add, assert_in_sync) -> None:
    a, b, c = _tree(state, add)

    result = task_api.set_parent(state, a, c)
    assert isinstance(result, Error)
    assert result.message == f"Circular reference: ({c}) is already a descendant of ({a})"

    assert task_api.add_blocker(state, a, c).is_success
    result = task_api.add_blocker(state, c, a)
    assert isinstance(result, Error)
    assert result.message == f"Circular dependency: ({a}) already blocks ({c})"

    result = task_api.set_status(state, a, TaskStatus.DONE)
    assert isinstance(result, Success)
    assert result.message == f"Set {a} and 2 subtask(s) to done"
    assert [_status(state, t) for t in (a, b, c)] == [TaskStatus.DONE] * 3

    task_api.set_status(state, a, TaskStatus.PENDING)
    assert _status(state, a) is TaskStatus.PENDING
    assert _status(state, b) is TaskStatus.DONE
    assert _status(state, c) is TaskStatus.DONE
    assert_in_sync()


def test_done_cascade_keeps_existing_completion_times(state: AppState, add) -> None:
    a, b, c = _tree(state, add)
    task_api.set_status(state, b, TaskStatus.DONE)
    b_done = state.store.get_task(b)
    assert b_done is not None and b_done.completed_at

    result = task_api.set_status(state, a, TaskStatus.DONE)
    assert isinstance(result, Success)
    # b and c were already Done, so only a changes.
    assert result.message == f"Set {a} to done"
    b_after = state.store.get_task(b)
    assert b_after is not None
    assert b_after.completed_at == b_done.completed_at


def test_done_cascade_skips_trashed_subtasks(state: AppState, add) -> None:
    a, b, c = _tree(state, add)
    task_api.delete_task(state, c)

    task_api.set_status(state, a, TaskStatus.DONE)
    assert _status(state, b) is TaskStatus.DONE
    assert _status(state, c) is TaskStatus.PENDING


def test_non_done_status_does_not_cascade(state: AppState, add) -> None:
    a, b, _ = _tree(state, add)
    result = task_api.set_status(state, a, TaskStatus.IN_PROGRESS)
    assert isinstance(result, Success)
    assert result.message == f"Set {a} to in progress"
    assert _status(state, b) is TaskStatus.PENDING


def test_set_status_edge_cases(state: AppState, add) -> None:
    a = add("A")
    result = task_api.set_status(state, a, TaskStatus.PENDING)
    assert isinstance(result, NoChange)
    assert result.message == f"Task {a} is already pending"
    assert isinstance(task_api.set_status(state, "zzz", TaskStatus.DONE), NotFound)

    task_api.set_status(state, a, TaskStatus.DONE)
    task_api.set_status(state, a, TaskStatus.PENDING)
    task = state.store.get_task(a)
    assert task is not None
    assert task.completed_at is None


def test_delete_trashes_the_whole_subtree(state: AppState, add, assert_in_sync) -> None:
    a, b, c = _tree(state, add)
    x = add("X")
    task_api.add_blocker(state, x, a)

    result = task_api.delete_task(state, a)
    assert isinstance(result, Success)
    assert result.message == f"Deleted task ({a}) and 2 subtask(s)"
    for tid in (a, b, c):
        assert state.store.get_task(tid) is None
        assert state.store.get_trashed_task(tid) is not None

    # Edges and their markers survive a soft delete.
    assert state.graph.has_blocking_edge(x, a)
    assert state.store.get_description(x) == f"X\n!{a}"
    assert_in_sync()


def test_delete_missing_or_trashed_task(state: AppState, add) -> None:
    a = add("A")
    assert isinstance(task_api.delete_task(state, "zzz"), NotFound)
    task_api.delete_task(state, a)
    assert isinstance(task_api.delete_task(state, a), NotFound)


def test_restore_brings_back_subtasks_trashed_below(state: AppState, add) -> None:
    a, b, c = _tree(state, add)
    task_api.delete_task(state, c)
    task_api.delete_task(state, a)

    result = task_api.restore_task(state, a)
    assert isinstance(result, Success)
    assert result.message == f"Restored task ({a}) and 2 subtask(s)"
    for tid in (a, b, c):
        assert state.store.get_task(tid) is not None


def test_restore_edge_cases(state: AppState, add) -> None:
    a = add("A")
    result = task_api.restore_task(state, a)
    assert isinstance(result, NoChange)
    assert result.message == f"Task ({a}) is not in trash"
    assert isinstance(task_api.restore_task(state, "zzz"), NotFound)


def test_undo_delete_restores_exactly_the_trashed_set(state: AppState, add) -> None:
    a, b, c = _tree(state, add)
    task_api.delete_task(state, c)
    task_api.delete_task(state, a)

    task_api.undo(state)
    assert state.store.get_task(a) is not None
    assert state.store.get_task(b) is not None
    # c was trashed by an earlier, separate delete.
    assert state.store.get_task(c) is None


def test_batch_delete_is_one_undo_step(state: AppState, add, take_snapshot) -> None:
    a, b, _ = _tree(state, add)
    d = add("D")
    before = take_snapshot()

    result = task_api.delete_tasks(state, [a, b, d])
    assert isinstance(result, BatchResult)
    assert result.success_count == 2
    assert result.failure_count == 1
    assert isinstance(result.results[1], NotFound)

    task_api.undo(state)
    assert take_snapshot() == before


def test_move_takes_the_subtree_along(state: AppState, add, assert_in_sync) -> None:
    a, b, c = _tree(state, add)
    task_api.delete_task(state, c)
    there = add("Already there", list_name="home")

    result = task_api.move_task(state, a, "home")
    assert isinstance(result, Success)
    assert result.message == f"Moved ({a}) and 2 subtask(s) from 'work' to 'home'"

    for tid in (a, b, c):
        task = state.store.get_task(tid, include_trashed=True)
        assert task is not None
        assert task.list_name == "home"
    # The moved root lands above what was already in the target list.
    moved, existing = state.store.get_task(a), state.store.get_task(there)
    assert moved is not None and existing is not None
    assert moved.sort_order > existing.sort_order
    assert_in_sync()


def test_move_errors(state: AppState, add) -> None:
    a, b, _ = _tree(state, add)

    result = task_api.move_task(state, b, "home")
    assert isinstance(result, Error)
    assert result.message.startswith(f"Cannot move subtask ({b})")

    # Rejected even when the target is the list it is already in.
    result = task_api.move_task(state, b, "work")
    assert isinstance(result, Error)
    assert result.message.startswith(f"Cannot move subtask ({b})")

    result = task_api.move_task(state, a, "work")
    assert isinstance(result, NoChange)
    assert result.message == "Task is already in 'work'"

    assert isinstance(task_api.move_task(state, a, "  "), Error)
    assert isinstance(task_api.move_task(state, "zzz", "home"), NotFound)


def test_hard_delete_requires_trash_and_resyncs_counterparts(
    state: AppState, add, assert_in_sync
) -> None:
    a, b, c = _tree(state, add)
    x = add("X")
    task_api.add_blocker(state, x, b)

    result = task_api.hard_delete(state, b)
    assert isinstance(result, Error)
    assert result.message == f"Task ({b}) is not in trash; delete it first"

    task_api.delete_task(state, b)
    result = task_api.hard_delete(state, b)
    assert isinstance(result, Success)
    assert result.message == "Permanently deleted 2 task(s)"

    assert not state.store.task_exists(b)
    assert not state.store.task_exists(c)
    assert state.store.get_description(x) == "X"
    assert state.store.get_description(a) == "A"
    assert_in_sync()


def test_clear_trash(state: AppState, add, assert_in_sync) -> None:
    result = task_api.clear_trash(state)
    assert isinstance(result, NoChange)
    assert result.message == "Trash is empty"

    a, b, c = _tree(state, add)
    keep = add("Keep")
    task_api.add_related(state, keep, a)
    task_api.delete_task(state, a)

    result = task_api.clear_trash(state)
    assert isinstance(result, Success)
    assert result.message == "Permanently deleted 3 task(s) from trash"
    assert state.store.all_task_ids() == [keep]
    assert state.store.get_description(keep) == "Keep"
    assert_in_sync()


def test_undo_delete_after_purge_reinstates_rows(state: AppState, add, assert_in_sync) -> None:
    a, b, c = _tree(state, add)
    task_api.delete_task(state, a)
    task_api.clear_trash(state)

    result = task_api.undo(state)
    assert isinstance(result, Success)
    for tid in (a, b, c):
        assert state.store.get_task(tid) is not None
    assert state.graph.get_parent(b) == a
    assert state.graph.get_parent(c) == b
    assert_in_sync()


# ---- rejected relationship edits ----


@pytest.fixture()
def linked(state: AppState, add) -> SimpleNamespace:
    """A with a subtask, A blocks B and is related to it, plus one task in another list."""
    a = add("A")
    kid = add(f"Kid\n^{a}")
    b = add("B")
    far = add("Far", list_name="home")
    assert task_api.add_blocker(state, a, b).is_success
    assert task_api.add_related(state, a, b).is_success
    return SimpleNamespace(a=a, kid=kid, b=b, far=far)


REJECTED: dict[str, tuple[Callable[[AppState, SimpleNamespace], object], type]] = {
    "parent_self": (lambda s, w: task_api.set_parent(s, w.a, w.a), Error),
    "parent_other_list": (lambda s, w: task_api.set_parent(s, w.a, w.far), Error),
    "parent_missing": (lambda s, w: task_api.set_parent(s, w.a, "zzz"), NotFound),
    "parent_same": (lambda s, w: task_api.set_parent(s, w.kid, w.a), NoChange),
    "parent_cycle": (lambda s, w: task_api.set_parent(s, w.a, w.kid), Error),
    "unset_absent_parent": (lambda s, w: task_api.unset_parent(s, w.a), NoChange),
    "blocker_self": (lambda s, w: task_api.add_blocker(s, w.a, w.a), Error),
    "blocker_duplicate": (lambda s, w: task_api.add_blocker(s, w.a, w.b), NoChange),
    "blocker_cycle": (lambda s, w: task_api.add_blocker(s, w.b, w.a), Error),
    "remove_absent_blocker": (lambda s, w: task_api.remove_blocker(s, w.kid, w.b), NoChange),
    "related_self": (lambda s, w: task_api.add_related(s, w.b, w.b), Error),
    "related_duplicate": (lambda s, w: task_api.add_related(s, w.b, w.a), NoChange),
    "remove_absent_related": (lambda s, w: task_api.remove_related(s, w.a, w.kid), NoChange),
}


@pytest.mark.parametrize("name", sorted(REJECTED))
def test_rejected_relationship_edits_change_nothing(
    state: AppState, linked: SimpleNamespace, take_snapshot, assert_in_sync, name: str
) -> None:
    op, expected = REJECTED[name]
    before = take_snapshot()
    depth = state.undo.undo_count

    result = op(state, linked)

    assert isinstance(result, expected), result
    assert take_snapshot() == before
    assert state.undo.undo_count == depth
    assert_in_sync()
