# tests/test_graph_store.py

from __future__ import annotations

from pathlib import Path

import pytest

from tasktree.graph.graph_store import GraphStore, canonical_pair
from tasktree.tasks.task_models import EDGE_BLOCKS, EDGE_PARENT, EdgeChange, Task, TaskStatus
from tasktree.tasks.task_store import TaskStore, utc_now_iso


@pytest.fixture()
def store(tmp_path: Path) -> TaskStore:
    s = TaskStore(tmp_path / "graph.sqlite3")
    for tid in ("aaa", "bbb", "ccc", "ddd", "eee"):
        s.insert_task(
            Task(
                id=tid,
                description=f"Task {tid}",
                status=TaskStatus.PENDING,
                created_at=utc_now_iso(),
                list_name="work",
            )
        )
    return s


@pytest.fixture()
def graph(store: TaskStore) -> GraphStore:
    return GraphStore(store)


def test_canonical_pair() -> None:
    assert canonical_pair("b", "a") == ("a", "b")
    assert canonical_pair("a", "b") == ("a", "b")


def test_descendants_are_transitive_and_breadth_ordered(graph: GraphStore) -> None:
    graph.set_parent("bbb", "aaa")
    graph.set_parent("ccc", "bbb")
    graph.set_parent("ddd", "aaa")

    assert graph.get_children("aaa") == ["bbb", "ddd"]
    assert graph.get_descendant_ids("aaa") == ["bbb", "ddd", "ccc"]
    assert graph.get_descendant_ids("ccc") == []


def test_trashed_nodes_stop_the_active_traversal(store: TaskStore, graph: GraphStore) -> None:
    graph.set_parent("bbb", "aaa")
    graph.set_parent("ccc", "bbb")
    store.set_trashed(["bbb"], True)

    assert graph.get_descendant_ids("aaa") == []
    assert graph.get_trashed_descendant_ids("aaa") == ["bbb"]
    assert graph.get_all_descendant_ids("aaa") == ["bbb", "ccc"]
    assert graph.get_children("aaa", include_trashed=True) == ["bbb"]


def test_parent_cycle_detection(graph: GraphStore) -> None:
    graph.set_parent("bbb", "aaa")
    graph.set_parent("ccc", "bbb")

    assert graph.would_create_parent_cycle("aaa", "ccc")
    assert graph.would_create_parent_cycle("aaa", "aaa")
    assert not graph.would_create_parent_cycle("ddd", "ccc")


def test_set_and_clear_parent_return_previous(graph: GraphStore) -> None:
    assert graph.set_parent("bbb", "aaa") is None
    assert graph.set_parent("bbb", "ccc") == "aaa"
    assert graph.get_parent("bbb") == "ccc"
    assert graph.clear_parent("bbb") == "ccc"
    assert graph.clear_parent("bbb") is None


def test_blocking_edges_and_cycle_check(graph: GraphStore) -> None:
    assert graph.add_blocking_edge("aaa", "bbb")
    assert graph.add_blocking_edge("bbb", "ccc")
    assert not graph.add_blocking_edge("aaa", "bbb")

    assert graph.get_blocks("aaa") == ["bbb"]
    assert graph.get_blocked_by("ccc") == ["bbb"]
    assert graph.has_blocking_edge("aaa", "bbb")
    assert not graph.has_blocking_edge("bbb", "aaa")

    assert graph.would_create_cycle("ccc", "aaa")
    assert graph.would_create_cycle("aaa", "aaa")
    assert not graph.would_create_cycle("aaa", "ccc")
    assert not graph.would_create_cycle("ddd", "aaa")

    assert graph.remove_blocking_edge("bbb", "ccc")
    assert not graph.remove_blocking_edge("bbb", "ccc")
    assert not graph.would_create_cycle("ccc", "aaa")


def test_trashed_tasks_do_not_close_cycles(store: TaskStore, graph: GraphStore) -> None:
    graph.add_blocking_edge("aaa", "bbb")
    graph.add_blocking_edge("bbb", "ccc")
    store.set_trashed(["bbb"], True)

    assert not graph.would_create_cycle("ccc", "aaa")
    assert graph.get_blocks("aaa") == []
    assert graph.get_blocks("aaa", include_trashed=True) == ["bbb"]


def test_related_edges_are_symmetric_and_stored_once(store: TaskStore, graph: GraphStore) -> None:
    assert graph.add_related_edge("ccc", "aaa")
    assert not graph.add_related_edge("aaa", "ccc")

    assert graph.get_related("aaa") == ["ccc"]
    assert graph.get_related("ccc") == ["aaa"]
    assert graph.has_related_edge("ccc", "aaa")

    with store.connection() as conn:
        rows = [tuple(r) for r in conn.execute("SELECT * FROM task_relations")]
    assert rows == [("aaa", "ccc")]

    with pytest.raises(ValueError):
        graph.add_related_edge("aaa", "aaa")

    assert graph.remove_related_edge("ccc", "aaa")
    assert graph.get_related("aaa") == []


def test_relations_view_includes_trashed_counterparts(store: TaskStore, graph: GraphStore) -> None:
    graph.set_parent("bbb", "aaa")
    graph.add_blocking_edge("aaa", "ccc")
    graph.add_blocking_edge("ddd", "aaa")
    graph.add_related_edge("aaa", "eee")
    store.set_trashed(["bbb", "eee"], True)

    rel = graph.relations("aaa")
    assert rel.parent_id is None
    assert rel.subtask_ids == ["bbb"]
    assert rel.blocks_ids == ["ccc"]
    assert rel.blocked_by_ids == ["ddd"]
    assert rel.related_ids == ["eee"]


def test_mutations_are_journaled_in_order(store: TaskStore, graph: GraphStore) -> None:
    graph.set_parent("bbb", "aaa")
    with store.recording() as journal:
        graph.set_parent("bbb", "ccc")
        graph.add_blocking_edge("ddd", "eee")

    assert journal.edges == [
        EdgeChange(EDGE_PARENT, "bbb", "aaa", added=False),
        EdgeChange(EDGE_PARENT, "bbb", "ccc", added=True),
        EdgeChange(EDGE_BLOCKS, "ddd", "eee", added=True),
    ]


def test_apply_edge_change_reverts_and_tolerates_missing_rows(
    store: TaskStore, graph: GraphStore
) -> None:
    change = EdgeChange(EDGE_BLOCKS, "aaa", "bbb", added=True)
    graph.apply_edge_change(change)
    assert graph.has_blocking_edge("aaa", "bbb")
    graph.apply_edge_change(change, forward=False)
    assert not graph.has_blocking_edge("aaa", "bbb")

    store.delete_task_row("eee")
    graph.apply_edge_change(EdgeChange(EDGE_BLOCKS, "aaa", "eee", added=True))
    graph.apply_edge_change(EdgeChange(EDGE_PARENT, "aaa", "eee", added=True))
    assert graph.get_blocks("aaa", include_trashed=True) == []
    assert graph.get_parent("aaa") is None

    with pytest.raises(ValueError):
        graph.apply_edge_change(EdgeChange("nope", "aaa", "bbb", added=True))
