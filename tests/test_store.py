"""Tests for GraphStore: node/relationship CRUD, queries, snapshots."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_node, rel
from workgraph.errors import (
    NodeNotFoundError,
    RelationshipNotFoundError,
    SourceNotFoundError,
    TargetNotFoundError,
)
from workgraph.models import (
    GraphSnapshot,
    KnowledgeNode,
    NodeContent,
    NodeMetadata,
    QueryParams,
    TimeWindow,
    WorkflowInfo,
)
from workgraph.store import GraphStore


def _store(*nodes: KnowledgeNode) -> GraphStore:
    store = GraphStore()
    for node in nodes:
        store.add_node(node)
    return store


def _ids(nodes) -> list[str]:
    return [n.id for n in nodes]


# --- Nodes ---


class TestNodes:
    """Tests for node CRUD."""

    def test_add_and_get(self):
        store = _store(make_node("a"))
        assert store.get_node("a").title == "A"

    def test_add_overwrites(self):
        store = _store(make_node("a", title="first"))
        store.add_node(make_node("a", title="second"))
        assert store.get_node("a").title == "second"
        assert len(store.nodes) == 1

    def test_get_missing_raises(self):
        with pytest.raises(NodeNotFoundError) as exc:
            GraphStore().get_node("nope")
        assert exc.value.node_id == "nope"
        assert str(exc.value) == "Node not found: nope"

    def test_not_found_is_key_error(self):
        with pytest.raises(KeyError):
            GraphStore().get_node("nope")

    def test_update_is_shallow_merge(self):
        """Named top-level fields are replaced wholesale, others kept."""
        node = KnowledgeNode(
            id="a",
            content=NodeContent(title="Old", description="keep?"),
            metadata=NodeMetadata(confidence=0.3, tags=["x"]),
        )
        store = _store(node)

        updated = store.update_node("a", {"content": {"title": "New"}})

        assert updated.title == "New"
        assert updated.content.description == ""  # nested object replaced
        assert updated.metadata.confidence == 0.3
        assert updated.metadata.tags == ["x"]

    def test_update_missing_raises(self):
        with pytest.raises(NodeNotFoundError):
            GraphStore().update_node("a", {"type": "task"})

    def test_update_cannot_change_id(self):
        store = _store(make_node("a"))
        with pytest.raises(ValueError):
            store.update_node("a", {"id": "b"})

    def test_update_validates(self):
        store = _store(make_node("a"))
        with pytest.raises(ValueError):
            store.update_node("a", {"type": "not-a-type"})

    def test_delete_does_not_cascade(self):
        """Relationships targeting a deleted node are left behind."""
        store = _store(make_node("a"), make_node("b"))
        store.add_relationship(rel("a", "b"))

        store.delete_node("b")

        assert "b" not in store.nodes
        assert len(store.get_node("a").relationships) == 1
        assert [r.target_id for r in store.dangling_relationships()] == ["b"]

    def test_delete_missing_raises(self):
        with pytest.raises(NodeNotFoundError):
            GraphStore().delete_node("a")


# --- Relationships ---


class TestRelationships:
    """Tests for relationship attach/update/detach."""

    def test_add_attaches_to_source(self):
        store = _store(make_node("a"), make_node("b"))
        store.add_relationship(rel("a", "b", "implements", 0.8))

        assert [r.target_id for r in store.get_node("a").relationships] == ["b"]
        assert store.get_node("b").relationships == []

    def test_add_missing_source(self):
        store = _store(make_node("b"))
        with pytest.raises(SourceNotFoundError) as exc:
            store.add_relationship(rel("a", "b"))
        assert str(exc.value) == "Source node not found: a"

    def test_add_missing_target(self):
        store = _store(make_node("a"))
        with pytest.raises(TargetNotFoundError) as exc:
            store.add_relationship(rel("a", "b"))
        assert str(exc.value) == "Target node not found: b"

    def test_no_dedup(self):
        """Parallel edges are allowed, same type included."""
        store = _store(make_node("a"), make_node("b"))
        store.add_relationship(rel("a", "b", "follows"))
        store.add_relationship(rel("a", "b", "follows"))
        store.add_relationship(rel("a", "b", "blocks"))
        assert len(store.relationships()) == 3

    def test_update_all_matching(self):
        store = _store(make_node("a"), make_node("b"))
        store.add_relationship(rel("a", "b", "follows", 0.1))
        store.add_relationship(rel("a", "b", "blocks", 0.1))

        updated = store.update_relationship("a", "b", {"strength": 0.9})

        assert len(updated) == 2
        assert all(r.strength == 0.9 for r in store.relationships())

    def test_update_narrowed_by_type(self):
        store = _store(make_node("a"), make_node("b"))
        store.add_relationship(rel("a", "b", "follows", 0.1))
        store.add_relationship(rel("a", "b", "blocks", 0.1))

        store.update_relationship("a", "b", {"strength": 0.9}, rel_type="blocks")

        strengths = {r.type: r.strength for r in store.relationships()}
        assert strengths == {"follows": 0.1, "blocks": 0.9}

    def test_update_stamps_updated(self):
        store = _store(make_node("a"), make_node("b"))
        original = store.add_relationship(rel("a", "b"))
        [updated] = store.update_relationship("a", "b", {"strength": 0.2})
        assert updated.updated >= original.updated

    def test_update_no_match_raises(self):
        store = _store(make_node("a"), make_node("b"))
        with pytest.raises(RelationshipNotFoundError) as exc:
            store.update_relationship("a", "b", {"strength": 0.2})
        assert str(exc.value) == "Relationship not found: a -> b"

    def test_update_missing_source_raises(self):
        with pytest.raises(SourceNotFoundError):
            GraphStore().update_relationship("a", "b", {"strength": 0.2})

    def test_delete_all_matching(self):
        store = _store(make_node("a"), make_node("b"), make_node("c"))
        store.add_relationship(rel("a", "b", "follows"))
        store.add_relationship(rel("a", "b", "blocks"))
        store.add_relationship(rel("a", "c", "follows"))

        assert store.delete_relationship("a", "b") == 2
        assert [r.target_id for r in store.relationships()] == ["c"]

    def test_delete_narrowed_by_type(self):
        store = _store(make_node("a"), make_node("b"))
        store.add_relationship(rel("a", "b", "follows"))
        store.add_relationship(rel("a", "b", "blocks"))

        assert store.delete_relationship("a", "b", rel_type="blocks") == 1
        assert [r.type for r in store.relationships()] == ["follows"]

    def test_delete_nothing_returns_zero(self):
        store = _store(make_node("a"), make_node("b"))
        assert store.delete_relationship("a", "b") == 0

    def test_node_rejects_foreign_relationship(self):
        """A node can only own relationships it is the source of."""
        with pytest.raises(ValueError):
            KnowledgeNode(id="a", relationships=[rel("b", "a")])


# --- Queries ---


def _dated(node_id: str, updated: datetime, **kwargs) -> KnowledgeNode:
    node = make_node(node_id, **kwargs)
    node.metadata.updated = updated
    return node


def _windowed(node_id: str, start: datetime | None, end: datetime | None) -> KnowledgeNode:
    return KnowledgeNode(
        id=node_id,
        type="step",
        content=NodeContent(workflow=WorkflowInfo(time_window=TimeWindow(start=start, end=end))),
    )


class TestQuery:
    """Tests for GraphStore.query()."""

    def test_no_filters_returns_all(self):
        store = _store(make_node("a"), make_node("b"))
        assert _ids(store.query()) == ["a", "b"]

    def test_type_filter(self):
        store = _store(make_node("a", type="task"), make_node("b", type="concept"), make_node("c", type="step"))
        assert _ids(store.query({"type": ["task", "step"]})) == ["a", "c"]

    def test_empty_type_list_matches_nothing(self):
        store = _store(make_node("a"))
        assert store.query({"type": []}) == []

    def test_tags_all_of(self):
        store = _store(
            make_node("a", tags=["x", "y"]),
            make_node("b", tags=["x"]),
            make_node("c", tags=["y", "x", "z"]),
        )
        assert _ids(store.query({"tags": ["x", "y"]})) == ["a", "c"]

    def test_confidence_range_inclusive(self):
        store = _store(make_node("a", confidence=0.2), make_node("b", confidence=0.5), make_node("c", confidence=0.8))
        assert _ids(store.query({"confidence": {"min": 0.5, "max": 0.8}})) == ["b", "c"]

    def test_date_range_on_updated(self):
        base = datetime(2025, 1, 1, tzinfo=timezone.utc)
        store = _store(
            _dated("old", base - timedelta(days=10)),
            _dated("edge", base),
            _dated("new", base + timedelta(days=1)),
        )
        result = store.query({"date_range": {"start": base, "end": base + timedelta(days=5)}})
        assert _ids(result) == ["edge", "new"]

    def test_relationship_type_on_outgoing(self):
        store = _store(make_node("a"), make_node("b"))
        store.add_relationship(rel("a", "b", "blocks"))
        assert _ids(store.query({"relationship_type": "blocks"})) == ["a"]

    def test_time_window_overlap(self):
        t0 = datetime(2025, 1, 1, tzinfo=timezone.utc)
        store = _store(
            _windowed("before", t0 - timedelta(days=5), t0 - timedelta(days=3)),
            _windowed("overlap", t0 - timedelta(days=1), t0 + timedelta(days=1)),
            _windowed("open_end", t0 - timedelta(days=100), None),
            _windowed("after", t0 + timedelta(days=3), t0 + timedelta(days=4)),
            make_node("no_window"),
        )
        window = TimeWindow(start=t0, end=t0 + timedelta(days=2))
        assert _ids(store.query(QueryParams(time_window=window))) == ["overlap", "open_end"]

    def test_filters_are_conjunctive(self):
        store = _store(
            make_node("a", type="task", tags=["x"], confidence=0.9),
            make_node("b", type="task", tags=["x"], confidence=0.1),
            make_node("c", type="concept", tags=["x"], confidence=0.9),
        )
        result = store.query({"type": ["task"], "tags": ["x"], "confidence": {"min": 0.5, "max": 1.0}})
        assert _ids(result) == ["a"]

    def test_offset_then_limit(self):
        store = _store(*(make_node(f"n{i}") for i in range(5)))
        assert _ids(store.query({"offset": 1, "limit": 2})) == ["n1", "n2"]
        assert _ids(store.query({"offset": 3})) == ["n3", "n4"]
        assert store.query({"limit": 0}) == []


class TestFindRelated:
    """Tests for GraphStore.find_related()."""

    def test_directional_storage(self):
        """A -> B makes B related to A, but not A related to B."""
        store = _store(make_node("a"), make_node("b"))
        store.add_relationship(rel("a", "b"))

        assert _ids(store.find_related("a")) == ["b"]
        assert store.find_related("b") == []

    def test_reciprocal_edge(self):
        store = _store(make_node("a"), make_node("b"))
        store.add_relationship(rel("a", "b"))
        store.add_relationship(rel("b", "a"))
        assert _ids(store.find_related("b")) == ["a"]

    def test_excludes_self_and_dangling(self):
        store = _store(make_node("a"), make_node("b"), make_node("c"))
        store.add_relationship(rel("a", "a"))
        store.add_relationship(rel("a", "b"))
        store.add_relationship(rel("a", "c"))
        store.add_relationship(rel("a", "b", "blocks"))
        store.delete_node("c")

        assert _ids(store.find_related("a")) == ["b"]

    def test_params_intersect_with_neighbours(self):
        store = _store(make_node("a"), make_node("b", type="task"), make_node("c", type="concept"), make_node("d", type="task"))
        store.add_relationship(rel("a", "b"))
        store.add_relationship(rel("a", "c"))

        # d is a task but not a neighbour
        assert _ids(store.find_related("a", {"type": ["task"]})) == ["b"]

    def test_params_paginate_neighbours(self):
        store = _store(make_node("a"), *(make_node(f"n{i}") for i in range(4)))
        for i in range(4):
            store.add_relationship(rel("a", f"n{i}"))
        assert _ids(store.find_related("a", {"offset": 1, "limit": 2})) == ["n1", "n2"]

    def test_missing_node_raises(self):
        with pytest.raises(NodeNotFoundError):
            GraphStore().find_related("a")


# --- Snapshot / restore ---


class TestSnapshot:
    """Tests for snapshot() and restore()."""

    def test_relationships_listed_separately(self):
        store = _store(make_node("a"), make_node("b"))
        store.add_relationship(rel("a", "b"))

        snapshot = store.snapshot()

        assert all(n.relationships == [] for n in snapshot.nodes)
        assert [(r.source_id, r.target_id) for r in snapshot.relationships] == [("a", "b")]

    def test_snapshot_is_a_copy(self):
        store = _store(make_node("a"))
        snapshot = store.snapshot()
        store.update_node("a", {"type": "task"})
        assert snapshot.nodes[0].type == "concept"

    def test_round_trip(self):
        store = _store(make_node("a"), make_node("b"))
        store.add_relationship(rel("a", "b", "follows", 0.7))
        store.delete_node("b")  # leave a dangling edge

        restored = GraphStore()
        restored.restore(store.snapshot())

        assert set(restored.nodes) == {"a"}
        [edge] = restored.get_node("a").relationships
        assert (edge.target_id, edge.type, edge.strength) == ("b", "follows", 0.7)

    def test_restore_missing_source_leaves_store_untouched(self):
        store = _store(make_node("keep"))
        bad = GraphSnapshot(nodes=[make_node("a")], relationships=[rel("ghost", "a")])

        with pytest.raises(SourceNotFoundError):
            store.restore(bad)

        assert set(store.nodes) == {"keep"}

    def test_restore_survives_json(self):
        store = _store(make_node("a"), make_node("b"))
        store.add_relationship(rel("a", "b"))
        payload = store.snapshot().model_dump_json()

        restored = GraphStore()
        restored.restore(GraphSnapshot.model_validate_json(payload))

        assert _ids(restored.find_related("a")) == ["b"]
