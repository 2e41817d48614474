"""
Tests — RelationshipStore closure maintenance.

Covers:
    - insert: transitive rows, minimum-depth upsert, self rows
    - delete: removal of unreachable pairs, re-derivation through other paths
    - duplicate / missing edge / missing project errors
    - integrity guard against cycles at the storage layer
    - rebuild_closure, preview_delete, list_tree
"""

import json
import logging

import pytest
from sqlalchemy import select

from reqgraph.core.exceptions import DuplicateError, NotFoundError, PersistenceError
from reqgraph.middleware.logging_config import JSONFormatter
from reqgraph.models import db
from reqgraph.models.relationship import ClosurePath, RequirementEdge
from reqgraph.services.relationship_store import RelationshipStore, _bfs_depths


def _closure(project_id):
    """{(ancestor, descendant): depth} for rows with depth > 0."""
    return {
        (row.ancestor_id, row.descendant_id): row.depth
        for row in RelationshipStore().closure_state(project_id)
    }


def _self_rows():
    return sorted(
        row.ancestor_id
        for row in db.session.scalars(select(ClosurePath).where(ClosurePath.depth == 0))
    )


# ═════════════════════════════════════════════════════════════════════════════
# 1. BFS helper
# ═════════════════════════════════════════════════════════════════════════════


class TestBfsDepths:
    def test_shortest_distance_wins(self):
        adjacency = {"A": ["B", "C"], "B": ["D"], "C": ["X"], "X": ["D"]}
        assert _bfs_depths(adjacency, "A") == {"B": 1, "C": 1, "D": 2, "X": 2}

    def test_start_not_included(self):
        assert _bfs_depths({"A": ["B"]}, "A") == {"B": 1}
        assert _bfs_depths({}, "A") == {}


# ═════════════════════════════════════════════════════════════════════════════
# 2. Insert
# ═════════════════════════════════════════════════════════════════════════════


class TestInsertEdge:
    def test_chain_builds_transitive_rows(self, project, make_req):
        make_req("A", "B", "C")
        store = RelationshipStore()

        assert store.insert_edge(project.id, "A", "B") == {"edges_created": 1}
        assert store.insert_edge(project.id, "B", "C") == {"edges_created": 2}

        assert _closure(project.id) == {("A", "B"): 1, ("B", "C"): 1, ("A", "C"): 2}
        assert _self_rows() == ["A", "B", "C"]

    def test_diamond_keeps_single_row_per_pair(self, project, make_req):
        make_req("A", "B", "C", "D")
        store = RelationshipStore()
        store.insert_edge(project.id, "A", "B")
        store.insert_edge(project.id, "B", "D")
        store.insert_edge(project.id, "A", "C")

        assert store.insert_edge(project.id, "C", "D") == {"edges_created": 1}
        assert _closure(project.id)[("A", "D")] == 2

    def test_shortcut_lowers_depth(self, project, make_req):
        make_req("A", "X", "B")
        store = RelationshipStore()
        store.insert_edge(project.id, "A", "X")
        store.insert_edge(project.id, "X", "B")
        assert _closure(project.id)[("A", "B")] == 2

        store.insert_edge(project.id, "A", "B")
        assert _closure(project.id)[("A", "B")] == 1

    def test_records_actor(self, project, make_req):
        make_req("A", "B")
        RelationshipStore().insert_edge(project.id, "A", "B", actor_id="u-7")

        edge = db.session.scalars(select(RequirementEdge)).one()
        row = db.session.get(ClosurePath, ("A", "B"))
        assert edge.created_by == "u-7"
        assert row.created_by == "u-7"

    def test_duplicate_edge_rejected(self, project, make_req):
        make_req("A", "B")
        store = RelationshipStore()
        store.insert_edge(project.id, "A", "B")

        with pytest.raises(DuplicateError):
            store.insert_edge(project.id, "A", "B")
        assert _closure(project.id) == {("A", "B"): 1}

    def test_cycle_rejected_by_integrity_guard(self, project, make_req):
        make_req("A", "B", "C")
        store = RelationshipStore()
        store.insert_edge(project.id, "A", "B")
        store.insert_edge(project.id, "B", "C")
        before = _closure(project.id)

        with pytest.raises(PersistenceError):
            store.insert_edge(project.id, "C", "A")

        assert _closure(project.id) == before
        assert not store.edge_exists("C", "A")

    def test_unknown_project(self, make_req):
        make_req("A", "B")
        with pytest.raises(NotFoundError):
            RelationshipStore().insert_edge(999, "A", "B")

    def test_insert_logs_counts(self, project, make_req, caplog):
        make_req("A", "B")
        with caplog.at_level(logging.INFO, logger="reqgraph.services.relationship_store"):
            RelationshipStore().insert_edge(project.id, "A", "B")
        assert any("Relationship created" in r.getMessage() for r in caplog.records)

    def test_insert_log_carries_structured_ids(self, project, make_req, caplog):
        make_req("A", "B")
        with caplog.at_level(logging.INFO, logger="reqgraph.services.relationship_store"):
            RelationshipStore().insert_edge(project.id, "A", "B")
        record = next(r for r in caplog.records if "Relationship created" in r.getMessage())
        assert (record.project_id, record.ancestor_id, record.descendant_id) == (project.id, "A", "B")

        payload = json.loads(JSONFormatter().format(record))
        assert payload["ancestor_id"] == "A"
        assert payload["descendant_id"] == "B"


# ═════════════════════════════════════════════════════════════════════════════
# 3. Delete
# ═════════════════════════════════════════════════════════════════════════════


class TestDeleteEdge:
    def test_only_path_removes_all_pairs(self, project, make_req):
        make_req("A", "B", "C")
        store = RelationshipStore()
        store.insert_edge(project.id, "A", "B")
        store.insert_edge(project.id, "B", "C")

        assert store.delete_edge(project.id, "A", "B") == {"edges_deleted": 2}
        assert _closure(project.id) == {("B", "C"): 1}
        assert _self_rows() == ["B", "C"]

    def test_alternate_path_keeps_pair_with_new_depth(self, project, make_req):
        make_req("A", "X", "B")
        store = RelationshipStore()
        store.insert_edge(project.id, "A", "B")
        store.insert_edge(project.id, "A", "X")
        store.insert_edge(project.id, "X", "B")

        assert store.delete_edge(project.id, "A", "B") == {"edges_deleted": 0}
        assert _closure(project.id) == {("A", "X"): 1, ("X", "B"): 1, ("A", "B"): 2}

    def test_diamond_delete_one_side(self, project, make_req):
        make_req("A", "B", "C", "D")
        store = RelationshipStore()
        for a, d in (("A", "B"), ("B", "D"), ("A", "C"), ("C", "D")):
            store.insert_edge(project.id, a, d)

        store.delete_edge(project.id, "B", "D")

        closure = _closure(project.id)
        assert ("B", "D") not in closure
        assert closure[("A", "D")] == 2

    def test_last_edge_prunes_self_rows(self, project, make_req):
        make_req("A", "B")
        store = RelationshipStore()
        store.insert_edge(project.id, "A", "B")
        store.delete_edge(project.id, "A", "B")

        assert _closure(project.id) == {}
        assert _self_rows() == []

    def test_missing_edge(self, project, make_req):
        make_req("A", "B")
        with pytest.raises(NotFoundError) as exc_info:
            RelationshipStore().delete_edge(project.id, "A", "B")
        assert exc_info.value.resource == "Relationship"

    def test_delete_then_reinsert(self, project, make_req):
        make_req("A", "B")
        store = RelationshipStore()
        store.insert_edge(project.id, "A", "B")
        store.delete_edge(project.id, "A", "B")
        store.insert_edge(project.id, "A", "B")
        assert _closure(project.id) == {("A", "B"): 1}


# ═════════════════════════════════════════════════════════════════════════════
# 4. Transactions & rebuild
# ═════════════════════════════════════════════════════════════════════════════


class TestTransaction:
    def test_nested_failure_rolls_back_outer_work(self, project, make_req):
        make_req("A", "B", "C")
        store = RelationshipStore()
        store.insert_edge(project.id, "A", "B")

        with pytest.raises(DuplicateError):
            with store.transaction(project.id):
                store.delete_edge(project.id, "A", "B")
                store.insert_edge(project.id, "B", "C")
                store.insert_edge(project.id, "B", "C")

        assert store.edge_exists("A", "B")
        assert not store.edge_exists("B", "C")
        assert _closure(project.id) == {("A", "B"): 1}

    def test_rebuild_restores_closure(self, project, make_req):
        make_req("A", "B", "C", "D")
        store = RelationshipStore()
        for a, d in (("A", "B"), ("B", "C"), ("A", "D"), ("D", "C")):
            store.insert_edge(project.id, a, d)
        expected = _closure(project.id)

        for row in db.session.scalars(select(ClosurePath)).all():
            db.session.delete(row)
        db.session.commit()
        assert _closure(project.id) == {}

        assert store.rebuild_closure(project.id) == len(expected)
        assert _closure(project.id) == expected
        assert _self_rows() == ["A", "B", "C", "D"]


# ═════════════════════════════════════════════════════════════════════════════
# 5. Reads
# ═════════════════════════════════════════════════════════════════════════════


class TestReads:
    def test_ancestors_and_descendants_ordered(self, project, make_req):
        make_req("A", "B", "C")
        store = RelationshipStore()
        store.insert_edge(project.id, "A", "B")
        store.insert_edge(project.id, "B", "C")

        assert store.list_descendants("A") == [("B", 1), ("C", 2)]
        assert store.list_ancestors("C") == [("B", 1), ("A", 2)]
        assert store.list_descendants("A", max_depth=1) == [("B", 1)]
        assert store.has_path("A", "C")
        assert not store.has_path("C", "A")
        assert not store.has_path("A", "A")

    def test_preview_delete_matches_delete(self, project, make_req):
        make_req("A", "B", "C", "D")
        store = RelationshipStore()
        for a, d in (("A", "B"), ("B", "D"), ("A", "C"), ("C", "D")):
            store.insert_edge(project.id, a, d)

        preview = store.preview_delete(project.id, "B", "D")
        assert preview == [
            {"ancestor_id": "B", "descendant_id": "D", "depth": 1,
             "will_be_deleted": True, "new_depth": None},
            {"ancestor_id": "A", "descendant_id": "D", "depth": 2,
             "will_be_deleted": False, "new_depth": 2},
        ]
        # Dry run only
        assert store.edge_exists("B", "D")

    def test_preview_delete_missing_edge(self, project, make_req):
        make_req("A", "B")
        with pytest.raises(NotFoundError):
            RelationshipStore().preview_delete(project.id, "A", "B")

    def test_list_tree_emits_row_per_edge(self, project, make_req):
        make_req("A", "B", "C", "D")
        store = RelationshipStore()
        for a, d in (("A", "B"), ("A", "C"), ("B", "D"), ("C", "D")):
            store.insert_edge(project.id, a, d)

        rows = {(n.parent_id, n.requirement_id): n for n in store.list_tree(project.id)}
        assert set(rows) == {(None, "A"), ("A", "B"), ("A", "C"), ("B", "D"), ("C", "D")}
        assert rows[(None, "A")].depth == 0
        assert rows[("B", "D")].path == "A.B.D"
        assert rows[("C", "D")].path == "A.C.D"
        assert rows[("A", "C")].has_children is True
        assert rows[("B", "D")].has_children is False
