"""
Tests — tree flattener and CollapseState (pure, no database).
"""

from reqgraph.models.relationship import TreeNode
from reqgraph.services.tree_flattener import (
    CollapseState,
    collapse_all_to_top_level,
    expand_all,
    flatten,
)


def _node(rid, depth, has_children=False):
    return {"requirement_id": rid, "depth": depth, "has_children": has_children}


# A
# ├── B
# │   └── D
# │       └── F
# └── C
# E
TREE = [
    _node("A", 0, True),
    _node("B", 1, True),
    _node("D", 2, True),
    _node("F", 3),
    _node("C", 1),
    _node("E", 0),
]


def _ids(nodes):
    return [n["requirement_id"] for n in nodes]


class TestFlatten:
    def test_nothing_collapsed_returns_all(self):
        assert flatten(TREE, CollapseState()) == TREE
        assert flatten(TREE) == TREE

    def test_collapsed_node_stays_visible_descendants_hidden(self):
        assert _ids(flatten(TREE, CollapseState.of({"B"}))) == ["A", "B", "C", "E"]

    def test_collapse_root_hides_whole_subtree(self):
        assert _ids(flatten(TREE, CollapseState.of({"A"}))) == ["A", "E"]

    def test_nested_collapse(self):
        assert _ids(flatten(TREE, CollapseState.of({"A", "D"}))) == ["A", "E"]
        assert _ids(flatten(TREE, CollapseState.of({"D"}))) == ["A", "B", "D", "C", "E"]

    def test_plain_set_accepted(self):
        assert _ids(flatten(TREE, {"B"})) == ["A", "B", "C", "E"]

    def test_skipped_levels_are_padded(self):
        subtree = [_node("B", 1, True), _node("D", 2, True), _node("F", 3)]
        assert _ids(flatten(subtree, {"B"})) == ["B"]
        assert _ids(flatten(subtree, {"D"})) == ["B", "D"]

    def test_collapsed_count_unwinds_when_leaving_subtrees(self):
        # Two collapsed levels deep inside a long chain, then back to a sibling
        # at depth 1 and a new root.
        chain = [_node(f"N{i}", i, True) for i in range(50)]
        nodes = chain + [_node("S", 1), _node("R", 0)]
        visible = _ids(flatten(nodes, {"N10", "N20"}))
        assert visible == [f"N{i}" for i in range(11)] + ["S", "R"]

    def test_tree_nodes_accepted(self):
        nodes = [
            TreeNode("A", None, 0, "A", True),
            TreeNode("B", "A", 1, "A.B", False),
        ]
        assert flatten(nodes, {"A"}) == [nodes[0]]


class TestCollapseState:
    def test_changes_return_new_instances(self):
        state = CollapseState()
        collapsed = state.collapse("A")
        assert "A" not in state
        assert "A" in collapsed
        assert len(collapsed) == 1

    def test_toggle(self):
        state = CollapseState.of({"A"}).toggle("A").toggle("B")
        assert state == CollapseState.of({"B"})

    def test_expand_unknown_is_noop(self):
        assert CollapseState.of({"A"}).expand("Z") == CollapseState.of({"A"})

    def test_collapse_all_to_top_level(self):
        assert collapse_all_to_top_level(TREE) == CollapseState.of({"A"})
        assert _ids(flatten(TREE, collapse_all_to_top_level(TREE))) == ["A", "E"]

    def test_collapse_all_on_empty_tree(self):
        assert collapse_all_to_top_level([]) == CollapseState()

    def test_expand_all(self):
        assert flatten(TREE, expand_all()) == TREE
