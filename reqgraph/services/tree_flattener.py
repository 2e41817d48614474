"""
Tree flattener — visible rows of a collapsible hierarchy.

Pure functions over a path-sorted node list (parent before child, siblings
grouped) and an immutable CollapseState. No store access, no shared state.

    visible = flatten(nodes, CollapseState.of({"req-1"}))
    state = collapse_all_to_top_level(nodes)
    state = state.toggle("req-7")

Nodes may be TreeNode instances or dicts with the same keys.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable


def _field(node, name):
    return node[name] if isinstance(node, dict) else getattr(node, name)


@dataclass(frozen=True)
class CollapseState:
    """Set of collapsed requirement ids; every change returns a new instance."""

    collapsed: frozenset = frozenset()

    @classmethod
    def of(cls, ids: Iterable[str] = ()) -> "CollapseState":
        return cls(frozenset(ids))

    def __contains__(self, requirement_id) -> bool:
        return requirement_id in self.collapsed

    def __len__(self) -> int:
        return len(self.collapsed)

    def collapse(self, requirement_id: str) -> "CollapseState":
        return CollapseState(self.collapsed | {requirement_id})

    def expand(self, requirement_id: str) -> "CollapseState":
        return CollapseState(self.collapsed - {requirement_id})

    def toggle(self, requirement_id: str) -> "CollapseState":
        if requirement_id in self.collapsed:
            return self.expand(requirement_id)
        return self.collapse(requirement_id)


def flatten(sorted_nodes, collapse_state=None) -> list:
    """Return the nodes that are visible given the collapsed ids.

    One pass with a stack holding, per open depth level, whether the node at
    that level is collapsed. A node is hidden iff any entry left on the stack
    after popping down to its depth is True; a running count of those entries
    keeps the check constant time. A collapsed node itself stays visible and
    everything beneath it is hidden, however deep.

    ``collapse_state`` may be a CollapseState or any container of ids.
    """
    collapsed = collapse_state if collapse_state is not None else CollapseState()
    visible = []
    stack: list[bool] = []
    # Number of True entries on the stack.
    collapsed_levels = 0
    for node in sorted_nodes:
        depth = _field(node, "depth")
        while len(stack) > depth:
            if stack.pop():
                collapsed_levels -= 1
        if not collapsed_levels:
            visible.append(node)
        # Pad when the input skips levels, e.g. a subtree listed without its root.
        while len(stack) < depth:
            stack.append(False)
        is_collapsed = _field(node, "requirement_id") in collapsed
        stack.append(is_collapsed)
        if is_collapsed:
            collapsed_levels += 1
    return visible


def collapse_all_to_top_level(nodes) -> CollapseState:
    """Collapse every node at the minimum depth present that has children."""
    nodes = list(nodes)
    if not nodes:
        return CollapseState()
    top = min(_field(n, "depth") for n in nodes)
    return CollapseState.of(
        _field(n, "requirement_id")
        for n in nodes
        if _field(n, "depth") == top and _field(n, "has_children")
    )


def expand_all() -> CollapseState:
    """Empty collapse state: every node visible."""
    return CollapseState()
