"""
Drag-and-drop reconciler — the "move requirement" gesture.

    idle ──(pointer travels ≥ activation distance)──▶ dragging
    dragging ──(hover over a node)──▶ targeting ──(hover None)──▶ dragging
    targeting ──(drop)──▶ committing ──▶ idle
    dragging / targeting ──(invalid drop, escape)──▶ cancelled ──▶ idle

No backend call happens before ``committing``; a cancelled gesture has no
store effect. The baseline commit is two sequential calls:

    (a) delete_relationship(old_parent, dragged)   only when dragged from the tree
    (b) create_relationship(target, dragged)

There is no automatic rollback. If (a) succeeded and (b) failed the node is
left detached and PartialMoveError is raised; ``retry_create`` re-runs (b).
With ``atomic=True`` the commit goes through ``move_relationship`` in one
server-side transaction instead.

The backend is anything with create_relationship / delete_relationship
(and move_relationship for atomic mode): a RelationshipService in-process,
or a RelationshipApiClient over HTTP.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field

from reqgraph.core.exceptions import (
    CycleError,
    DuplicateError,
    NotFoundError,
    PartialMoveError,
    PersistenceError,
    ValidationError,
)

logger = logging.getLogger(__name__)

DEFAULT_ACTIVATION_DISTANCE = 8

SOURCE_TREE = "tree"
SOURCE_AVAILABLE = "available"
VALID_SOURCES = {SOURCE_TREE, SOURCE_AVAILABLE}


# ── State machine ────────────────────────────────────────────────────────────

IDLE = "idle"
DRAGGING = "dragging"
TARGETING = "targeting"
COMMITTING = "committing"
CANCELLED = "cancelled"

DRAG_TRANSITIONS = {
    IDLE:       [DRAGGING],
    DRAGGING:   [TARGETING, CANCELLED],
    TARGETING:  [DRAGGING, COMMITTING, CANCELLED],
    COMMITTING: [IDLE],
    CANCELLED:  [IDLE],
}


def validate_drag_transition(old_state, new_state):
    """Return True if the drag state transition is valid."""
    return new_state in DRAG_TRANSITIONS.get(old_state, [])


# ── Cancellation reasons ─────────────────────────────────────────────────────

CANCEL_OUTSIDE = "outside"
CANCEL_SELF = "self_drop"
CANCEL_CYCLE = "cycle"
CANCEL_ALREADY_LINKED = "already_linked"
CANCEL_ABORTED = "aborted"

_CANCEL_MESSAGES = {
    CANCEL_OUTSIDE: "Dropped outside the tree; nothing changed.",
    CANCEL_SELF: "A requirement cannot be dropped onto itself.",
    CANCEL_CYCLE: "Cannot move a requirement under one of its own descendants.",
    CANCEL_ALREADY_LINKED: "These requirements are already linked.",
    CANCEL_ABORTED: "Move cancelled.",
}


def describe_error(exc: Exception) -> str:
    """User-facing message for any error raised by a commit."""
    if isinstance(exc, PartialMoveError):
        return (
            "The requirement was detached from its old parent but could not be "
            "attached to the new one. Retry to attach it."
        )
    if isinstance(exc, CycleError):
        return _CANCEL_MESSAGES[CANCEL_CYCLE]
    if isinstance(exc, DuplicateError):
        return _CANCEL_MESSAGES[CANCEL_ALREADY_LINKED]
    if isinstance(exc, NotFoundError):
        return "The requirement or link no longer exists. Refresh and try again."
    if isinstance(exc, ValidationError):
        return f"This move is not allowed: {exc}"
    if isinstance(exc, PersistenceError):
        return "The change could not be saved. Please try again."
    return "Unexpected error while moving the requirement."


@dataclass
class DropResult:
    """Outcome of a drop that did not raise."""

    status: str                      # "committed" | "cancelled"
    message: str
    dragged_id: str | None = None
    target_id: str | None = None
    old_parent_id: str | None = None
    reason: str | None = None
    results: list = field(default_factory=list)

    @property
    def committed(self) -> bool:
        return self.status == "committed"


class DragDropReconciler:
    """Drives one move gesture at a time against a tree snapshot."""

    def __init__(
        self,
        backend,
        nodes=(),
        *,
        activation_distance: int = DEFAULT_ACTIVATION_DISTANCE,
        atomic: bool = False,
    ) -> None:
        self.backend = backend
        self.activation_distance = activation_distance
        self.atomic = atomic
        self.state = IDLE
        self._pending_id: str | None = None
        self._pending_source: str | None = None
        self.dragged_id: str | None = None
        self.source: str | None = None
        self.over_id: str | None = None
        self._edges: set[tuple[str, str]] = set()
        self._rendered_parent: dict[str, str] = {}
        self._children: dict[str, list[str]] = {}
        self.load_tree(nodes)

    @classmethod
    def from_config(cls, backend, nodes, app_config, *, atomic: bool = False) -> "DragDropReconciler":
        """Build a reconciler using DRAG_ACTIVATION_DISTANCE from a Flask config mapping."""
        return cls(
            backend,
            nodes,
            activation_distance=app_config.get("DRAG_ACTIVATION_DISTANCE", DEFAULT_ACTIVATION_DISTANCE),
            atomic=atomic,
        )

    # ── Snapshot ─────────────────────────────────────────────────────────────

    def load_tree(self, nodes) -> None:
        """Replace the tree snapshot with path-sorted TreeNodes (or dicts).

        Every entry of a row's ``parent_ids`` becomes an edge, so parents a
        node is not rendered under still count for cycle and duplicate
        checks. The first row seen for a node (its smallest path) decides
        which parent it is rendered under.
        """
        edges = set()
        rendered_parent: dict[str, str] = {}
        for node in nodes:
            if isinstance(node, dict):
                rid, parent = node["requirement_id"], node["parent_id"]
                parent_ids = node.get("parent_ids") or ()
            else:
                rid, parent, parent_ids = node.requirement_id, node.parent_id, node.parent_ids
            edges.update((p, rid) for p in parent_ids)
            if parent is None:
                continue
            edges.add((parent, rid))
            rendered_parent.setdefault(rid, parent)
        self._set_edges(edges, rendered_parent)

    def _set_edges(self, edges, rendered_parent) -> None:
        self._edges = edges
        self._rendered_parent = rendered_parent
        children: dict[str, list[str]] = defaultdict(list)
        for parent, child in sorted(edges):
            children[parent].append(child)
        self._children = dict(children)

    def parent_of(self, requirement_id: str) -> str | None:
        return self._rendered_parent.get(requirement_id)

    def parents_of(self, requirement_id: str) -> set[str]:
        return {p for p, c in self._edges if c == requirement_id}

    def would_create_cycle(self, dragged_id: str, target_id: str) -> bool:
        """True iff target is the dragged node or one of its descendants.

        Walks the full snapshot, so collapsed (hidden) subtrees are checked too.
        """
        if target_id == dragged_id:
            return True
        stack = list(self._children.get(dragged_id, ()))
        seen = set()
        while stack:
            current = stack.pop()
            if current == target_id:
                return True
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._children.get(current, ()))
        return False

    # ── Gesture ──────────────────────────────────────────────────────────────

    @property
    def is_busy(self) -> bool:
        """True while backend calls are in flight; drag handles must be disabled."""
        return self.state == COMMITTING

    def _transition(self, new_state: str) -> None:
        if not validate_drag_transition(self.state, new_state):
            raise ValidationError(f"Invalid drag transition: {self.state} → {new_state}")
        self.state = new_state

    def _reset(self) -> None:
        self.state = IDLE
        self._pending_id = None
        self._pending_source = None
        self.dragged_id = None
        self.source = None
        self.over_id = None

    def press(self, dragged_id: str, source: str = SOURCE_TREE) -> None:
        """Pointer went down on a drag handle; nothing moves until activation."""
        if self.state != IDLE:
            raise ValidationError(f"Cannot start a drag while {self.state}")
        if source not in VALID_SOURCES:
            raise ValidationError(f"source must be one of: {', '.join(sorted(VALID_SOURCES))}")
        self._pending_id = dragged_id
        self._pending_source = source

    def pointer_moved(self, dx: float, dy: float) -> bool:
        """Pointer offset from the press point; returns True once dragging."""
        if self.state != IDLE:
            return self.state in (DRAGGING, TARGETING)
        if self._pending_id is None:
            return False
        if math.hypot(dx, dy) < self.activation_distance:
            return False
        self._transition(DRAGGING)
        self.dragged_id = self._pending_id
        self.source = self._pending_source
        self._pending_id = None
        self._pending_source = None
        logger.debug("Drag started dragged=%s source=%s", self.dragged_id, self.source)
        return True

    def hover(self, over_id: str | None) -> None:
        """Pointer is over ``over_id`` (None: over no droppable node)."""
        if self.state not in (DRAGGING, TARGETING):
            raise ValidationError(f"Cannot hover while {self.state}")
        if over_id is None:
            if self.state == TARGETING:
                self._transition(DRAGGING)
            self.over_id = None
            return
        if self.state == DRAGGING:
            self._transition(TARGETING)
        self.over_id = over_id

    def release(self) -> DropResult | None:
        """Pointer released: a click before activation, a drop otherwise."""
        if self.state == IDLE:
            self._pending_id = None
            self._pending_source = None
            return None
        return self.drop()

    def cancel(self, reason: str = CANCEL_ABORTED) -> DropResult:
        """Abandon the gesture (escape key, drop outside). No backend call."""
        if self.state not in (DRAGGING, TARGETING):
            raise ValidationError(f"Cannot cancel while {self.state}")
        dragged, target = self.dragged_id, self.over_id
        self._transition(CANCELLED)
        logger.info("Drag cancelled dragged=%s target=%s reason=%s", dragged, target, reason)
        self._reset()
        return DropResult(
            status="cancelled",
            message=_CANCEL_MESSAGES.get(reason, _CANCEL_MESSAGES[CANCEL_ABORTED]),
            dragged_id=dragged,
            target_id=target,
            reason=reason,
        )

    def drop(self) -> DropResult:
        """Finish the gesture over the current target.

        Returns a cancelled DropResult for invalid drops and a committed one
        on success. Backend errors reset the gesture to idle and propagate.
        """
        if self.state == DRAGGING:
            return self.cancel(CANCEL_OUTSIDE)
        if self.state != TARGETING:
            raise ValidationError(f"Cannot drop while {self.state}")

        dragged, target = self.dragged_id, self.over_id
        if target == dragged:
            return self.cancel(CANCEL_SELF)
        if self.would_create_cycle(dragged, target):
            return self.cancel(CANCEL_CYCLE)
        if target in self.parents_of(dragged):
            return self.cancel(CANCEL_ALREADY_LINKED)

        old_parent = self.parent_of(dragged) if self.source == SOURCE_TREE else None
        self._transition(COMMITTING)
        try:
            if self.atomic:
                results = [self.backend.move_relationship(old_parent, target, dragged)]
            else:
                results = self._commit_two_step(old_parent, target, dragged)
        except Exception as exc:
            logger.warning(
                "Drag commit failed dragged=%s from=%s to=%s error=%s",
                dragged, old_parent, target, exc.__class__.__name__,
            )
            raise
        finally:
            self._reset()

        edges = set(self._edges)
        rendered = dict(self._rendered_parent)
        if old_parent is not None:
            edges.discard((old_parent, dragged))
        edges.add((target, dragged))
        rendered[dragged] = target
        self._set_edges(edges, rendered)

        logger.info("Drag committed dragged=%s from=%s to=%s", dragged, old_parent, target)
        return DropResult(
            status="committed",
            message="Requirement moved.",
            dragged_id=dragged,
            target_id=target,
            old_parent_id=old_parent,
            results=results,
        )

    def _commit_two_step(self, old_parent, target, dragged) -> list:
        results = []
        if old_parent is not None:
            results.append(self.backend.delete_relationship(old_parent, dragged))
        try:
            results.append(self.backend.create_relationship(target, dragged))
        except Exception as exc:
            if old_parent is None:
                raise
            edges = set(self._edges)
            edges.discard((old_parent, dragged))
            rendered = {k: v for k, v in self._rendered_parent.items() if k != dragged}
            remaining = sorted(p for p, c in edges if c == dragged)
            if remaining:
                rendered[dragged] = remaining[0]
            self._set_edges(edges, rendered)
            raise PartialMoveError(dragged, old_parent, target, exc) from exc
        return results

    def retry_create(self, error: PartialMoveError) -> dict:
        """Re-run only the create step of a partially applied move."""
        if self.state != IDLE:
            raise ValidationError(f"Cannot retry while {self.state}")
        result = self.backend.create_relationship(error.new_ancestor_id, error.descendant_id)
        edges = set(self._edges)
        edges.add((error.new_ancestor_id, error.descendant_id))
        rendered = dict(self._rendered_parent)
        rendered[error.descendant_id] = error.new_ancestor_id
        self._set_edges(edges, rendered)
        logger.info(
            "Partial move completed dragged=%s to=%s", error.descendant_id, error.new_ancestor_id,
        )
        return result
