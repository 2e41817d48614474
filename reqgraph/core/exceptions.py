"""
Relationship graph exception hierarchy.

Every service and the store raise these types; the relationship blueprint
registers one handler per type and gets consistent HTTP status codes.

Propagation:
  - RelationshipStore raises only NotFoundError, DuplicateError and
    PersistenceError.
  - RelationshipService adds ValidationError and CycleError from its
    pre-checks and passes store errors through unchanged.
  - DragDropReconciler adds PartialMoveError when the delete step of a
    two-step move succeeded and the create step failed.

Usage:
    from reqgraph.core.exceptions import CycleError, NotFoundError

    raise NotFoundError(resource="Relationship", resource_id="a->b")
    raise CycleError(ancestor_id, descendant_id)
"""


class RelationshipError(Exception):
    """Base class for every error raised by the relationship engine."""

    code = "ERR_RELATIONSHIP"


class ValidationError(RelationshipError):
    """Raised when input is well-formed but violates a business rule.

    Self-relationships, missing ids, cross-project links and illegal
    drag state transitions all land here.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    code = "ERR_VALIDATION_INVALID"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class NotFoundError(RelationshipError):
    """Raised when an edge or requirement does not exist within the scope.

    Args:
        resource: Human-readable entity name (e.g. "Requirement", "Relationship").
        resource_id: The key that was looked up. Included in logs and message.
    """

    code = "ERR_NOT_FOUND"

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class DuplicateError(RelationshipError):
    """Raised when the exact direct edge already exists.

    Reported instead of silently ignored so the UI can tell
    "already linked" apart from "newly linked".
    """

    code = "ERR_CONFLICT_DUPLICATE"

    def __init__(self, ancestor_id: str, descendant_id: str) -> None:
        self.ancestor_id = ancestor_id
        self.descendant_id = descendant_id
        super().__init__(
            f"Relationship {ancestor_id} -> {descendant_id} already exists"
        )


class CycleError(RelationshipError):
    """Raised when a new edge would make the descendant its own ancestor."""

    code = "ERR_CONFLICT_CYCLE"

    def __init__(self, ancestor_id: str, descendant_id: str) -> None:
        self.ancestor_id = ancestor_id
        self.descendant_id = descendant_id
        super().__init__(
            f"Relationship {ancestor_id} -> {descendant_id} would create a circular reference"
        )


class PersistenceError(RelationshipError):
    """Raised when the closure transaction fails at the storage layer.

    The session has already been rolled back when this is raised.
    """

    code = "ERR_DATABASE"


class PartialMoveError(RelationshipError):
    """Raised when a two-step move deleted the old edge but failed to create the new one.

    The dragged node is left without a parent. The UI should offer to retry
    only the create step (``DragDropReconciler.retry_create``).

    Attributes:
        descendant_id: The detached node.
        old_ancestor_id: The parent whose edge was removed.
        new_ancestor_id: The intended new parent.
        cause: The error raised by the create step.
    """

    code = "ERR_PARTIAL_MOVE"

    def __init__(
        self,
        descendant_id: str,
        old_ancestor_id: str,
        new_ancestor_id: str,
        cause: Exception,
    ) -> None:
        self.descendant_id = descendant_id
        self.old_ancestor_id = old_ancestor_id
        self.new_ancestor_id = new_ancestor_id
        self.cause = cause
        super().__init__(
            f"Requirement {descendant_id} was detached from {old_ancestor_id} "
            f"but could not be linked under {new_ancestor_id}: {cause}"
        )
