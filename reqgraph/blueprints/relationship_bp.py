"""Requirement relationship blueprint.

REST API over the relationship closure.

Endpoint groups:
  Queries          GET    /api/v1/requirements/relationships
                          ?requirementId=&type=ancestors|descendants&maxDepth=
                          ?requirementId=&type=check
                          ?requirementId=            (direct links)
                          ?projectId=&type=tree
  Delete preview   GET    /api/v1/requirements/relationships/preview-delete
  Mutations        POST   /api/v1/requirements/relationships
                   DELETE /api/v1/requirements/relationships
                   POST   /api/v1/requirements/relationships/move

The acting user comes from the X-User-Id header (authentication is handled
upstream). Services own validation, locking and commits; this module only
parses input and maps exceptions to status codes.
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from reqgraph.core.exceptions import (
    CycleError,
    DuplicateError,
    NotFoundError,
    PartialMoveError,
    PersistenceError,
    ValidationError,
)
from reqgraph.middleware.timing import acting_user_id
from reqgraph.services.relationship_service import RelationshipService
from reqgraph.services.tree_query_service import TreeQueryService
from reqgraph.utils.errors import E, api_error

logger = logging.getLogger(__name__)

relationships_bp = Blueprint("relationships", __name__, url_prefix="/api/v1")

_QUERY_TYPES = ("ancestors", "descendants", "tree", "check")


def _service() -> RelationshipService:
    return RelationshipService()


def _queries() -> TreeQueryService:
    return TreeQueryService(max_depth_cap=current_app.config["RELATIONSHIP_MAX_DEPTH"])


def _pair_from_body() -> tuple[str | None, str | None]:
    data = request.get_json(silent=True) or {}
    return data.get("ancestorId"), data.get("descendantId")


# ── Error handlers ────────────────────────────────────────────────────────────


@relationships_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_INVALID, str(error), details=error.details)


@relationships_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@relationships_bp.errorhandler(DuplicateError)
def _handle_duplicate(error: DuplicateError):
    return api_error(E.CONFLICT_DUPLICATE, str(error))


@relationships_bp.errorhandler(CycleError)
def _handle_cycle(error: CycleError):
    return api_error(E.CONFLICT_CYCLE, str(error))


@relationships_bp.errorhandler(PartialMoveError)
def _handle_partial_move(error: PartialMoveError):
    return api_error(E.PARTIAL_MOVE, str(error))


@relationships_bp.errorhandler(PersistenceError)
def _handle_persistence(error: PersistenceError):
    logger.error("Relationship persistence failure endpoint=%s error=%s", request.endpoint, error)
    return api_error(E.DATABASE, "Database error while updating relationships")


@relationships_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in relationships endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ═════════════════════════════════════════════════════════════════════════
# Queries  (/api/v1/requirements/relationships)
# ═════════════════════════════════════════════════════════════════════════


@relationships_bp.route("/requirements/relationships", methods=["GET"])
def get_relationships():
    """Closure projections for one requirement, or the tree of one project.

    Query params:
        type: ancestors | descendants | tree | check (omit for direct links)
        requirementId: required unless type=tree
        projectId: required for type=tree
        maxDepth: optional positive int for ancestors / descendants
    """
    query_type = request.args.get("type")
    if query_type is not None and query_type not in _QUERY_TYPES:
        return api_error(
            E.VALIDATION_INVALID,
            f"type must be one of: {', '.join(_QUERY_TYPES)}",
        )
    queries = _queries()

    if query_type == "tree":
        raw_project_id = request.args.get("projectId")
        if not raw_project_id:
            return api_error(E.VALIDATION_REQUIRED, "projectId is required for type=tree")
        try:
            project_id = int(raw_project_id)
        except ValueError:
            return api_error(E.VALIDATION_INVALID, "projectId must be an integer")
        return jsonify({"data": queries.get_tree(project_id)}), 200

    requirement_id = request.args.get("requirementId")
    if not requirement_id:
        return api_error(E.VALIDATION_REQUIRED, "requirementId is required")

    if query_type == "check":
        return jsonify(queries.check_relationships(requirement_id)), 200

    max_depth = request.args.get("maxDepth")
    if query_type == "ancestors":
        return jsonify({"data": queries.get_ancestors(requirement_id, max_depth)}), 200
    if query_type == "descendants":
        return jsonify({"data": queries.get_descendants(requirement_id, max_depth)}), 200
    return jsonify({"data": queries.get_direct_links(requirement_id)}), 200


@relationships_bp.route("/requirements/relationships/preview-delete", methods=["GET"])
def preview_delete():
    """Closure rows that deleting ancestorId -> descendantId would remove or shorten."""
    rows = _service().preview_delete(
        request.args.get("ancestorId"), request.args.get("descendantId"),
    )
    return jsonify({"data": rows}), 200


# ═════════════════════════════════════════════════════════════════════════
# Mutations
# ═════════════════════════════════════════════════════════════════════════


@relationships_bp.route("/requirements/relationships", methods=["POST"])
def create_relationship():
    """Body: {ancestorId, descendantId}. Returns 201 with closure row count."""
    ancestor_id, descendant_id = _pair_from_body()
    result = _service().create_relationship(ancestor_id, descendant_id, acting_user_id())
    return jsonify({
        "success": True,
        "message": result["message"],
        "relationshipsCreated": result["relationships_created"],
    }), 201


@relationships_bp.route("/requirements/relationships", methods=["DELETE"])
def delete_relationship():
    """Body: {ancestorId, descendantId}."""
    ancestor_id, descendant_id = _pair_from_body()
    result = _service().delete_relationship(ancestor_id, descendant_id, acting_user_id())
    return jsonify({
        "success": True,
        "message": result["message"],
        "relationshipsDeleted": result["relationships_deleted"],
    }), 200


@relationships_bp.route("/requirements/relationships/move", methods=["POST"])
def move_relationship():
    """Body: {oldAncestorId?, newAncestorId, descendantId}. One transaction."""
    data = request.get_json(silent=True) or {}
    new_ancestor_id = data.get("newAncestorId")
    descendant_id = data.get("descendantId")
    if not new_ancestor_id or not descendant_id:
        return api_error(
            E.VALIDATION_REQUIRED, "newAncestorId and descendantId are required",
        )
    result = _service().move_relationship(
        data.get("oldAncestorId") or None,
        new_ancestor_id,
        descendant_id,
        acting_user_id(),
    )
    return jsonify({
        "success": True,
        "message": result["message"],
        "relationshipsCreated": result["relationships_created"],
        "relationshipsDeleted": result["relationships_deleted"],
    }), 200
