"""
Relationship service — validated create / delete / move of requirement links.

Every public operation:
  1. validates ids (present, distinct, known, same project);
  2. opens one locked store transaction;
  3. re-checks cycles and duplicates inside that transaction, so a
     client-side cycle check is never trusted on its own;
  4. applies the store mutation and returns a result dict.

Duplicates are reported as DuplicateError, never silently ignored.
Store errors (NotFoundError, DuplicateError, PersistenceError) pass through
unchanged.
"""

from __future__ import annotations

import logging

from reqgraph.core.exceptions import CycleError, DuplicateError, ValidationError
from reqgraph.services.relationship_store import RelationshipStore
from reqgraph.services.requirement_lookup import RequirementLookup

logger = logging.getLogger(__name__)


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


class RelationshipService:
    """Public create / delete / move API over the RelationshipStore."""

    def __init__(
        self,
        store: RelationshipStore | None = None,
        lookup: RequirementLookup | None = None,
    ) -> None:
        self.store = store or RelationshipStore()
        self.lookup = lookup or RequirementLookup()

    # ── Validation ───────────────────────────────────────────────────────────

    def _resolve_scope(self, ancestor_id: str, descendant_id: str) -> int:
        """Validate a pair of ids and return their common project id."""
        missing = {
            field: "is required"
            for field, value in (("ancestorId", ancestor_id), ("descendantId", descendant_id))
            if not value
        }
        if missing:
            raise ValidationError("ancestorId and descendantId are required", details=missing)
        if ancestor_id == descendant_id:
            raise ValidationError(
                "A requirement cannot be related to itself",
                details={"descendantId": "must differ from ancestorId"},
            )

        ancestor_project = self.lookup.project_of(ancestor_id)
        descendant_project = self.lookup.project_of(descendant_id)
        if ancestor_project != descendant_project:
            raise ValidationError(
                "Requirements belong to different projects",
                details={
                    "ancestorId": f"project {ancestor_project}",
                    "descendantId": f"project {descendant_project}",
                },
            )
        return ancestor_project

    def _guard_new_edge(self, ancestor_id: str, descendant_id: str) -> None:
        if self.store.has_path(descendant_id, ancestor_id):
            logger.info(
                "Relationship rejected (cycle) ancestor=%s descendant=%s",
                ancestor_id, descendant_id,
            )
            raise CycleError(ancestor_id, descendant_id)
        if self.store.edge_exists(ancestor_id, descendant_id):
            logger.info(
                "Relationship rejected (duplicate) ancestor=%s descendant=%s",
                ancestor_id, descendant_id,
            )
            raise DuplicateError(ancestor_id, descendant_id)

    # ── Operations ───────────────────────────────────────────────────────────

    def create_relationship(
        self,
        ancestor_id: str,
        descendant_id: str,
        actor_id: str | None = None,
    ) -> dict:
        """Link ``descendant_id`` under ``ancestor_id``.

        Returns:
            {"success": True, "relationships_created": int, "message": str}

        Raises:
            ValidationError: Missing ids, self-relationship or cross-project pair.
            NotFoundError: Unknown requirement.
            CycleError: ``descendant_id`` is already an ancestor of ``ancestor_id``.
            DuplicateError: The direct link already exists.
            PersistenceError: Storage failure.
        """
        project_id = self._resolve_scope(ancestor_id, descendant_id)
        with self.store.transaction(project_id):
            self._guard_new_edge(ancestor_id, descendant_id)
            result = self.store.insert_edge(project_id, ancestor_id, descendant_id, actor_id)

        created = result["edges_created"]
        return {
            "success": True,
            "relationships_created": created,
            "message": f"Relationship created ({_plural(created, 'closure path')} added)",
        }

    def delete_relationship(
        self,
        ancestor_id: str,
        descendant_id: str,
        actor_id: str | None = None,
    ) -> dict:
        """Remove the direct link ``ancestor_id -> descendant_id``.

        Returns:
            {"success": True, "relationships_deleted": int, "message": str}

        Raises:
            ValidationError: Missing ids or self-relationship.
            NotFoundError: Unknown requirement or no such direct link.
            PersistenceError: Storage failure.
        """
        project_id = self._resolve_scope(ancestor_id, descendant_id)
        result = self.store.delete_edge(project_id, ancestor_id, descendant_id, actor_id)

        deleted = result["edges_deleted"]
        return {
            "success": True,
            "relationships_deleted": deleted,
            "message": f"Relationship deleted ({_plural(deleted, 'closure path')} removed)",
        }

    def move_relationship(
        self,
        old_ancestor_id: str | None,
        new_ancestor_id: str,
        descendant_id: str,
        actor_id: str | None = None,
    ) -> dict:
        """Atomically re-parent ``descendant_id`` from one ancestor to another.

        ``old_ancestor_id`` may be None to attach an unlinked requirement.
        The cycle check runs after the old edge is gone, inside the same
        transaction, so moving a node below its former sibling works.
        """
        project_id = self._resolve_scope(new_ancestor_id, descendant_id)
        if old_ancestor_id is not None:
            if old_ancestor_id == new_ancestor_id:
                raise DuplicateError(new_ancestor_id, descendant_id)
            if self._resolve_scope(old_ancestor_id, descendant_id) != project_id:
                raise ValidationError("Requirements belong to different projects")

        with self.store.transaction(project_id):
            deleted = 0
            if old_ancestor_id is not None:
                deleted = self.store.delete_edge(
                    project_id, old_ancestor_id, descendant_id, actor_id,
                )["edges_deleted"]
            self._guard_new_edge(new_ancestor_id, descendant_id)
            created = self.store.insert_edge(
                project_id, new_ancestor_id, descendant_id, actor_id,
            )["edges_created"]

        return {
            "success": True,
            "relationships_created": created,
            "relationships_deleted": deleted,
            "message": (
                f"Relationship moved ({_plural(deleted, 'closure path')} removed, "
                f"{_plural(created, 'closure path')} added)"
            ),
        }

    def preview_delete(self, ancestor_id: str, descendant_id: str) -> list[dict]:
        """Closure rows a delete would remove or shorten; no writes."""
        project_id = self._resolve_scope(ancestor_id, descendant_id)
        return self.store.preview_delete(project_id, ancestor_id, descendant_id)
