"""
Tree query service — read-side projections over the relationship closure.

    get_ancestors / get_descendants   closure rows tagged with directParent
    get_direct_links                  depth-1 rows touching one requirement
    check_relationships               summary used before deleting a requirement
    get_tree                          path-sorted, de-duplicated project tree

Multi-parent policy: a requirement with several parents appears once in
the tree, under the parent chain with the lexicographically smallest path.
The store emits one row per parent; de-duplication happens here.

Readers take no locks.
"""

from __future__ import annotations

import logging

from reqgraph.core.exceptions import ValidationError
from reqgraph.models.relationship import TreeNode
from reqgraph.services.relationship_store import RelationshipStore
from reqgraph.services.requirement_lookup import RequirementLookup

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH_CAP = 20


class TreeQueryService:
    """Read-only projections; results are plain dicts ready for JSON."""

    def __init__(
        self,
        store: RelationshipStore | None = None,
        lookup: RequirementLookup | None = None,
        max_depth_cap: int = DEFAULT_MAX_DEPTH_CAP,
    ) -> None:
        self.store = store or RelationshipStore()
        self.lookup = lookup or RequirementLookup()
        self.max_depth_cap = max_depth_cap

    def _clamp_depth(self, max_depth) -> int | None:
        if max_depth is None:
            return None
        try:
            value = int(max_depth)
        except (TypeError, ValueError):
            raise ValidationError("maxDepth must be a positive integer", details={"maxDepth": max_depth})
        if value < 1:
            raise ValidationError("maxDepth must be a positive integer", details={"maxDepth": max_depth})
        return min(value, self.max_depth_cap)

    def _tagged(self, rows: list[tuple[str, int]]) -> list[dict]:
        names = self.lookup.describe_many(rid for rid, _ in rows)
        return [
            {
                "requirementId": rid,
                "title": names.get(rid, {}).get("name", rid),
                "depth": depth,
                "directParent": depth == 1,
            }
            for rid, depth in rows
        ]

    # ── Closure projections ──────────────────────────────────────────────────

    def get_ancestors(self, requirement_id: str, max_depth=None) -> list[dict]:
        """Ancestors nearest first; ``directParent`` marks depth-1 rows."""
        self.lookup.get(requirement_id)
        rows = self.store.list_ancestors(requirement_id, self._clamp_depth(max_depth))
        return self._tagged(rows)

    def get_descendants(self, requirement_id: str, max_depth=None) -> list[dict]:
        """Descendants nearest first; depth-1 rows are the immediate children."""
        self.lookup.get(requirement_id)
        rows = self.store.list_descendants(requirement_id, self._clamp_depth(max_depth))
        return self._tagged(rows)

    def get_direct_links(self, requirement_id: str) -> list[dict]:
        """Direct parent and child links of one requirement, with display data."""
        self.lookup.get(requirement_id)
        links = self.store.list_direct_links(requirement_id)
        names = self.lookup.describe_many(
            rid for link in links for rid in (link.ancestor_id, link.descendant_id)
        )
        result = []
        for link in links:
            entry = link.to_dict()
            entry["ancestor"] = {
                "id": link.ancestor_id,
                "title": names.get(link.ancestor_id, {}).get("name"),
            }
            entry["descendant"] = {
                "id": link.descendant_id,
                "title": names.get(link.descendant_id, {}).get("name"),
            }
            result.append(entry)
        return result

    def check_relationships(self, requirement_id: str) -> dict:
        """Summarise every requirement connected to this one, in either direction."""
        self.lookup.get(requirement_id)
        related = {
            rid
            for rid, _ in self.store.list_ancestors(requirement_id)
            + self.store.list_descendants(requirement_id)
        }
        names = self.lookup.describe_many(related)
        related_requirements = sorted(
            (
                {
                    "id": rid,
                    "name": names.get(rid, {}).get("name", rid),
                    "external_id": names.get(rid, {}).get("external_id"),
                }
                for rid in related
            ),
            key=lambda r: (r["name"] or "", r["id"]),
        )
        return {
            "hasRelationships": bool(related_requirements),
            "relationshipCount": len(related_requirements),
            "relatedRequirements": related_requirements,
        }

    # ── Tree ─────────────────────────────────────────────────────────────────

    def get_tree_nodes(self, project_id: int) -> list[TreeNode]:
        """Path-sorted TreeNodes, one per requirement id, titles and all parents attached."""
        self.lookup.get_project(project_id)
        rows = sorted(self.store.list_tree(project_id), key=lambda n: n.path_key)

        parents: dict[str, set[str]] = {}
        for node in rows:
            if node.parent_id is not None:
                parents.setdefault(node.requirement_id, set()).add(node.parent_id)

        kept: list[TreeNode] = []
        seen_ids: set[str] = set()
        kept_paths: set[tuple] = set()
        for node in rows:
            if node.requirement_id in seen_ids:
                continue
            if node.parent_id is not None and node.path_key[:-1] not in kept_paths:
                continue
            seen_ids.add(node.requirement_id)
            kept_paths.add(node.path_key)
            kept.append(node)

        names = self.lookup.describe_many(n.requirement_id for n in kept)
        decorated = [
            TreeNode(
                requirement_id=n.requirement_id,
                parent_id=n.parent_id,
                depth=n.depth,
                path=n.path,
                has_children=n.has_children,
                title=names.get(n.requirement_id, {}).get("name"),
                parent_ids=tuple(sorted(parents.get(n.requirement_id, ()))),
            )
            for n in kept
        ]
        logger.debug(
            "Tree built project_id=%s rows=%d unique=%d", project_id, len(rows), len(decorated),
        )
        return decorated

    def get_tree(self, project_id: int) -> list[dict]:
        return [node.to_dict() for node in self.get_tree_nodes(project_id)]
