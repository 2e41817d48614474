"""
Relationship store — durable Edge + ClosurePath maintenance.

Owns every write to ``requirement_edges`` and ``requirements_closure``.
Closure rows are derived from edges and kept in the same transaction:

    insert (a -> d):  for every (x, a, dx) and (d, y, dy), self rows included,
                      upsert (x, y, dx + dy + 1) keeping the minimum depth.
    delete (a -> d):  every pair (x, y) with x in ancestors*(a) and
                      y in descendants*(d) may have used the edge; those pairs
                      are re-derived by BFS over the remaining edges, so a pair
                      still connected by another path keeps a row with its new
                      minimum depth.

Rules:
  - Mutations lock the project row first (SELECT ... FOR UPDATE). On SQLite
    the database write lock gives the same serialisation.
  - db.session.commit() for closure data happens only in this file.
  - Only NotFoundError, DuplicateError and PersistenceError leave this module.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from contextlib import contextmanager

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError

from reqgraph.core.exceptions import (
    DuplicateError,
    NotFoundError,
    PersistenceError,
    RelationshipError,
)
from reqgraph.models import db
from reqgraph.models.project import Project
from reqgraph.models.relationship import ClosurePath, RequirementEdge, TreeNode

logger = logging.getLogger(__name__)

PATH_SEPARATOR = "."


def _bfs_depths(adjacency: dict[str, list[str]], start: str) -> dict[str, int]:
    """Shortest edge count from ``start`` to every reachable node (start excluded)."""
    depths: dict[str, int] = {}
    queue = deque([(start, 0)])
    seen = {start}
    while queue:
        node, dist = queue.popleft()
        for child in adjacency.get(node, ()):
            if child in seen:
                continue
            seen.add(child)
            depths[child] = dist + 1
            queue.append((child, dist + 1))
    return depths


class RelationshipStore:
    """CRUD over edges and closure rows, scoped by project.

    Pass a custom ``session`` in tests; the Flask-SQLAlchemy scoped session
    is used otherwise.
    """

    def __init__(self, session=None) -> None:
        self._session = session
        self._tx_depth = 0

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    # ── Transactions ─────────────────────────────────────────────────────────

    @contextmanager
    def transaction(self, project_id: int):
        """Run the enclosed block as one locked, committed unit of work.

        Re-entrant: nested calls join the outer transaction, so a service can
        run its pre-checks and one or more mutations under the same lock.
        """
        if self._tx_depth:
            self._tx_depth += 1
            try:
                yield
            finally:
                self._tx_depth -= 1
            return

        self._tx_depth = 1
        try:
            self._lock_scope(project_id)
            yield
            self.session.commit()
        except RelationshipError:
            self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("Closure transaction failed project_id=%s", project_id)
            raise PersistenceError(f"Relationship transaction failed: {exc.__class__.__name__}") from exc
        except Exception:
            self.session.rollback()
            raise
        finally:
            self._tx_depth = 0

    def _lock_scope(self, project_id: int) -> None:
        locked = self.session.execute(
            select(Project.id).where(Project.id == project_id).with_for_update()
        ).scalar_one_or_none()
        if locked is None:
            raise NotFoundError(resource="Project", resource_id=project_id)

    # ── Mutations ────────────────────────────────────────────────────────────

    def insert_edge(
        self,
        project_id: int,
        ancestor_id: str,
        descendant_id: str,
        actor_id: str | None = None,
    ) -> dict:
        """Add a direct edge and extend the closure.

        Returns:
            {"edges_created": <number of new closure rows with depth > 0>}

        Raises:
            DuplicateError: The exact direct edge already exists.
            PersistenceError: Storage failure, or the closure would gain a cycle.
        """
        with self.transaction(project_id):
            created = self._insert_edge_rows(project_id, ancestor_id, descendant_id, actor_id)
        logger.info(
            "Relationship created project_id=%s ancestor=%s descendant=%s closure_rows=%d",
            project_id, ancestor_id, descendant_id, created,
            extra={"project_id": project_id, "ancestor_id": ancestor_id, "descendant_id": descendant_id},
        )
        return {"edges_created": created}

    def delete_edge(
        self,
        project_id: int,
        ancestor_id: str,
        descendant_id: str,
        actor_id: str | None = None,
    ) -> dict:
        """Remove a direct edge and re-derive every closure row that used it.

        Returns:
            {"edges_deleted": <number of closure rows with depth > 0 that vanished>}

        Raises:
            NotFoundError: No such direct edge.
            PersistenceError: Storage failure.
        """
        with self.transaction(project_id):
            deleted = self._delete_edge_rows(project_id, ancestor_id, descendant_id, actor_id)
        logger.info(
            "Relationship deleted project_id=%s ancestor=%s descendant=%s closure_rows=%d",
            project_id, ancestor_id, descendant_id, deleted,
            extra={"project_id": project_id, "ancestor_id": ancestor_id, "descendant_id": descendant_id},
        )
        return {"edges_deleted": deleted}

    def rebuild_closure(self, project_id: int) -> int:
        """Re-materialise the whole closure of a project from its edges.

        Returns the number of closure rows with depth > 0 written.
        """
        with self.transaction(project_id):
            stale = list(self.session.scalars(
                select(ClosurePath).where(ClosurePath.project_id == project_id)
            ))
            for row in stale:
                self.session.delete(row)
            self.session.flush()

            adjacency = self._adjacency(project_id)
            nodes = set(adjacency)
            for children in adjacency.values():
                nodes.update(children)

            written = 0
            for node in sorted(nodes):
                self.session.add(ClosurePath(
                    ancestor_id=node, descendant_id=node, depth=0, project_id=project_id,
                ))
                for target, depth in _bfs_depths(adjacency, node).items():
                    self.session.add(ClosurePath(
                        ancestor_id=node, descendant_id=target, depth=depth,
                        project_id=project_id,
                    ))
                    written += 1
        logger.info(
            "Closure rebuilt project_id=%s rows=%d", project_id, written,
            extra={"project_id": project_id},
        )
        return written

    # ── Mutation internals (caller holds the transaction) ───────────────────

    def _insert_edge_rows(self, project_id, ancestor_id, descendant_id, actor_id) -> int:
        if self.edge_exists(ancestor_id, descendant_id):
            raise DuplicateError(ancestor_id, descendant_id)

        self.session.add(RequirementEdge(
            project_id=project_id,
            ancestor_id=ancestor_id,
            descendant_id=descendant_id,
            created_by=actor_id,
        ))
        self._ensure_self_row(project_id, ancestor_id, actor_id)
        self._ensure_self_row(project_id, descendant_id, actor_id)
        self.session.flush()

        ups = dict(self.session.execute(
            select(ClosurePath.ancestor_id, ClosurePath.depth)
            .where(ClosurePath.descendant_id == ancestor_id)
        ).all())
        downs = dict(self.session.execute(
            select(ClosurePath.descendant_id, ClosurePath.depth)
            .where(ClosurePath.ancestor_id == descendant_id)
        ).all())
        if descendant_id in ups or ancestor_id in downs:
            raise PersistenceError(
                f"Closure integrity: {ancestor_id} -> {descendant_id} would close a cycle"
            )

        existing = {
            (row.ancestor_id, row.descendant_id): row
            for row in self.session.scalars(
                select(ClosurePath).where(
                    ClosurePath.ancestor_id.in_(list(ups)),
                    ClosurePath.descendant_id.in_(list(downs)),
                )
            )
        }

        created = 0
        for x, dx in ups.items():
            for y, dy in downs.items():
                depth = dx + dy + 1
                row = existing.get((x, y))
                if row is None:
                    self.session.add(ClosurePath(
                        ancestor_id=x, descendant_id=y, depth=depth,
                        project_id=project_id, created_by=actor_id,
                    ))
                    created += 1
                elif depth < row.depth:
                    row.depth = depth
                    row.updated_by = actor_id
        self.session.flush()
        return created

    def _delete_edge_rows(self, project_id, ancestor_id, descendant_id, actor_id) -> int:
        edge = self._edge(ancestor_id, descendant_id)
        if edge is None:
            raise NotFoundError(
                resource="Relationship", resource_id=f"{ancestor_id}->{descendant_id}",
            )

        plan = self._plan_removal(project_id, ancestor_id, descendant_id)
        self.session.delete(edge)

        deleted = 0
        for row, new_depth in plan:
            if new_depth is None:
                self.session.delete(row)
                deleted += 1
            elif new_depth != row.depth:
                row.depth = new_depth
                row.updated_by = actor_id
        self.session.flush()

        self._prune_self_row(ancestor_id)
        self._prune_self_row(descendant_id)
        self.session.flush()
        return deleted

    def _plan_removal(self, project_id, ancestor_id, descendant_id):
        """Return [(closure_row, new_depth_or_None)] for every pair the edge may carry."""
        ups = set(self.session.scalars(
            select(ClosurePath.ancestor_id).where(ClosurePath.descendant_id == ancestor_id)
        ))
        downs = set(self.session.scalars(
            select(ClosurePath.descendant_id).where(ClosurePath.ancestor_id == descendant_id)
        ))
        ups.add(ancestor_id)
        downs.add(descendant_id)

        affected = list(self.session.scalars(
            select(ClosurePath).where(
                ClosurePath.ancestor_id.in_(list(ups)),
                ClosurePath.descendant_id.in_(list(downs)),
                ClosurePath.depth > 0,
            )
        ))

        adjacency = self._adjacency(project_id, exclude=(ancestor_id, descendant_id))
        reach = {x: _bfs_depths(adjacency, x) for x in ups}
        return [
            (row, reach[row.ancestor_id].get(row.descendant_id))
            for row in affected
        ]

    def _ensure_self_row(self, project_id, node_id, actor_id) -> None:
        if self.session.get(ClosurePath, (node_id, node_id)) is None:
            self.session.add(ClosurePath(
                ancestor_id=node_id, descendant_id=node_id, depth=0,
                project_id=project_id, created_by=actor_id,
            ))

    def _prune_self_row(self, node_id) -> None:
        still_linked = self.session.execute(
            select(RequirementEdge.id).where(
                or_(
                    RequirementEdge.ancestor_id == node_id,
                    RequirementEdge.descendant_id == node_id,
                )
            ).limit(1)
        ).first()
        if still_linked is None:
            row = self.session.get(ClosurePath, (node_id, node_id))
            if row is not None:
                self.session.delete(row)

    def _adjacency(self, project_id, exclude=None) -> dict[str, list[str]]:
        """Build ``parent -> sorted children`` from the project's edges."""
        adjacency: dict[str, list[str]] = defaultdict(list)
        rows = self.session.execute(
            select(RequirementEdge.ancestor_id, RequirementEdge.descendant_id)
            .where(RequirementEdge.project_id == project_id)
        ).all()
        for parent, child in rows:
            if exclude is not None and (parent, child) == exclude:
                continue
            adjacency[parent].append(child)
        for children in adjacency.values():
            children.sort()
        return adjacency

    # ── Reads ────────────────────────────────────────────────────────────────

    def _edge(self, ancestor_id: str, descendant_id: str):
        return self.session.execute(
            select(RequirementEdge).where(
                RequirementEdge.ancestor_id == ancestor_id,
                RequirementEdge.descendant_id == descendant_id,
            )
        ).scalar_one_or_none()

    def edge_exists(self, ancestor_id: str, descendant_id: str) -> bool:
        return self._edge(ancestor_id, descendant_id) is not None

    def has_path(self, from_id: str, to_id: str) -> bool:
        """True iff a closure row from ``from_id`` to ``to_id`` exists with depth > 0."""
        row = self.session.execute(
            select(ClosurePath.depth).where(
                ClosurePath.ancestor_id == from_id,
                ClosurePath.descendant_id == to_id,
                ClosurePath.depth > 0,
            )
        ).first()
        return row is not None

    def list_ancestors(self, requirement_id: str, max_depth: int | None = None) -> list[tuple[str, int]]:
        """[(ancestor_id, depth)] ordered by depth, then id."""
        stmt = (
            select(ClosurePath.ancestor_id, ClosurePath.depth)
            .where(ClosurePath.descendant_id == requirement_id, ClosurePath.depth > 0)
            .order_by(ClosurePath.depth, ClosurePath.ancestor_id)
        )
        if max_depth is not None:
            stmt = stmt.where(ClosurePath.depth <= max_depth)
        return [(rid, depth) for rid, depth in self.session.execute(stmt).all()]

    def list_descendants(self, requirement_id: str, max_depth: int | None = None) -> list[tuple[str, int]]:
        """[(descendant_id, depth)] ordered by depth, then id."""
        stmt = (
            select(ClosurePath.descendant_id, ClosurePath.depth)
            .where(ClosurePath.ancestor_id == requirement_id, ClosurePath.depth > 0)
            .order_by(ClosurePath.depth, ClosurePath.descendant_id)
        )
        if max_depth is not None:
            stmt = stmt.where(ClosurePath.depth <= max_depth)
        return [(rid, depth) for rid, depth in self.session.execute(stmt).all()]

    def list_direct_links(self, requirement_id: str) -> list[ClosurePath]:
        """Depth-1 closure rows where the requirement is either endpoint."""
        return list(self.session.scalars(
            select(ClosurePath)
            .where(
                ClosurePath.depth == 1,
                or_(
                    ClosurePath.ancestor_id == requirement_id,
                    ClosurePath.descendant_id == requirement_id,
                ),
            )
            .order_by(ClosurePath.ancestor_id, ClosurePath.descendant_id)
        ))

    def closure_state(self, project_id: int) -> list[ClosurePath]:
        """Every closure row of the scope with depth > 0 (debugging aid)."""
        return list(self.session.scalars(
            select(ClosurePath)
            .where(ClosurePath.project_id == project_id, ClosurePath.depth > 0)
            .order_by(ClosurePath.ancestor_id, ClosurePath.depth, ClosurePath.descendant_id)
        ))

    def preview_delete(self, project_id: int, ancestor_id: str, descendant_id: str) -> list[dict]:
        """Dry-run of delete_edge: which closure pairs vanish and which get a new depth."""
        edge = self._edge(ancestor_id, descendant_id)
        if edge is None:
            raise NotFoundError(
                resource="Relationship", resource_id=f"{ancestor_id}->{descendant_id}",
            )
        plan = self._plan_removal(project_id, ancestor_id, descendant_id)
        preview = [
            {
                "ancestor_id": row.ancestor_id,
                "descendant_id": row.descendant_id,
                "depth": row.depth,
                "will_be_deleted": new_depth is None,
                "new_depth": new_depth,
            }
            for row, new_depth in plan
        ]
        preview.sort(key=lambda p: (p["depth"], p["ancestor_id"], p["descendant_id"]))
        return preview

    def list_tree(self, project_id: int) -> list[TreeNode]:
        """One TreeNode per direct edge plus one per root, unsorted.

        A node's path is its lexicographically smallest root chain; a child
        row hangs below that path of its parent. Built from an adjacency map
        in one pass over the edges.
        """
        adjacency = self._adjacency(project_id)
        nodes = set(adjacency)
        has_parent = set()
        for children in adjacency.values():
            nodes.update(children)
            has_parent.update(children)
        roots = sorted(nodes - has_parent)

        with_children = set(self.session.scalars(
            select(ClosurePath.ancestor_id).where(
                and_(ClosurePath.project_id == project_id, ClosurePath.depth == 1)
            ).distinct()
        ))

        # Pre-order DFS with sorted children; the first visit of a node is
        # along its smallest path.
        best_path: dict[str, str] = {}
        best_depth: dict[str, int] = {}
        stack = [(root, root, 0) for root in reversed(roots)]
        while stack:
            node, path, depth = stack.pop()
            if node in best_path:
                continue
            best_path[node] = path
            best_depth[node] = depth
            for child in reversed(adjacency.get(node, [])):
                if child not in best_path:
                    stack.append((child, f"{path}{PATH_SEPARATOR}{child}", depth + 1))

        rows = [
            TreeNode(
                requirement_id=root,
                parent_id=None,
                depth=0,
                path=root,
                has_children=root in with_children,
            )
            for root in roots
        ]
        for parent, children in adjacency.items():
            if parent not in best_path:
                continue
            for child in children:
                rows.append(TreeNode(
                    requirement_id=child,
                    parent_id=parent,
                    depth=best_depth[parent] + 1,
                    path=f"{best_path[parent]}{PATH_SEPARATOR}{child}",
                    has_children=child in with_children,
                ))
        return rows
