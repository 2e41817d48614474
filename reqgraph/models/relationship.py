"""
Requirement relationship models.

RequirementEdge, ClosurePath and the TreeNode read model.

RequirementEdge holds the direct ancestor -> descendant links that users
create. ClosurePath is derived from the edges: one row per connected pair
with the length of the shortest path as ``depth``, plus a depth-0 self row
for every node that takes part in an edge. ClosurePath rows are only ever
written by RelationshipStore, in the same transaction as the edge change.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from reqgraph.models import db


__all__ = ["RequirementEdge", "ClosurePath", "TreeNode"]


def _utcnow():
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# 1. RequirementEdge: direct links
# ═════════════════════════════════════════════════════════════════════════════

class RequirementEdge(db.Model):
    """Direct parent -> child link between two requirements of one project."""

    __tablename__ = "requirement_edges"
    __table_args__ = (
        db.UniqueConstraint("ancestor_id", "descendant_id", name="uq_redge_pair"),
        db.CheckConstraint("ancestor_id != descendant_id", name="ck_redge_no_self_ref"),
        db.Index("idx_redge_project", "project_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    ancestor_id = db.Column(
        db.String(36), db.ForeignKey("requirements.id", ondelete="CASCADE"),
        nullable=False, index=True, comment="Parent requirement",
    )
    descendant_id = db.Column(
        db.String(36), db.ForeignKey("requirements.id", ondelete="CASCADE"),
        nullable=False, index=True, comment="Child requirement",
    )
    created_by = db.Column(db.String(36), nullable=True, comment="Acting user id")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "ancestor_id": self.ancestor_id,
            "descendant_id": self.descendant_id,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<RequirementEdge {self.ancestor_id[:8]} → {self.descendant_id[:8]}>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. ClosurePath: derived transitive closure
# ═════════════════════════════════════════════════════════════════════════════

class ClosurePath(db.Model):
    """Shortest-path row between two connected requirements.

    depth = 0 only for the self row (ancestor_id == descendant_id).
    """

    __tablename__ = "requirements_closure"
    __table_args__ = (
        db.CheckConstraint("depth >= 0", name="ck_rclosure_depth_non_negative"),
        db.CheckConstraint(
            "(ancestor_id = descendant_id AND depth = 0) "
            "OR (ancestor_id != descendant_id AND depth > 0)",
            name="ck_rclosure_self_row_only_at_zero",
        ),
        db.Index("idx_rclosure_project_depth", "project_id", "depth"),
        db.Index("idx_rclosure_descendant_depth", "descendant_id", "depth"),
    )

    ancestor_id = db.Column(
        db.String(36), db.ForeignKey("requirements.id", ondelete="CASCADE"),
        primary_key=True,
    )
    descendant_id = db.Column(
        db.String(36), db.ForeignKey("requirements.id", ondelete="CASCADE"),
        primary_key=True,
    )
    depth = db.Column(db.Integer, nullable=False)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    created_by = db.Column(db.String(36), nullable=True)
    updated_by = db.Column(db.String(36), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=_utcnow)

    def to_dict(self):
        return {
            "ancestor_id": self.ancestor_id,
            "descendant_id": self.descendant_id,
            "depth": self.depth,
            "project_id": self.project_id,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<ClosurePath {self.ancestor_id[:8]} → {self.descendant_id[:8]} d={self.depth}>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. TreeNode: read model for the hierarchy view (not persisted)
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TreeNode:
    """One rendered row of a project hierarchy.

    ``path`` is the dot-joined id chain from the root down to this node, so
    sorting by its components yields a pre-order traversal with siblings
    grouped. ``depth`` is the position in that chain (roots are 0).
    ``parent_ids`` lists every direct parent, including the ones the node is
    not rendered under.
    """

    requirement_id: str
    parent_id: str | None
    depth: int
    path: str
    has_children: bool
    title: str | None = None
    parent_ids: tuple[str, ...] = ()

    @property
    def path_key(self) -> tuple:
        return tuple(self.path.split("."))

    def to_dict(self):
        data = asdict(self)
        data["parent_ids"] = list(self.parent_ids)
        return data
