"""
Requirement — external entity referenced by the relationship graph.

Owned by the document/project subsystem. The graph only needs the id, the
owning project and display metadata (name, external_id, description).
"""

import uuid
from datetime import datetime, timezone

from reqgraph.models import db


__all__ = ["Requirement"]


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class Requirement(db.Model):
    """A requirement row; id is an opaque UUID string."""

    __tablename__ = "requirements"
    __table_args__ = (
        db.Index("idx_req_project_external", "project_id", "external_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(500), nullable=False)
    external_id = db.Column(
        db.String(100), nullable=True,
        comment="Customer-facing key, e.g. REQ-014",
    )
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=_utcnow, onupdate=_utcnow,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "external_id": self.external_id,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Requirement {self.id[:8]}: {self.name[:40]}>"
