"""Project domain model: the scope boundary of one relationship graph."""

from datetime import datetime, timezone

from reqgraph.models import db


class Project(db.Model):
    """Scope within which a requirement graph is maintained independently.

    Owned by the project subsystem; the relationship engine only reads it and
    locks its row to serialise closure mutations of one scope.
    """

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    requirements = db.relationship(
        "Requirement", backref="project", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.code}>"
