"""
Requirement lookup — display decoration for relationship results.

The relationship engine never reads requirement content for graph logic;
it only needs a requirement's project (to scope a mutation) and its name /
external_id / description (to decorate query results).
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from reqgraph.core.exceptions import NotFoundError
from reqgraph.models import db
from reqgraph.models.project import Project
from reqgraph.models.requirement import Requirement

logger = logging.getLogger(__name__)


class RequirementLookup:
    """Resolve requirement ids to scope and display metadata."""

    def __init__(self, session=None) -> None:
        self._session = session

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    def get(self, requirement_id: str) -> Requirement:
        """Return the requirement or raise NotFoundError."""
        req = self.session.get(Requirement, requirement_id)
        if req is None:
            raise NotFoundError(resource="Requirement", resource_id=requirement_id)
        return req

    def get_project(self, project_id: int) -> Project:
        """Return the project or raise NotFoundError."""
        project = self.session.get(Project, project_id)
        if project is None:
            raise NotFoundError(resource="Project", resource_id=project_id)
        return project

    def project_of(self, requirement_id: str) -> int:
        return self.get(requirement_id).project_id

    def describe_many(self, requirement_ids) -> dict[str, dict]:
        """Map id -> {id, name, external_id, description} in one query.

        Unknown ids are absent from the result; callers fall back to the raw id.
        """
        ids = list(set(requirement_ids))
        if not ids:
            return {}
        rows = self.session.scalars(
            select(Requirement).where(Requirement.id.in_(ids))
        )
        return {
            r.id: {
                "id": r.id,
                "name": r.name,
                "external_id": r.external_id,
                "description": r.description,
            }
            for r in rows
        }
