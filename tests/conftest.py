"""
Shared pytest fixtures for the reqgraph test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - project: Pre-created Project entity
    - make_req: Factory creating requirements inside ``project``
    - link: Factory creating a relationship through the service
"""

import pytest

from reqgraph import create_app
from reqgraph.models import db as _db
from reqgraph.models.project import Project
from reqgraph.models.requirement import Requirement
from reqgraph.services.relationship_service import RelationshipService


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


def create_project(code="PRJ-1", name="Test Project") -> Project:
    """Create and commit a Project row."""
    project = Project(code=code, name=name)
    _db.session.add(project)
    _db.session.commit()
    return project


def create_requirement(project, req_id, name=None, external_id=None) -> Requirement:
    """Create and commit a Requirement with a readable fixed id."""
    req = Requirement(
        id=req_id,
        project_id=project.id,
        name=name or f"Requirement {req_id}",
        external_id=external_id,
    )
    _db.session.add(req)
    _db.session.commit()
    return req


@pytest.fixture()
def project():
    """Default project for the test."""
    return create_project()


@pytest.fixture()
def make_req(project):
    """Factory: make_req("A", "B", ...) creates requirements in ``project``."""

    def _make(*req_ids):
        made = [create_requirement(project, rid) for rid in req_ids]
        return made[0] if len(made) == 1 else made

    return _make


@pytest.fixture()
def link():
    """Factory: link(("A", "B"), ("B", "C")) creates each pair through RelationshipService."""
    service = RelationshipService()

    def _link(*pairs):
        for ancestor_id, descendant_id in pairs:
            service.create_relationship(ancestor_id, descendant_id)

    return _link
