"""
Shared pytest fixtures for the certflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - project: Pre-created FTA Project entity
    - document: Plain-text source document attached to the project
    - workflow: Workflow run initiated for the project (dict)
"""

import pytest

from certflow import create_app
from certflow.models import db as _db


SOURCE_TEXT = (
    "1. Scope\n"
    "This document describes the Metro Line 2 train control system.\n\n"
    "2. Braking\n"
    "Loss of emergency braking could lead to a collision with an obstacle.\n\n"
    "3. Doors\n"
    "Passenger doors shall not open while the train is in motion.\n"
)


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


@pytest.fixture()
def project():
    """Create and return a test Project (FTA framework)."""
    from certflow.models.project import Project
    proj = Project(name="Metro Line 2 Signalling", industry="transit", compliance_framework="FTA")
    _db.session.add(proj)
    _db.session.commit()
    return proj


@pytest.fixture()
def document(project):
    """Attach a small plain-text source document to the project."""
    from certflow.models.project import ProjectDocument
    doc = ProjectDocument(project_id=project.id, filename="system_spec.txt", content_text=SOURCE_TEXT)
    _db.session.add(doc)
    _db.session.commit()
    return doc


@pytest.fixture()
def workflow(project):
    """Initiate a workflow run for the project and return its dict."""
    from certflow.services import workflow_orchestrator
    return workflow_orchestrator.initiate(project.id, {"system_description": "Metro train control"},
                                          user_id="tester")
