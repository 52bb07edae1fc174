"""
Shared pytest fixtures for the Issue Workflow Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - org / other_org: Pre-created organizations
    - actor / assignee: Users of ``org``
    - default_workflow: To Do -> In Progress -> Done, seeded for ``org``
    - project / issue: A project on the default workflow and one issue in it
    - headers: JSON + organization/actor headers for API calls
"""

import pytest

from app import create_app
from app.models import db as _db
from app.models.organization import Organization, User
from app.services import project_service, workflow_service


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


# ── Domain fixtures ──────────────────────────────────────────────────────


def _make_org(slug: str = "acme", name: str | None = None) -> Organization:
    org = Organization(name=name or slug.title(), slug=slug)
    _db.session.add(org)
    _db.session.commit()
    return org


def _make_user(organization_id: int, email: str, name: str | None = None) -> User:
    user = User(organization_id=organization_id, name=name or email.split("@")[0], email=email)
    _db.session.add(user)
    _db.session.commit()
    return user


@pytest.fixture()
def org():
    return _make_org("acme")


@pytest.fixture()
def other_org():
    return _make_org("globex")


@pytest.fixture()
def actor(org):
    return _make_user(org.id, "actor@acme.test", "Actor")


@pytest.fixture()
def assignee(org):
    return _make_user(org.id, "assignee@acme.test", "Assignee")


@pytest.fixture()
def default_workflow(org):
    return workflow_service.seed_default_workflow(org.id)


@pytest.fixture()
def statuses(org, default_workflow):
    """Name -> Status for the seeded default statuses."""
    return {s.name: s for s in workflow_service.list_statuses(org.id)}


@pytest.fixture()
def project(org, default_workflow):
    return project_service.create_project(org.id, "ENG", "Engineering", workflow_id=default_workflow.id)


@pytest.fixture()
def issue(org, project, actor):
    return project_service.create_issue(org.id, project.id, "First issue", reporter_id=actor.id)


@pytest.fixture()
def headers(org, actor):
    return {
        "Content-Type": "application/json",
        "X-Organization-Id": str(org.id),
        "X-User-Id": str(actor.id),
    }
