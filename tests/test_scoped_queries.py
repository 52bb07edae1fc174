"""
Tests for app/services/helpers/scoped_queries.py

These tests are security-critical: they verify the organization isolation
helper behaves correctly under adversarial conditions.

Scenarios covered:
  1. ValueError when called with no scope parameter at all
  2. ValueError when the provided scope field does not exist on the model
  3. NotFoundError when PK is correct but scope (organization) does not match
  4. Correct entity returned when PK + scope both match
  5. get_scoped_or_none returns None instead of raising NotFoundError
  6. Child rows (transitions) are scoped by their parent workflow

Test isolation strategy:
  Relies on the autouse `session` fixture from conftest.py which rolls back
  and recreates tables after every test. Each test creates its own data.
"""

import pytest

from app.core.exceptions import NotFoundError
from app.models.workflow import Status, Transition, Workflow
from app.services import workflow_service
from app.services.helpers.scoped_queries import get_scoped, get_scoped_or_none


# ── 1. ValueError - no scope provided ────────────────────────────────────────


class TestGetScopedRequiresAtLeastOneScope:
    """get_scoped must refuse to execute when no scope argument is given."""

    def test_without_scope_raises_value_error(self):
        with pytest.raises(ValueError, match="requires at least one scope filter"):
            get_scoped(Workflow, 1)

    def test_all_scopes_none_is_equivalent_to_no_scope(self):
        with pytest.raises(ValueError, match="Workflow"):
            get_scoped(Workflow, 1, organization_id=None, workflow_id=None)


# ── 2. ValueError - scope field absent from model ────────────────────────────


class TestGetScopedRejectsInvalidScopeField:
    """Silently ignoring an inapplicable scope would produce an unscoped query."""

    def test_scope_field_not_on_model(self):
        with pytest.raises(ValueError, match="workflow_id"):
            get_scoped(Status, 1, workflow_id=99)

    def test_partial_scope_is_refused(self):
        with pytest.raises(ValueError, match="project_id"):
            get_scoped(Status, 1, organization_id=1, project_id=2)


# ── 3. NotFoundError - wrong scope (cross-organization access) ───────────────


class TestGetScopedWrongScopeRaisesNotFound:
    """Callers cannot distinguish 'does not exist' from 'belongs to another org'."""

    def test_wrong_organization(self, org, other_org):
        status = workflow_service.create_status(org.id, "Backlog")
        with pytest.raises(NotFoundError) as exc_info:
            get_scoped(Status, status.id, organization_id=other_org.id)
        assert exc_info.value.resource == "Status"

    def test_nonexistent_pk(self, org):
        with pytest.raises(NotFoundError):
            get_scoped(Status, 999_999, organization_id=org.id)


# ── 4. Happy path ────────────────────────────────────────────────────────────


class TestGetScopedCorrectScopeReturnsEntity:
    def test_returns_entity(self, org):
        first = workflow_service.create_status(org.id, "Backlog")
        second = workflow_service.create_status(org.id, "Doing")
        result = get_scoped(Status, second.id, organization_id=org.id)
        assert result.id == second.id
        assert result.id != first.id
        assert result.name == "Doing"


# ── 5. get_scoped_or_none ────────────────────────────────────────────────────


class TestGetScopedOrNone:
    def test_returns_none_for_foreign_row(self, org, other_org):
        status = workflow_service.create_status(org.id, "Backlog")
        assert get_scoped_or_none(Status, status.id, organization_id=other_org.id) is None

    def test_still_requires_scope(self):
        with pytest.raises(ValueError):
            get_scoped_or_none(Status, 1)


# ── 6. Parent-scoped children ────────────────────────────────────────────────


def test_transition_scoped_by_workflow(org, default_workflow):
    other = workflow_service.create_workflow(org.id, "Other")
    transition = default_workflow.transitions[0]
    assert get_scoped(Transition, transition.id, workflow_id=default_workflow.id).name == "Start Progress"
    with pytest.raises(NotFoundError):
        get_scoped(Transition, transition.id, workflow_id=other.id)
