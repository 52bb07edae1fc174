from app.core.exceptions import DuplicateError, NotFoundError, ValidationError
from app.models.audit import AuditLog
from app.models.project import Issue
from app.services import project_service, workflow_service

import pytest


def test_create_organization_normalises_slug():
    org = project_service.create_organization("Initech", "  INITECH ")
    assert org.slug == "initech"
    with pytest.raises(DuplicateError):
        project_service.create_organization("Initech again", "initech")


def test_create_user_duplicate_email_is_per_organization(org, other_org):
    project_service.create_user(org.id, "Ann", "Ann@Example.test")
    with pytest.raises(DuplicateError):
        project_service.create_user(org.id, "Ann 2", "ann@example.test")
    # Same address is fine in another organization
    assert project_service.create_user(other_org.id, "Ann", "ann@example.test").id


def test_create_project_uppercases_key_and_audits(org, actor):
    project = project_service.create_project(org.id, "ops", "Operations", actor_id=actor.id)
    assert project.key == "OPS"
    log = AuditLog.query.filter_by(entity_type="project", action="create").one()
    assert log.entity_id == str(project.id)
    assert log.actor_user_id == actor.id


def test_create_project_duplicate_key(org, other_org):
    project_service.create_project(org.id, "ENG", "Engineering")
    with pytest.raises(DuplicateError):
        project_service.create_project(org.id, "eng", "Engineering 2")
    assert project_service.create_project(other_org.id, "ENG", "Engineering").key == "ENG"


def test_create_project_rejects_foreign_workflow(org, other_org):
    foreign = workflow_service.seed_default_workflow(other_org.id)
    with pytest.raises(NotFoundError):
        project_service.create_project(org.id, "ENG", "Engineering", workflow_id=foreign.id)


def test_create_project_requires_key_and_name(org):
    with pytest.raises(ValidationError):
        project_service.create_project(org.id, "", "Engineering")
    with pytest.raises(ValidationError):
        project_service.create_project(org.id, "ENG", "  ")


def test_issue_keys_are_sequential_per_project(org, project):
    first = project_service.create_issue(org.id, project.id, "One")
    second = project_service.create_issue(org.id, project.id, "Two")
    assert (first.key, second.key) == ("ENG-1", "ENG-2")

    other = project_service.create_project(org.id, "OPS", "Operations")
    assert project_service.create_issue(org.id, other.id, "Three").key == "OPS-1"


def test_issue_keys_skip_soft_deleted(org, project):
    first = project_service.create_issue(org.id, project.id, "One")
    project_service.delete_issue(org.id, first.id)
    assert project_service.create_issue(org.id, project.id, "Two").key == "ENG-2"


def test_create_issue_starts_in_initial_status(org, project, statuses, actor):
    issue = project_service.create_issue(org.id, project.id, "One", reporter_id=actor.id)
    assert issue.status_id == statuses["To Do"].id
    assert issue.version == 1


def test_create_issue_validation(org, project, other_org):
    with pytest.raises(ValidationError):
        project_service.create_issue(org.id, project.id, "  ")
    stranger = project_service.create_user(other_org.id, "Eve", "eve@globex.test")
    with pytest.raises(NotFoundError):
        project_service.create_issue(org.id, project.id, "One", assignee_id=stranger.id)
    with pytest.raises(NotFoundError):
        project_service.create_issue(org.id, project.id, "One", parent_id=987654)


def test_create_issue_without_any_workflow(org):
    project = project_service.create_project(org.id, "ENG", "Engineering")
    with pytest.raises(NotFoundError):
        project_service.create_issue(org.id, project.id, "One")


def test_update_issue_rejects_status_change(org, issue, statuses):
    with pytest.raises(ValidationError):
        project_service.update_issue(org.id, issue.id, {"status_id": statuses["Done"].id})
    assert project_service.get_issue(org.id, issue.id).status_id == statuses["To Do"].id


def test_update_issue_merges_fields(org, issue, assignee):
    project_service.update_issue(org.id, issue.id, {"fields": {"points": 3}})
    updated = project_service.update_issue(
        org.id, issue.id, {"fields": {"team": "core"}, "assignee_id": assignee.id},
    )
    assert updated.fields == {"points": 3, "team": "core"}
    assert updated.assignee_id == assignee.id


def test_delete_issue_is_soft(org, issue):
    project_service.delete_issue(org.id, issue.id)
    with pytest.raises(NotFoundError):
        project_service.get_issue(org.id, issue.id)
    assert Issue.query.filter_by(id=issue.id).one().deleted_at is not None
