"""
Project Service - organizations, projects and issues.

Projects are the composition root: the only rows that reference a workflow
or a scheme. Issues are created in their workflow's initial status and only
ever change status through ``workflow_service.transition_issue``.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select

from app.core.exceptions import DuplicateError, ValidationError
from app.models import db
from app.models.audit import write_audit
from app.models.organization import Organization, User
from app.models.project import Issue, Project
from app.models.workflow import Workflow
from app.services.helpers.scoped_queries import get_scoped
from app.services.persistence import WorkflowStore
from app.services.workflow_service import get_workflow_for_project

logger = logging.getLogger(__name__)

# Fields an issue update may touch; status is deliberately absent
_ISSUE_EDITABLE = ("summary", "assignee_id", "resolution", "fields")


def create_organization(name: str, slug: str) -> Organization:
    name = (name or "").strip()
    slug = (slug or "").strip().lower()
    if not name or not slug:
        raise ValidationError("name and slug are required")
    if Organization.query.filter_by(slug=slug).first():
        raise DuplicateError("Organization", "slug", slug)
    org = Organization(name=name, slug=slug)
    db.session.add(org)
    db.session.commit()
    return org


def create_user(organization_id: int, name: str, email: str) -> User:
    email = (email or "").strip().lower()
    if not name or not email:
        raise ValidationError("name and email are required")
    if User.query_for_organization(organization_id).filter_by(email=email).first():
        raise DuplicateError("User", "email", email)
    user = User(organization_id=organization_id, name=name.strip(), email=email)
    db.session.add(user)
    db.session.commit()
    return user


# ═══════════════════════════════════════════════════════════════
# Projects
# ═══════════════════════════════════════════════════════════════

def create_project(
    organization_id: int,
    key: str,
    name: str,
    description: str = "",
    workflow_id=None,
    actor_id=None,
) -> Project:
    key = (key or "").strip().upper()
    if not key or not (name or "").strip():
        raise ValidationError("key and name are required")
    if Project.query_for_organization(organization_id).filter_by(key=key).first():
        raise DuplicateError("Project", "key", key)
    if workflow_id is not None:
        get_scoped(Workflow, workflow_id, organization_id=organization_id)

    project = Project(
        organization_id=organization_id,
        key=key,
        name=name.strip(),
        description=description or "",
        workflow_id=workflow_id,
    )
    db.session.add(project)
    db.session.flush()
    write_audit(
        entity_type="project", entity_id=project.id, action="create",
        organization_id=organization_id, project_id=project.id, actor_user_id=actor_id,
        diff={"key": key, "workflow_id": workflow_id},
    )
    db.session.commit()
    logger.info("Created project %s", key, extra={"organization_id": organization_id})
    return project


def project_query(organization_id: int):
    return Project.query_for_organization(organization_id).order_by(Project.id)


def get_project(organization_id: int, project_id: int) -> Project:
    return get_scoped(Project, project_id, organization_id=organization_id)


# ═══════════════════════════════════════════════════════════════
# Issues
# ═══════════════════════════════════════════════════════════════

def _next_issue_key(project: Project) -> str:
    count = db.session.execute(
        select(func.count(Issue.id)).where(Issue.project_id == project.id)
    ).scalar_one()
    return f"{project.key}-{count + 1}"


def create_issue(
    organization_id: int,
    project_id: int,
    summary: str,
    reporter_id=None,
    assignee_id=None,
    parent_id=None,
    fields=None,
) -> Issue:
    """Create an issue in the initial status of the project's workflow."""
    summary = (summary or "").strip()
    if not summary:
        raise ValidationError("summary is required", {"field": "summary"})

    store = WorkflowStore()
    project = store.load_project(project_id, organization_id)
    wf = get_workflow_for_project(organization_id, project.id, store=store)
    if wf.initial_status_id is None:
        raise ValidationError(
            f"Workflow '{wf.name}' has no initial status",
            {"workflow_id": wf.id},
        )
    for user_id in (reporter_id, assignee_id):
        if user_id is not None:
            get_scoped(User, user_id, organization_id=organization_id)
    if parent_id is not None:
        store.load_issue(parent_id, organization_id)

    issue = Issue(
        organization_id=organization_id,
        project_id=project.id,
        key=_next_issue_key(project),
        summary=summary,
        status_id=wf.initial_status_id,
        reporter_id=reporter_id,
        assignee_id=assignee_id,
        parent_id=parent_id,
        fields=dict(fields or {}),
    )
    db.session.add(issue)
    db.session.commit()
    logger.info("Created issue %s", issue.key, extra={"organization_id": organization_id, "issue_id": issue.id})
    return issue


def get_issue(organization_id: int, issue_id: int) -> Issue:
    return WorkflowStore().load_issue(issue_id, organization_id)


def update_issue(organization_id: int, issue_id: int, data: dict) -> Issue:
    """Edit issue data. Status changes must go through a transition."""
    if "status_id" in data:
        raise ValidationError(
            "status_id cannot be set directly; execute a transition instead",
            {"field": "status_id"},
        )
    issue = get_issue(organization_id, issue_id)
    for field in _ISSUE_EDITABLE:
        if field not in data:
            continue
        value = data[field]
        if field == "summary" and not (value or "").strip():
            raise ValidationError("summary is required", {"field": "summary"})
        if field == "assignee_id" and value is not None:
            get_scoped(User, value, organization_id=organization_id)
        if field == "fields":
            value = {**(issue.fields or {}), **(value or {})}
        setattr(issue, field, value)
    db.session.commit()
    return issue


def delete_issue(organization_id: int, issue_id: int) -> None:
    issue = get_issue(organization_id, issue_id)
    issue.deleted_at = datetime.now(timezone.utc)
    db.session.commit()
