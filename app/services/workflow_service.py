"""
Workflow Service - status catalog, workflow administration and issue transitions.

Transaction rules:
    - ``db.session.commit()`` for admin edits happens only in this file.
    - Issue transitions commit inside ``workflow_engine.execute_transition``;
      history and audit rows ride on that same commit via ``on_commit``.

Workflow editing invariants enforced here:
    - transition endpoints must be statuses of the workflow
    - ``(from, to, name)`` is unique per workflow
    - a status cannot leave a workflow while a transition or the initial
      status still references it
    - a workflow referenced by any project cannot be deleted
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import (
    ConflictError,
    DeleteBlockedError,
    DuplicateError,
    NotFoundError,
    ValidationError,
)
from app.models import db
from app.models.audit import write_audit
from app.models.organization import User
from app.models.project import Issue, IssueHistory, Project
from app.models.workflow import (
    STATUS_CATEGORIES,
    Status,
    Transition,
    Workflow,
    WorkflowStatus,
    normalize_rules,
)
from app.services import scheme_registry, workflow_engine
from app.services.helpers.scoped_queries import get_scoped
from app.services.persistence import WorkflowStore
from app.services.transition_graph import TransitionGraph

logger = logging.getLogger(__name__)

DEFAULT_STATUSES = (
    ("To Do", "TODO"),
    ("In Progress", "IN_PROGRESS"),
    ("Done", "DONE"),
)
DEFAULT_TRANSITIONS = (
    ("Start Progress", "To Do", "In Progress"),
    ("Stop Progress", "In Progress", "To Do"),
    ("Done", "In Progress", "Done"),
    ("Reopen", "Done", "To Do"),
)


def _store(store):
    return store or WorkflowStore()


# ═══════════════════════════════════════════════════════════════
# Status catalog
# ═══════════════════════════════════════════════════════════════

def create_status(organization_id: int, name: str, category: str = "TODO") -> Status:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Status name is required", {"field": "name"})
    category = (category or "TODO").upper()
    if category not in STATUS_CATEGORIES:
        raise ValidationError(
            f"Invalid category: {category}",
            {"field": "category", "allowed": list(STATUS_CATEGORIES)},
        )
    existing = Status.query_for_organization(organization_id).filter_by(name=name).first()
    if existing:
        raise DuplicateError("Status", "name", name)

    status = Status(organization_id=organization_id, name=name, category=category)
    db.session.add(status)
    db.session.commit()
    logger.info("Created status '%s' (%s)", name, category, extra={"organization_id": organization_id})
    return status


def list_statuses(organization_id: int) -> list[Status]:
    return Status.query_for_organization(organization_id).order_by(Status.id).all()


# ═══════════════════════════════════════════════════════════════
# Workflow CRUD
# ═══════════════════════════════════════════════════════════════

def _clear_other_defaults(organization_id: int, keep_id=None) -> None:
    q = Workflow.query_for_organization(organization_id).filter_by(is_default=True)
    if keep_id is not None:
        q = q.filter(Workflow.id != keep_id)
    for wf in q.all():
        wf.is_default = False


def create_workflow(
    organization_id: int,
    name: str,
    description: str = "",
    status_ids=None,
    initial_status_id=None,
    is_default: bool = False,
    actor_id=None,
) -> Workflow:
    """Create a workflow over existing statuses of the same organization."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("Workflow name is required", {"field": "name"})

    status_ids = list(dict.fromkeys(status_ids or []))
    for status_id in status_ids:
        get_scoped(Status, status_id, organization_id=organization_id)
    if initial_status_id is not None and initial_status_id not in status_ids:
        raise ValidationError(
            "Initial status must be one of the workflow's statuses",
            {"field": "initial_status_id", "status_id": initial_status_id},
        )

    if is_default:
        _clear_other_defaults(organization_id)

    wf = Workflow(
        organization_id=organization_id,
        name=name,
        description=description or "",
        is_default=bool(is_default),
        initial_status_id=initial_status_id,
    )
    for position, status_id in enumerate(status_ids):
        wf.workflow_statuses.append(WorkflowStatus(status_id=status_id, position=position))
    db.session.add(wf)
    db.session.flush()
    write_audit(
        entity_type="workflow", entity_id=wf.id, action="create",
        organization_id=organization_id, actor_user_id=actor_id,
        diff={"name": name, "status_ids": status_ids},
    )
    db.session.commit()
    logger.info("Created workflow %s '%s'", wf.id, name, extra={"organization_id": organization_id})
    return wf


def list_workflows(organization_id: int, include_inactive: bool = True) -> list[Workflow]:
    q = Workflow.query_for_organization(organization_id)
    if not include_inactive:
        q = q.filter_by(is_active=True)
    return q.order_by(Workflow.id).all()


def get_workflow(organization_id: int, workflow_id: int, store=None) -> Workflow:
    return _store(store).load_workflow(workflow_id, organization_id)


def update_workflow(organization_id: int, workflow_id: int, data: dict) -> Workflow:
    wf = get_scoped(Workflow, workflow_id, organization_id=organization_id)
    if "name" in data:
        name = (data["name"] or "").strip()
        if not name:
            raise ValidationError("Workflow name is required", {"field": "name"})
        wf.name = name
    if "description" in data:
        wf.description = data["description"] or ""
    if "is_active" in data:
        wf.is_active = bool(data["is_active"])
    if data.get("is_default"):
        _clear_other_defaults(organization_id, keep_id=wf.id)
        wf.is_default = True
    elif "is_default" in data:
        wf.is_default = False
    db.session.commit()
    return wf


def delete_workflow(organization_id: int, workflow_id: int, actor_id=None, store=None) -> None:
    """Delete a workflow nobody uses.

    Raises:
        DeleteBlockedError: at least one project still points at it.
    """
    store = _store(store)
    wf = get_scoped(Workflow, workflow_id, organization_id=organization_id)
    in_use = store.count_projects_for_scheme("workflow_id", wf.id, organization_id)
    if in_use:
        raise DeleteBlockedError("Workflow", wf.id, in_use)
    db.session.delete(wf)
    write_audit(
        entity_type="workflow", entity_id=workflow_id, action="delete",
        organization_id=organization_id, actor_user_id=actor_id,
        diff={"name": wf.name},
    )
    db.session.commit()
    logger.info("Deleted workflow %s", workflow_id, extra={"organization_id": organization_id})


# ═══════════════════════════════════════════════════════════════
# Workflow editing
# ═══════════════════════════════════════════════════════════════

def add_workflow_status(organization_id: int, workflow_id: int, status_id: int, actor_id=None) -> Workflow:
    wf = get_scoped(Workflow, workflow_id, organization_id=organization_id)
    get_scoped(Status, status_id, organization_id=organization_id)
    if status_id in wf.status_ids:
        raise DuplicateError("WorkflowStatus", "status_id", status_id)
    position = max((ws.position for ws in wf.workflow_statuses), default=-1) + 1
    wf.workflow_statuses.append(WorkflowStatus(status_id=status_id, position=position))
    write_audit(
        entity_type="workflow", entity_id=wf.id, action="workflow.status_added",
        organization_id=organization_id, actor_user_id=actor_id,
        diff={"status_id": status_id},
    )
    db.session.commit()
    return wf


def remove_workflow_status(organization_id: int, workflow_id: int, status_id: int, actor_id=None) -> Workflow:
    wf = get_scoped(Workflow, workflow_id, organization_id=organization_id)
    membership = next((ws for ws in wf.workflow_statuses if ws.status_id == status_id), None)
    if membership is None:
        raise NotFoundError("WorkflowStatus", status_id, organization_id)
    if wf.initial_status_id == status_id:
        raise ValidationError(
            "Cannot remove the initial status; choose another initial status first",
            {"status_id": status_id},
        )
    referencing = [t.name for t in wf.transitions if status_id in (t.from_status_id, t.to_status_id)]
    if referencing:
        raise ValidationError(
            "Status is still used by transitions",
            {"status_id": status_id, "transitions": referencing},
        )
    occupied = db.session.execute(
        select(func.count(Issue.id))
        .join(Project, Project.id == Issue.project_id)
        .where(
            Project.workflow_id == wf.id,
            Issue.status_id == status_id,
            Issue.deleted_at.is_(None),
        )
    ).scalar_one()
    if occupied:
        raise ConflictError(f"{occupied} issue(s) are currently in status id={status_id}")

    wf.workflow_statuses.remove(membership)
    write_audit(
        entity_type="workflow", entity_id=wf.id, action="workflow.status_removed",
        organization_id=organization_id, actor_user_id=actor_id,
        diff={"status_id": status_id},
    )
    db.session.commit()
    return wf


def set_initial_status(organization_id: int, workflow_id: int, status_id: int) -> Workflow:
    wf = get_scoped(Workflow, workflow_id, organization_id=organization_id)
    if status_id not in wf.status_ids:
        raise ValidationError(
            "Initial status must be one of the workflow's statuses",
            {"field": "initial_status_id", "status_id": status_id},
        )
    wf.initial_status_id = status_id
    db.session.commit()
    return wf


def add_transition(
    organization_id: int,
    workflow_id: int,
    name: str,
    from_status_id: int,
    to_status_id: int,
    conditions=None,
    validators=None,
    post_functions=None,
    actor_id=None,
) -> Transition:
    """Append a transition; it lists after every existing one.

    Raises:
        ValidationError: blank name, malformed rules, or an endpoint outside
            the workflow's status set.
        DuplicateError: a transition with this name already leaves
            ``from_status_id`` (whatever its target), so the name would be
            ambiguous when an issue in that status is transitioned.
    """
    wf = get_scoped(Workflow, workflow_id, organization_id=organization_id)
    name = (name or "").strip()
    if not name:
        raise ValidationError("Transition name is required", {"field": "name"})

    outside = [s for s in (from_status_id, to_status_id) if s not in wf.status_ids]
    if outside:
        raise ValidationError(
            "Transition endpoints must belong to the workflow",
            {"status_ids": outside},
        )
    try:
        rules = {
            "conditions": normalize_rules(conditions),
            "validators": normalize_rules(validators),
            "post_functions": normalize_rules(post_functions),
        }
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc

    if any(t.from_status_id == from_status_id and t.name == name for t in wf.transitions):
        raise DuplicateError("Transition", "name", name)

    position = max((t.position for t in wf.transitions), default=-1) + 1
    transition = Transition(
        name=name,
        from_status_id=from_status_id,
        to_status_id=to_status_id,
        position=position,
        **rules,
    )
    wf.transitions.append(transition)
    try:
        db.session.flush()
    except IntegrityError as exc:
        db.session.rollback()
        raise DuplicateError("Transition", "name", name) from exc
    write_audit(
        entity_type="workflow", entity_id=wf.id, action="workflow.transition_added",
        organization_id=organization_id, actor_user_id=actor_id,
        diff={"transition_id": transition.id, "name": name,
              "from_status_id": from_status_id, "to_status_id": to_status_id},
    )
    db.session.commit()
    return transition


def remove_transition(organization_id: int, workflow_id: int, transition_id: int, actor_id=None) -> None:
    wf = get_scoped(Workflow, workflow_id, organization_id=organization_id)
    transition = get_scoped(Transition, transition_id, workflow_id=wf.id)
    wf.transitions.remove(transition)
    write_audit(
        entity_type="workflow", entity_id=wf.id, action="workflow.transition_removed",
        organization_id=organization_id, actor_user_id=actor_id,
        diff={"transition_id": transition_id, "name": transition.name},
    )
    db.session.commit()


def validate_workflow(organization_id: int, workflow_id: int, store=None) -> list:
    wf = _store(store).load_workflow(workflow_id, organization_id)
    return TransitionGraph.from_workflow(wf).validate_graph()


def assign_workflow(organization_id: int, workflow_id, project_id: int, actor_id=None, store=None) -> Project:
    store = _store(store)
    project = scheme_registry.assign_scheme_to_project(
        store, "workflow", workflow_id, project_id, organization_id,
    )
    write_audit(
        entity_type="project", entity_id=project.id, action="scheme.assigned",
        organization_id=organization_id, project_id=project.id, actor_user_id=actor_id,
        diff={"scheme_type": "workflow", "scheme_id": workflow_id},
    )
    store.commit()
    return project


# ═══════════════════════════════════════════════════════════════
# Issue transitions
# ═══════════════════════════════════════════════════════════════

def get_workflow_for_project(organization_id: int, project_id: int, store=None) -> Workflow:
    """The project's active workflow, else the organization's default.

    Raises:
        NotFoundError: neither exists.
    """
    store = _store(store)
    project = store.load_project(project_id, organization_id)
    if project.workflow_id is not None:
        wf = store.load_workflow(project.workflow_id, organization_id)
        if wf.is_active:
            return wf
    wf = store.load_default_workflow(organization_id)
    if wf is None:
        raise NotFoundError("Workflow", None, organization_id)
    return wf


def get_available_transitions(
    organization_id: int,
    issue_id: int,
    actor_id=None,
    check_conditions: bool = False,
    store=None,
) -> list[Transition]:
    store = _store(store)
    issue = store.load_issue(issue_id, organization_id)
    wf = get_workflow_for_project(organization_id, issue.project_id, store=store)
    actor = get_scoped(User, actor_id, organization_id=organization_id) if actor_id else None
    return workflow_engine.list_available_transitions(
        issue, wf, actor, store=store, check_conditions=check_conditions,
    )


def _record_transition(organization_id: int, actor_id):
    def on_commit(issue, transition, from_status_id):
        db.session.add(IssueHistory(
            organization_id=organization_id,
            issue_id=issue.id,
            user_id=actor_id,
            field="status_id",
            old_value=str(from_status_id),
            new_value=str(transition.to_status_id),
        ))
        write_audit(
            entity_type="issue", entity_id=issue.id, action="issue.transitioned",
            organization_id=organization_id, project_id=issue.project_id, actor_user_id=actor_id,
            diff={
                "transition_id": transition.id,
                "transition_name": transition.name,
                "from_status_id": from_status_id,
                "to_status_id": transition.to_status_id,
            },
        )
    return on_commit


def transition_issue(
    organization_id: int,
    issue_id: int,
    transition_name: str,
    actor_id=None,
    rule_context=None,
    store=None,
    registry=None,
):
    """Load the issue and its workflow, then run the engine pipeline.

    Returns:
        ``workflow_engine.TransitionResult``.
    """
    store = _store(store)
    issue = store.load_issue(issue_id, organization_id)
    wf = get_workflow_for_project(organization_id, issue.project_id, store=store)
    actor = get_scoped(User, actor_id, organization_id=organization_id) if actor_id else None
    return workflow_engine.execute_transition(
        issue, wf, transition_name, actor, rule_context,
        store=store,
        registry=registry,
        on_commit=_record_transition(organization_id, actor_id),
    )


def get_issue_history(organization_id: int, issue_id: int, store=None) -> list[IssueHistory]:
    _store(store).load_issue(issue_id, organization_id)
    return (
        IssueHistory.query_for_organization(organization_id)
        .filter_by(issue_id=issue_id)
        .order_by(IssueHistory.id)
        .all()
    )


# ═══════════════════════════════════════════════════════════════
# Seeding
# ═══════════════════════════════════════════════════════════════

def seed_default_workflow(organization_id: int) -> Workflow:
    """Create To Do / In Progress / Done and a default workflow. Idempotent."""
    existing = (
        Workflow.query_for_organization(organization_id)
        .filter_by(is_default=True)
        .order_by(Workflow.id)
        .first()
    )
    if existing:
        return existing

    statuses = {}
    for name, category in DEFAULT_STATUSES:
        status = Status.query_for_organization(organization_id).filter_by(name=name).first()
        if status is None:
            status = Status(organization_id=organization_id, name=name, category=category)
            db.session.add(status)
        statuses[name] = status
    db.session.flush()

    wf = Workflow(
        organization_id=organization_id,
        name="Default Workflow",
        description="To Do -> In Progress -> Done",
        is_default=True,
        initial_status_id=statuses["To Do"].id,
    )
    for position, (name, _) in enumerate(DEFAULT_STATUSES):
        wf.workflow_statuses.append(WorkflowStatus(status_id=statuses[name].id, position=position))
    for position, (name, source, target) in enumerate(DEFAULT_TRANSITIONS):
        wf.transitions.append(Transition(
            name=name,
            from_status_id=statuses[source].id,
            to_status_id=statuses[target].id,
            position=position,
            conditions=[],
            validators=[],
            post_functions=[],
        ))
    db.session.add(wf)
    db.session.commit()
    logger.info("Seeded default workflow %s", wf.id, extra={"organization_id": organization_id})
    return wf
