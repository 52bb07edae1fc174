"""Tests for app/services/workflow_service.py.

Coverage:
  1. Status catalog: duplicates and unknown categories rejected
  2. Workflow CRUD: default flag is exclusive; delete blocked while in use
  3. Editing: transition endpoints must belong to the workflow, duplicates
     rejected, positions appended; status removal guards
  4. validate_workflow surfaces graph problems
  5. get_workflow_for_project falls back to the organization default
  6. transition_issue writes IssueHistory + AuditLog with the status commit
  7. Organization isolation on every lookup
  8. seed_default_workflow is idempotent
"""

import pytest

from app.core.exceptions import (
    ConditionFailedError,
    ConflictError,
    DeleteBlockedError,
    DuplicateError,
    NotFoundError,
    ValidationError,
)
from app.models import db
from app.models.audit import AuditLog
from app.models.project import IssueHistory
from app.models.workflow import Workflow
from app.services import project_service
from app.services import workflow_service as wfs
from app.services.transition_graph import MISSING_INITIAL_STATUS, ORPHAN_STATUS


# ── Helpers ─────────────────────────────────────────────────────────────────


def _bare_workflow(org_id, *names, initial=True):
    status_ids = [wfs.create_status(org_id, n).id for n in names]
    return wfs.create_workflow(
        org_id, "Bare", status_ids=status_ids,
        initial_status_id=status_ids[0] if initial else None,
    ), status_ids


# ── Status catalog ───────────────────────────────────────────────────────────


class TestStatusCatalog:
    def test_create_and_list(self, org):
        wfs.create_status(org.id, "Backlog", "todo")
        wfs.create_status(org.id, "Shipped", "DONE")
        listed = [(s.name, s.category) for s in wfs.list_statuses(org.id)]
        assert listed == [("Backlog", "TODO"), ("Shipped", "DONE")]

    def test_duplicate_name_rejected(self, org):
        wfs.create_status(org.id, "Backlog")
        with pytest.raises(DuplicateError):
            wfs.create_status(org.id, "Backlog")

    def test_unknown_category_rejected(self, org):
        with pytest.raises(ValidationError):
            wfs.create_status(org.id, "Limbo", "WAITING")

    def test_same_name_in_other_organization(self, org, other_org):
        wfs.create_status(org.id, "Backlog")
        assert wfs.create_status(other_org.id, "Backlog").organization_id == other_org.id


# ── Workflow CRUD ────────────────────────────────────────────────────────────


class TestWorkflowCrud:
    def test_initial_status_must_belong(self, org):
        a = wfs.create_status(org.id, "A")
        b = wfs.create_status(org.id, "B")
        with pytest.raises(ValidationError):
            wfs.create_workflow(org.id, "W", status_ids=[a.id], initial_status_id=b.id)

    def test_foreign_status_is_not_found(self, org, other_org):
        foreign = wfs.create_status(other_org.id, "Foreign")
        with pytest.raises(NotFoundError):
            wfs.create_workflow(org.id, "W", status_ids=[foreign.id])

    def test_default_flag_is_exclusive(self, org, default_workflow):
        wf, _ = _bare_workflow(org.id, "A")
        wfs.update_workflow(org.id, wf.id, {"is_default": True})
        db.session.expire_all()
        assert db.session.get(Workflow, default_workflow.id).is_default is False
        assert db.session.get(Workflow, wf.id).is_default is True

    def test_delete_blocked_while_in_use(self, org, project, default_workflow):
        with pytest.raises(DeleteBlockedError) as exc_info:
            wfs.delete_workflow(org.id, default_workflow.id)
        assert exc_info.value.in_use_by_project_count == 1

    def test_delete_unused(self, org):
        wf, _ = _bare_workflow(org.id, "A")
        wfs.delete_workflow(org.id, wf.id)
        assert db.session.get(Workflow, wf.id) is None
        assert AuditLog.query.filter_by(entity_type="workflow", action="delete").count() == 1

    def test_get_workflow_is_organization_scoped(self, org, other_org, default_workflow):
        with pytest.raises(NotFoundError):
            wfs.get_workflow(other_org.id, default_workflow.id)


# ── Editing ──────────────────────────────────────────────────────────────────


class TestTransitionEditing:
    def test_add_transition_appends_position(self, org, default_workflow, statuses):
        t = wfs.add_transition(
            org.id, default_workflow.id, "Close", statuses["To Do"].id, statuses["Done"].id,
            conditions=["actor_is_assignee"],
        )
        assert t.position == 4
        assert t.to_dict()["conditions"] == [{"name": "actor_is_assignee", "params": {}}]

    def test_endpoint_outside_workflow(self, org, default_workflow, statuses):
        stray = wfs.create_status(org.id, "Stray")
        with pytest.raises(ValidationError) as exc_info:
            wfs.add_transition(org.id, default_workflow.id, "Go", statuses["To Do"].id, stray.id)
        assert exc_info.value.details["status_ids"] == [stray.id]

    def test_duplicate_transition(self, org, default_workflow, statuses):
        with pytest.raises(DuplicateError):
            wfs.add_transition(
                org.id, default_workflow.id, "Start Progress",
                statuses["To Do"].id, statuses["In Progress"].id,
            )

    def test_same_name_from_same_status_rejected(self, org, default_workflow, statuses):
        with pytest.raises(DuplicateError):
            wfs.add_transition(
                org.id, default_workflow.id, "Start Progress",
                statuses["To Do"].id, statuses["Done"].id,
            )
        names = [
            t.name for t in db.session.get(Workflow, default_workflow.id).transitions
            if t.from_status_id == statuses["To Do"].id
        ]
        assert names == ["Start Progress"]

    def test_same_name_on_different_edge_allowed(self, org, default_workflow, statuses):
        t = wfs.add_transition(
            org.id, default_workflow.id, "Done", statuses["To Do"].id, statuses["Done"].id,
        )
        assert t.id is not None

    def test_malformed_rules(self, org, default_workflow, statuses):
        with pytest.raises(ValidationError):
            wfs.add_transition(
                org.id, default_workflow.id, "Close", statuses["To Do"].id, statuses["Done"].id,
                validators=[42],
            )

    def test_remove_transition(self, org, default_workflow):
        reopen = next(t for t in default_workflow.transitions if t.name == "Reopen")
        wfs.remove_transition(org.id, default_workflow.id, reopen.id)
        names = [t.name for t in wfs.get_workflow(org.id, default_workflow.id).transitions]
        assert names == ["Start Progress", "Stop Progress", "Done"]


class TestStatusEditing:
    def test_cannot_remove_initial_status(self, org, default_workflow, statuses):
        with pytest.raises(ValidationError):
            wfs.remove_workflow_status(org.id, default_workflow.id, statuses["To Do"].id)

    def test_cannot_remove_status_used_by_transitions(self, org, default_workflow, statuses):
        with pytest.raises(ValidationError) as exc_info:
            wfs.remove_workflow_status(org.id, default_workflow.id, statuses["Done"].id)
        assert "Done" in exc_info.value.details["transitions"]

    def test_cannot_remove_occupied_status(self, org, project, issue):
        wf, (a, b) = _bare_workflow(org.id, "A", "B")
        wfs.assign_workflow(org.id, wf.id, project.id)
        issue.status_id = b
        db.session.commit()
        with pytest.raises(ConflictError):
            wfs.remove_workflow_status(org.id, wf.id, b)

    def test_add_and_remove_unused_status(self, org, default_workflow):
        extra = wfs.create_status(org.id, "Blocked")
        wfs.add_workflow_status(org.id, default_workflow.id, extra.id)
        with pytest.raises(DuplicateError):
            wfs.add_workflow_status(org.id, default_workflow.id, extra.id)
        wf = wfs.remove_workflow_status(org.id, default_workflow.id, extra.id)
        assert extra.id not in wf.status_ids

    def test_set_initial_status(self, org, default_workflow, statuses):
        wf = wfs.set_initial_status(org.id, default_workflow.id, statuses["In Progress"].id)
        assert wf.initial_status_id == statuses["In Progress"].id
        stray = wfs.create_status(org.id, "Stray")
        with pytest.raises(ValidationError):
            wfs.set_initial_status(org.id, default_workflow.id, stray.id)


class TestValidateWorkflow:
    def test_seeded_workflow_is_valid(self, org, default_workflow):
        assert wfs.validate_workflow(org.id, default_workflow.id) == []

    def test_reports_orphans_and_missing_initial(self, org):
        wf, (a, b) = _bare_workflow(org.id, "A", "B")
        assert [e.code for e in wfs.validate_workflow(org.id, wf.id)] == [ORPHAN_STATUS]
        no_initial, _ = _bare_workflow(org.id, "C", initial=False)
        assert [e.code for e in wfs.validate_workflow(org.id, no_initial.id)] == [MISSING_INITIAL_STATUS]


# ── Project workflow resolution ──────────────────────────────────────────────


class TestWorkflowForProject:
    def test_falls_back_to_default(self, org, default_workflow):
        project = project_service.create_project(org.id, "OPS", "Operations")
        assert wfs.get_workflow_for_project(org.id, project.id).id == default_workflow.id

    def test_inactive_workflow_falls_back(self, org, project, default_workflow):
        wf, _ = _bare_workflow(org.id, "A")
        wfs.assign_workflow(org.id, wf.id, project.id)
        assert wfs.get_workflow_for_project(org.id, project.id).id == wf.id
        wfs.update_workflow(org.id, wf.id, {"is_active": False})
        assert wfs.get_workflow_for_project(org.id, project.id).id == default_workflow.id

    def test_no_workflow_at_all(self, org):
        project = project_service.create_project(org.id, "OPS", "Operations")
        with pytest.raises(NotFoundError):
            wfs.get_workflow_for_project(org.id, project.id)


# ── Issue transitions ────────────────────────────────────────────────────────


class TestTransitionIssue:
    def test_records_history_and_audit(self, org, issue, actor, statuses):
        result = wfs.transition_issue(org.id, issue.id, "Start Progress", actor_id=actor.id)

        assert result.to_status_id == statuses["In Progress"].id
        history = wfs.get_issue_history(org.id, issue.id)
        assert [(h.field, h.old_value, h.new_value, h.user_id) for h in history] == [
            ("status_id", str(statuses["To Do"].id), str(statuses["In Progress"].id), actor.id),
        ]
        audit = AuditLog.query.filter_by(action="issue.transitioned").one()
        assert audit.diff["transition_name"] == "Start Progress"
        assert audit.project_id == issue.project_id

    def test_failed_transition_records_nothing(self, org, issue, actor, default_workflow, statuses):
        start = next(t for t in default_workflow.transitions if t.name == "Start Progress")
        start.conditions = [{"name": "actor_is_assignee", "params": {}}]
        db.session.commit()

        with pytest.raises(ConditionFailedError):
            wfs.transition_issue(org.id, issue.id, "Start Progress", actor_id=actor.id)

        assert IssueHistory.query.count() == 0
        assert AuditLog.query.filter_by(action="issue.transitioned").count() == 0
        assert project_service.get_issue(org.id, issue.id).status_id == statuses["To Do"].id

    def test_available_transitions(self, org, issue):
        names = [t.name for t in wfs.get_available_transitions(org.id, issue.id)]
        assert names == ["Start Progress"]

    def test_other_organization_cannot_transition(self, org, other_org, issue):
        with pytest.raises(NotFoundError):
            wfs.transition_issue(other_org.id, issue.id, "Start Progress")

    def test_deleted_issue_is_not_found(self, org, issue):
        project_service.delete_issue(org.id, issue.id)
        with pytest.raises(NotFoundError):
            wfs.transition_issue(org.id, issue.id, "Start Progress")

    def test_round_trip_through_default_workflow(self, org, issue, statuses):
        for name in ("Start Progress", "Done", "Reopen"):
            wfs.transition_issue(org.id, issue.id, name)
        final = project_service.get_issue(org.id, issue.id)
        assert final.status_id == statuses["To Do"].id
        assert final.version == 4
        assert len(wfs.get_issue_history(org.id, issue.id)) == 3


# ── Seeding ──────────────────────────────────────────────────────────────────


def test_seed_default_workflow_is_idempotent(org):
    first = wfs.seed_default_workflow(org.id)
    second = wfs.seed_default_workflow(org.id)
    assert first.id == second.id
    assert [t.name for t in first.transitions] == ["Start Progress", "Stop Progress", "Done", "Reopen"]
    assert len(wfs.list_statuses(org.id)) == 3
