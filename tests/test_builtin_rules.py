"""Tests for app/services/builtin_rules.py.

Rules are called directly with a hand-built RuleContext; ``no_open_subtasks``
needs real rows because it queries through ``ctx.store``.
"""

from types import SimpleNamespace

import pytest

from app.models import db
from app.services import builtin_rules as rules
from app.services import project_service, workflow_service
from app.services.persistence import WorkflowStore
from app.services.rule_registry import RuleContext


def _ctx(issue, actor=None, **params):
    return RuleContext(issue=issue, actor=actor, params=params, store=WorkflowStore())


class TestConditions:
    def test_actor_is_assignee(self, issue, actor, assignee):
        issue.assignee_id = assignee.id
        assert rules.actor_is_assignee(_ctx(issue, assignee)) is True
        assert rules.actor_is_assignee(_ctx(issue, actor)) is False
        assert rules.actor_is_assignee(_ctx(issue, None)) is False

    def test_actor_is_reporter(self, issue, actor, assignee):
        assert rules.actor_is_reporter(_ctx(issue, actor)) is True
        assert rules.actor_is_reporter(_ctx(issue, assignee)) is False

    def test_actor_in_list(self, issue, actor, assignee):
        ctx = _ctx(issue, actor, user_ids=[str(actor.id)])
        assert rules.actor_in_list(ctx) is True
        assert rules.actor_in_list(_ctx(issue, assignee, user_ids=[actor.id])) is False

    def test_field_not_empty_reads_custom_fields(self, issue):
        issue.fields = {"story_points": 3, "labels": []}
        assert rules.field_not_empty(_ctx(issue, field="story_points")) is True
        assert rules.field_not_empty(_ctx(issue, field="labels")) is False
        assert rules.field_not_empty(_ctx(issue, field="missing")) is False

    def test_missing_param_raises(self, issue):
        with pytest.raises(ValueError, match="field"):
            rules.field_not_empty(_ctx(issue))


class TestValidators:
    def test_required_field(self, issue):
        assert rules.required_field(_ctx(issue, field="summary")) is None
        reason = rules.required_field(_ctx(issue, field="resolution"))
        assert "resolution" in reason

    @pytest.mark.parametrize("value, accepted", [("High", True), ("Low", False), (None, False)])
    def test_field_matches(self, issue, value, accepted):
        issue.set_field_value("priority", value)
        outcome = rules.field_matches(_ctx(issue, field="priority", values=["High", "Highest"]))
        assert (outcome is None) is accepted

    def test_no_open_subtasks(self, org, project, issue, statuses):
        ok = rules.no_open_subtasks(_ctx(issue))
        assert ok is None

        child = project_service.create_issue(org.id, project.id, "Child", parent_id=issue.id)
        reason = rules.no_open_subtasks(_ctx(issue))
        assert child.key in reason

        child.status_id = statuses["Done"].id
        db.session.commit()
        assert rules.no_open_subtasks(_ctx(issue)) is None

    def test_deleted_subtasks_are_ignored(self, org, project, issue):
        child = project_service.create_issue(org.id, project.id, "Child", parent_id=issue.id)
        project_service.delete_issue(org.id, child.id)
        assert rules.no_open_subtasks(_ctx(issue)) is None


class TestPostFunctions:
    def test_assign_to_actor(self, issue, assignee):
        rules.assign_to_actor(_ctx(issue, assignee))
        assert issue.assignee_id == assignee.id

    def test_assign_to_actor_without_actor(self, issue):
        with pytest.raises(ValueError):
            rules.assign_to_actor(_ctx(issue, None))

    def test_clear_field(self, issue):
        issue.fields = {"sprint": "S1", "team": "core"}
        rules.clear_field(_ctx(issue, field="sprint"))
        assert issue.fields == {"team": "core"}

    def test_clear_builtin_field(self, issue, assignee):
        issue.assignee_id = assignee.id
        rules.clear_field(_ctx(issue, field="assignee_id"))
        assert issue.assignee_id is None

    def test_set_resolution(self, issue):
        rules.set_resolution(_ctx(issue, resolution="Fixed"))
        assert issue.resolution == "Fixed"

    def test_rules_only_touch_the_issue(self):
        issue = SimpleNamespace(resolution=None)
        rules.set_resolution(RuleContext(issue=issue, actor=None, params={"resolution": "Won't Do"}))
        assert issue.resolution == "Won't Do"


def test_default_workflow_runs_with_builtin_rules(org, issue, actor, statuses):
    """End-to-end: builtin rules on a seeded workflow through the service."""
    wf = workflow_service.get_workflow_for_project(org.id, issue.project_id)
    start = next(t for t in wf.transitions if t.name == "Start Progress")
    start.post_functions = [{"name": "assign_to_actor", "params": {}}]
    db.session.commit()

    result = workflow_service.transition_issue(org.id, issue.id, "Start Progress", actor_id=actor.id)

    assert result.post_function_errors == []
    refreshed = project_service.get_issue(org.id, issue.id)
    assert refreshed.status_id == statuses["In Progress"].id
    assert refreshed.assignee_id == actor.id
