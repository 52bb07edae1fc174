"""Tests for app/services/scheme_service.py (scheme CRUD + sharing, committed)."""

import pytest

from app.core.exceptions import DeleteBlockedError, NotFoundError, ValidationError
from app.models import db
from app.models.audit import AuditLog
from app.models.scheme import IssueSecurityScheme, PermissionGrant
from app.services import project_service
from app.services import scheme_service as ss


def _security_scheme(org_id, **kwargs):
    return ss.create_scheme(
        org_id, "issue_security_scheme", "Confidential",
        entries=[
            {"name": "Internal", "holder_type": "group", "holder_id": "staff"},
            {"name": "Restricted", "holder_type": "user", "holder_id": "42"},
        ],
        **kwargs,
    )


class TestCreate:
    def test_entries_get_positions(self, org):
        scheme = _security_scheme(org.id)
        assert [(e.name, e.position) for e in scheme.entries] == [("Internal", 0), ("Restricted", 1)]

    @pytest.mark.parametrize("entry", [
        {"permission_key": "fly_to_moon", "holder_type": "anyone"},
        {"permission_key": "browse_project", "holder_type": "robot"},
        {"holder_type": "anyone"},
    ])
    def test_invalid_permission_entries(self, org, entry):
        with pytest.raises(ValidationError):
            ss.create_scheme(org.id, "permission_scheme", "Bad", entries=[entry])

    def test_invalid_notification_channel(self, org):
        with pytest.raises(ValidationError):
            ss.create_scheme(
                org.id, "notification_scheme", "Bad",
                entries=[{"event": "issue_created", "recipient_type": "reporter", "channels": ["pager"]}],
            )

    def test_workflow_is_not_an_entry_scheme(self, org):
        with pytest.raises(ValidationError):
            ss.create_scheme(org.id, "workflow", "Nope")

    def test_create_is_audited(self, org, actor):
        scheme = _security_scheme(org.id, actor_id=actor.id)
        log = AuditLog.query.filter_by(entity_type="issue_security_scheme", action="create").one()
        assert log.entity_id == str(scheme.id)
        assert log.actor_user_id == actor.id
        assert log.diff["entries"] == 2


class TestUpdateAndEntries:
    def test_update(self, org):
        scheme = _security_scheme(org.id)
        ss.update_scheme(org.id, "issue_security_scheme", scheme.id, {"name": "Secret", "is_default": True})
        assert ss.get_scheme(org.id, "issue_security_scheme", scheme.id).name == "Secret"
        with pytest.raises(ValidationError):
            ss.update_scheme(org.id, "issue_security_scheme", scheme.id, {"name": ""})

    def test_add_and_remove_entry(self, org):
        scheme = ss.create_scheme(org.id, "permission_scheme", "Perms")
        entry = ss.add_entry(org.id, "permission_scheme", scheme.id,
                             {"permission_key": "assign_issues", "holder_type": "assignee"})
        assert entry.position == 0
        ss.remove_entry(org.id, "permission_scheme", scheme.id, entry.id)
        assert db.session.get(PermissionGrant, entry.id) is None
        with pytest.raises(NotFoundError):
            ss.remove_entry(org.id, "permission_scheme", scheme.id, entry.id)

    def test_list_is_organization_scoped(self, org, other_org):
        _security_scheme(org.id)
        assert ss.list_schemes(other_org.id, "issue_security_scheme") == []
        assert len(ss.list_schemes(org.id, "issue_security_scheme")) == 1


class TestDelete:
    def test_blocked_while_assigned(self, org):
        scheme = _security_scheme(org.id)
        project = project_service.create_project(org.id, "ENG", "Engineering")
        ss.assign_scheme(org.id, "issue_security_scheme", scheme.id, project.id)
        with pytest.raises(DeleteBlockedError) as exc_info:
            ss.delete_scheme(org.id, "issue_security_scheme", scheme.id)
        assert exc_info.value.to_dict()["in_use_by_project_count"] == 1

    def test_delete_cascades_entries(self, org):
        scheme = _security_scheme(org.id)
        ss.delete_scheme(org.id, "issue_security_scheme", scheme.id)
        assert IssueSecurityScheme.query.count() == 0
        assert db.session.execute(db.text("SELECT COUNT(*) FROM issue_security_levels")).scalar() == 0


class TestSharingOperations:
    def test_clone_is_audited_and_unbound(self, org):
        scheme = _security_scheme(org.id)
        clone = ss.clone_scheme(org.id, "issue_security_scheme", scheme.id, "Confidential v2")
        assert clone.parent_id == scheme.id
        assert ss.project_count(org.id, "issue_security_scheme", clone.id) == 0
        log = AuditLog.query.filter_by(action="scheme.cloned").one()
        assert log.diff["source_id"] == scheme.id

    def test_fork_uses_configured_suffix(self, app, org):
        scheme = _security_scheme(org.id)
        project = project_service.create_project(org.id, "ENG", "Engineering")
        ss.assign_scheme(org.id, "issue_security_scheme", scheme.id, project.id)

        app.config["WORKFLOW_FORK_SUFFIX"] = " [ENG]"
        try:
            fork = ss.fork_scheme(org.id, "issue_security_scheme", scheme.id, project.id)
        finally:
            app.config["WORKFLOW_FORK_SUFFIX"] = " (Custom)"

        assert fork.name == "Confidential [ENG]"
        assert project_service.get_project(org.id, project.id).issue_security_scheme_id == fork.id
        assert ss.sharing_status(org.id, "issue_security_scheme", scheme.id).project_count == 0

    def test_fork_failure_rolls_back(self, org):
        scheme = _security_scheme(org.id)
        with pytest.raises(NotFoundError):
            ss.fork_scheme(org.id, "issue_security_scheme", scheme.id, 12345)
        assert IssueSecurityScheme.query.count() == 1
        assert AuditLog.query.filter_by(action="scheme.forked").count() == 0
