"""
Issue Workflow Platform
Project + Issue domain models.

Models:
    - Project: binds one workflow and at most one scheme of each scheme type
    - Issue: occupies exactly one status of its project's workflow
    - IssueSnapshot: session-free copy of an issue handed to workflow rules
    - IssueHistory: field-level change log written on every transition
"""

import copy
from datetime import datetime, timezone

from sqlalchemy import inspect as sa_inspect

from app.models import db
from app.models.base import OrganizationModel

# Built-in columns a rule or an edit may overwrite
ISSUE_WRITABLE_COLUMNS = ("summary", "resolution", "assignee_id", "reporter_id")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Project(OrganizationModel):
    """Composition root: the only place a workflow or scheme is referenced."""

    __tablename__ = "projects"
    __table_args__ = (
        db.UniqueConstraint("organization_id", "key", name="uq_project_org_key"),
    )

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(20), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")

    # Scheme pointers - rebinding is a plain FK swap
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("workflows.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    permission_scheme_id = db.Column(
        db.Integer, db.ForeignKey("permission_schemes.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    notification_scheme_id = db.Column(
        db.Integer, db.ForeignKey("notification_schemes.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    issue_security_scheme_id = db.Column(
        db.Integer, db.ForeignKey("issue_security_schemes.id", ondelete="SET NULL"), nullable=True, index=True,
    )

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    workflow = db.relationship("Workflow")

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "workflow_id": self.workflow_id,
            "permission_scheme_id": self.permission_scheme_id,
            "notification_scheme_id": self.notification_scheme_id,
            "issue_security_scheme_id": self.issue_security_scheme_id,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.key}>"


class IssueFieldAccess:
    """Field-by-name access shared by ``Issue`` rows and their snapshots."""

    def field_value(self, name: str):
        """Read a built-in column or, failing that, a custom field value."""
        if name in ("summary", "resolution", "assignee_id", "reporter_id", "parent_id"):
            return getattr(self, name)
        return (self.fields or {}).get(name)

    def set_field_value(self, name: str, value) -> None:
        if name in ISSUE_WRITABLE_COLUMNS:
            setattr(self, name, value)
            return
        # Reassign so the JSON column is flagged dirty
        fields = dict(self.fields or {})
        if value is None:
            fields.pop(name, None)
        else:
            fields[name] = value
        self.fields = fields


class IssueSnapshot(IssueFieldAccess):
    """Plain copy of an issue's columns, bound to no session.

    Workflow rules read and change a snapshot; the engine writes the changes
    back to the row only after the rule finished successfully.
    """

    def __init__(self, **values):
        self.__dict__.update(values)

    def changes_from(self, issue) -> dict:
        return {
            name: getattr(self, name)
            for name in (*ISSUE_WRITABLE_COLUMNS, "fields")
            if getattr(self, name) != getattr(issue, name)
        }

    def __repr__(self):
        return f"<IssueSnapshot {self.id}: {self.key}>"


class Issue(IssueFieldAccess, OrganizationModel):
    """
    Work item. ``status_id`` is only ever changed through the workflow engine's
    compare-and-swap commit; ``version`` increments on every status commit.
    """

    __tablename__ = "issues"
    __table_args__ = (
        db.UniqueConstraint("organization_id", "key", name="uq_issue_org_key"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    key = db.Column(db.String(40), nullable=False)
    summary = db.Column(db.String(500), nullable=False)
    status_id = db.Column(
        db.Integer, db.ForeignKey("statuses.id"), nullable=False, index=True,
    )
    assignee_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    reporter_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    parent_id = db.Column(
        db.Integer, db.ForeignKey("issues.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    resolution = db.Column(db.String(100), nullable=True)
    fields = db.Column(db.JSON, nullable=False, default=dict, comment="Custom field values by name.")
    version = db.Column(db.Integer, nullable=False, default=1)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    project = db.relationship("Project")
    status = db.relationship("Status")
    subtasks = db.relationship("Issue", backref=db.backref("parent", remote_side=[id]), lazy="dynamic")

    def snapshot(self) -> "IssueSnapshot":
        """Detached copy of every column value, safe to hand to another thread."""
        return IssueSnapshot(**{
            attr.key: copy.deepcopy(getattr(self, attr.key))
            for attr in sa_inspect(self).mapper.column_attrs
        })

    def apply_snapshot(self, snapshot: "IssueSnapshot") -> dict:
        """Copy the writable values a rule changed on ``snapshot`` back; returns them."""
        changes = snapshot.changes_from(self)
        for name, value in changes.items():
            setattr(self, name, value)
        return changes

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "project_id": self.project_id,
            "key": self.key,
            "summary": self.summary,
            "status_id": self.status_id,
            "status": self.status.name if self.status else None,
            "assignee_id": self.assignee_id,
            "reporter_id": self.reporter_id,
            "parent_id": self.parent_id,
            "resolution": self.resolution,
            "fields": self.fields or {},
            "version": self.version,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Issue {self.id}: {self.key}>"


class IssueHistory(OrganizationModel):
    """Append-only field change record (one row per committed transition)."""

    __tablename__ = "issue_history"

    id = db.Column(db.Integer, primary_key=True)
    issue_id = db.Column(
        db.Integer, db.ForeignKey("issues.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    field = db.Column(db.String(60), nullable=False)
    old_value = db.Column(db.String(200), nullable=True)
    new_value = db.Column(db.String(200), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "user_id": self.user_id,
            "field": self.field,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
