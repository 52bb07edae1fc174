"""
Issue Workflow Platform
Scheme domain models.

A scheme is a named, clonable bundle of configuration entries assigned to
projects. Three variants share the same columns through ``SchemeMixin``:

    - PermissionScheme    → PermissionGrant      (permission_key, holder)
    - NotificationScheme  → NotificationSchemeEntry (event, recipient, channels)
    - IssueSecurityScheme → IssueSecurityLevel   (level name, holder)

Entries are a flat, ordered list owned exclusively by their scheme
(``cascade="all, delete-orphan"``); a clone never shares entry rows.
"""

from datetime import datetime, timezone

from sqlalchemy.orm import declared_attr

from app.models import db
from app.models.base import OrganizationModel


# ── Constants ────────────────────────────────────────────────────────────────

PROJECT_PERMISSIONS = {
    "browse_project", "create_issues", "edit_issues", "delete_issues",
    "assign_issues", "transition_issues", "resolve_issues", "add_comments",
    "administer_project", "manage_sprints",
}
HOLDER_TYPES = {"user", "group", "project_role", "reporter", "assignee", "anyone"}

NOTIFICATION_EVENTS = {
    "issue_created", "issue_updated", "issue_assigned", "issue_transitioned",
    "issue_resolved", "issue_commented", "issue_deleted",
}
RECIPIENT_TYPES = {"user", "group", "project_role", "reporter", "assignee", "watchers"}
NOTIFICATION_CHANNELS = {"in_app", "email", "slack"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SchemeMixin:
    """Columns every scheme variant carries."""

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @declared_attr
    def parent_id(cls):
        # Weak provenance link: the source scheme may be deleted later.
        return db.Column(
            db.Integer,
            db.ForeignKey(f"{cls.__tablename__}.id", ondelete="SET NULL"),
            nullable=True,
        )

    def scheme_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "description": self.description,
            "is_default": self.is_default,
            "parent_id": self.parent_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def to_dict(self, include_entries: bool = True):
        result = self.scheme_dict()
        if include_entries:
            result["entries"] = [e.to_dict() for e in self.entries]
        return result


# ═══════════════════════════════════════════════════════════════
# 1. PERMISSION SCHEMES
# ═══════════════════════════════════════════════════════════════

class PermissionScheme(SchemeMixin, OrganizationModel):
    __tablename__ = "permission_schemes"

    entries = db.relationship(
        "PermissionGrant",
        back_populates="scheme",
        cascade="all, delete-orphan",
        order_by=lambda: [PermissionGrant.position, PermissionGrant.id],
    )

    def __repr__(self):
        return f"<PermissionScheme {self.id}: {self.name}>"


class PermissionGrant(db.Model):
    __tablename__ = "permission_grants"

    id = db.Column(db.Integer, primary_key=True)
    scheme_id = db.Column(
        db.Integer, db.ForeignKey("permission_schemes.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    permission_key = db.Column(db.String(60), nullable=False)
    holder_type = db.Column(db.String(30), nullable=False, comment="user | group | project_role | …")
    holder_id = db.Column(db.String(64), nullable=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    scheme = db.relationship("PermissionScheme", back_populates="entries")

    COPY_FIELDS = ("permission_key", "holder_type", "holder_id", "position")

    def to_dict(self):
        return {
            "id": self.id,
            "scheme_id": self.scheme_id,
            "permission_key": self.permission_key,
            "holder_type": self.holder_type,
            "holder_id": self.holder_id,
            "position": self.position,
        }


# ═══════════════════════════════════════════════════════════════
# 2. NOTIFICATION SCHEMES
# ═══════════════════════════════════════════════════════════════

class NotificationScheme(SchemeMixin, OrganizationModel):
    __tablename__ = "notification_schemes"

    entries = db.relationship(
        "NotificationSchemeEntry",
        back_populates="scheme",
        cascade="all, delete-orphan",
        order_by=lambda: [NotificationSchemeEntry.position, NotificationSchemeEntry.id],
    )

    def __repr__(self):
        return f"<NotificationScheme {self.id}: {self.name}>"


class NotificationSchemeEntry(db.Model):
    __tablename__ = "notification_scheme_entries"

    id = db.Column(db.Integer, primary_key=True)
    scheme_id = db.Column(
        db.Integer, db.ForeignKey("notification_schemes.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    event = db.Column(db.String(40), nullable=False)
    recipient_type = db.Column(db.String(30), nullable=False)
    recipient_id = db.Column(db.String(64), nullable=True)
    channels = db.Column(db.JSON, nullable=False, default=list)
    position = db.Column(db.Integer, nullable=False, default=0)

    scheme = db.relationship("NotificationScheme", back_populates="entries")

    COPY_FIELDS = ("event", "recipient_type", "recipient_id", "channels", "position")

    def to_dict(self):
        return {
            "id": self.id,
            "scheme_id": self.scheme_id,
            "event": self.event,
            "recipient_type": self.recipient_type,
            "recipient_id": self.recipient_id,
            "channels": list(self.channels or []),
            "position": self.position,
        }


# ═══════════════════════════════════════════════════════════════
# 3. ISSUE SECURITY SCHEMES
# ═══════════════════════════════════════════════════════════════

class IssueSecurityScheme(SchemeMixin, OrganizationModel):
    __tablename__ = "issue_security_schemes"

    entries = db.relationship(
        "IssueSecurityLevel",
        back_populates="scheme",
        cascade="all, delete-orphan",
        order_by=lambda: [IssueSecurityLevel.position, IssueSecurityLevel.id],
    )

    def __repr__(self):
        return f"<IssueSecurityScheme {self.id}: {self.name}>"


class IssueSecurityLevel(db.Model):
    """One level membership row: a holder admitted to a named level."""

    __tablename__ = "issue_security_levels"

    id = db.Column(db.Integer, primary_key=True)
    scheme_id = db.Column(
        db.Integer, db.ForeignKey("issue_security_schemes.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, default="")
    holder_type = db.Column(db.String(30), nullable=False)
    holder_id = db.Column(db.String(64), nullable=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    scheme = db.relationship("IssueSecurityScheme", back_populates="entries")

    COPY_FIELDS = ("name", "description", "holder_type", "holder_id", "position")

    def to_dict(self):
        return {
            "id": self.id,
            "scheme_id": self.scheme_id,
            "name": self.name,
            "description": self.description,
            "holder_type": self.holder_type,
            "holder_id": self.holder_id,
            "position": self.position,
        }
