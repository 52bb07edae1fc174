"""
Issue Workflow Platform
Workflow domain models.

Models:
    - Status: organization-wide status catalog entry with a reporting category
    - Workflow: clonable bundle of statuses + transitions assigned to projects
    - WorkflowStatus: ordered membership of a Status in a Workflow
    - Transition: named directed edge between two statuses of one workflow

Rules on a transition (conditions, validators, post_functions) are stored as
JSON lists of ``{"name": str, "params": dict}``; the rule implementations live
in the rule registry, not in the database.
"""

from datetime import datetime, timezone

from app.models import db
from app.models.base import OrganizationModel


# ── Constants ────────────────────────────────────────────────────────────────

STATUS_CATEGORIES = ("TODO", "IN_PROGRESS", "DONE")

RULE_KINDS = ("conditions", "validators", "post_functions")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_rules(raw) -> list[dict]:
    """Coerce a stored/posted rule list into ``[{"name", "params"}]`` form.

    Bare strings are accepted as shorthand for a rule without params.
    """
    rules = []
    for item in raw or []:
        if isinstance(item, str):
            rules.append({"name": item, "params": {}})
        elif isinstance(item, dict) and item.get("name"):
            rules.append({"name": str(item["name"]), "params": dict(item.get("params") or {})})
        else:
            raise ValueError(f"Invalid rule definition: {item!r}")
    return rules


class Status(OrganizationModel):
    """A named status; ``category`` drives reporting outside this service."""

    __tablename__ = "statuses"
    __table_args__ = (
        db.UniqueConstraint("organization_id", "name", name="uq_status_org_name"),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    category = db.Column(
        db.String(20), nullable=False, default="TODO",
        comment="TODO | IN_PROGRESS | DONE",
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "category": self.category,
        }

    def __repr__(self):
        return f"<Status {self.id}: {self.name} ({self.category})>"


class Workflow(OrganizationModel):
    """Status graph assigned to projects; clonable like any other scheme."""

    __tablename__ = "workflows"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    parent_id = db.Column(
        db.Integer,
        db.ForeignKey("workflows.id", ondelete="SET NULL"),
        nullable=True,
        comment="Provenance only: the workflow this one was cloned from.",
    )
    initial_status_id = db.Column(
        db.Integer,
        db.ForeignKey("statuses.id", ondelete="SET NULL"),
        nullable=True,
        comment="Status assigned to newly created issues.",
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    workflow_statuses = db.relationship(
        "WorkflowStatus",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="WorkflowStatus.position",
    )
    transitions = db.relationship(
        "Transition",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by=lambda: [Transition.position, Transition.id],
    )
    initial_status = db.relationship("Status", foreign_keys=[initial_status_id])

    @property
    def status_ids(self) -> list[int]:
        return [ws.status_id for ws in self.workflow_statuses]

    @property
    def statuses(self) -> list[Status]:
        return [ws.status for ws in self.workflow_statuses]

    def to_dict(self, include_graph: bool = False):
        result = {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "description": self.description,
            "is_default": self.is_default,
            "is_active": self.is_active,
            "parent_id": self.parent_id,
            "initial_status_id": self.initial_status_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_graph:
            result["statuses"] = [ws.to_dict() for ws in self.workflow_statuses]
            result["transitions"] = [t.to_dict() for t in self.transitions]
        return result

    def __repr__(self):
        return f"<Workflow {self.id}: {self.name}>"


class WorkflowStatus(db.Model):
    __tablename__ = "workflow_statuses"
    __table_args__ = (
        db.UniqueConstraint("workflow_id", "status_id", name="uq_workflow_status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    status_id = db.Column(
        db.Integer, db.ForeignKey("statuses.id", ondelete="CASCADE"), nullable=False,
    )
    position = db.Column(db.Integer, nullable=False, default=0)

    workflow = db.relationship("Workflow", back_populates="workflow_statuses")
    status = db.relationship("Status")

    def to_dict(self):
        return {
            "status_id": self.status_id,
            "name": self.status.name if self.status else None,
            "category": self.status.category if self.status else None,
            "position": self.position,
        }


class Transition(db.Model):
    """Named edge ``from_status -> to_status`` with ordered rule lists."""

    __tablename__ = "transitions"
    __table_args__ = (
        db.UniqueConstraint(
            "workflow_id", "from_status_id", "name",
            name="uq_transition_source_name",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    from_status_id = db.Column(
        db.Integer, db.ForeignKey("statuses.id", ondelete="CASCADE"), nullable=False,
    )
    to_status_id = db.Column(
        db.Integer, db.ForeignKey("statuses.id", ondelete="CASCADE"), nullable=False,
    )
    name = db.Column(db.String(100), nullable=False)
    position = db.Column(
        db.Integer, nullable=False, default=0,
        comment="Declaration order; menus list transitions in this order.",
    )
    conditions = db.Column(db.JSON, nullable=False, default=list)
    validators = db.Column(db.JSON, nullable=False, default=list)
    post_functions = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    workflow = db.relationship("Workflow", back_populates="transitions")
    from_status = db.relationship("Status", foreign_keys=[from_status_id])
    to_status = db.relationship("Status", foreign_keys=[to_status_id])

    @property
    def key(self) -> tuple[int, int, str]:
        return (self.from_status_id, self.to_status_id, self.name)

    def to_dict(self):
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "name": self.name,
            "from_status_id": self.from_status_id,
            "to_status_id": self.to_status_id,
            "position": self.position,
            "conditions": normalize_rules(self.conditions),
            "validators": normalize_rules(self.validators),
            "post_functions": normalize_rules(self.post_functions),
        }

    def __repr__(self):
        return f"<Transition {self.id}: {self.name} {self.from_status_id}->{self.to_status_id}>"
