"""
Scheme registry - clonable, provenance-tracked configuration bundles.

One generic ``SchemeAdapter`` owns the clone / count / assign algorithm; each
scheme type only declares its model, its entry model and the ``Project``
column that points at it. Entry-shape differences live in the entry model's
``COPY_FIELDS``, never in branching here.

    scheme type              model                 project column
    ─────────────────────    ──────────────────    ─────────────────────────
    permission_scheme        PermissionScheme      permission_scheme_id
    notification_scheme      NotificationScheme    notification_scheme_id
    issue_security_scheme    IssueSecurityScheme   issue_security_scheme_id
    workflow                 Workflow              workflow_id

Every operation takes the ``WorkflowStore`` explicitly and only flushes;
the calling service owns the transaction boundary.

Sharing helpers (fork-or-propagate):
    is_scheme_shared          more than one project points at the scheme
    fork_scheme               clone as "<name> (Custom)" and rebind one project
    clone_scheme_independent  clone without binding anything
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass

from sqlalchemy.orm import selectinload

from app.core.exceptions import NotFoundError, ValidationError
from app.models.scheme import (
    IssueSecurityLevel,
    IssueSecurityScheme,
    NotificationScheme,
    NotificationSchemeEntry,
    PermissionGrant,
    PermissionScheme,
)
from app.models.workflow import Transition, Workflow, WorkflowStatus

logger = logging.getLogger(__name__)

DEFAULT_FORK_SUFFIX = " (Custom)"


@dataclass(frozen=True)
class SharingStatus:
    shared: bool
    project_count: int

    def to_dict(self) -> dict:
        return {"shared": self.shared, "project_count": self.project_count}


class SchemeAdapter:
    """Generic clone/count/assign behaviour shared by every scheme type."""

    scheme_type: str = ""
    model = None
    entry_model = None
    project_fk: str = ""

    # ── Loading ──────────────────────────────────────────────────────────

    def load_options(self):
        return (selectinload(self.model.entries),)

    def find_scheme_with_entries(self, store, scheme_id: int, organization_id: int):
        """Scheme plus entries, strictly inside ``organization_id``.

        Raises:
            NotFoundError: missing, or owned by another organization.
        """
        return store.load_scheme(self.model, scheme_id, organization_id, options=self.load_options())

    def get_project_count(self, store, scheme_id: int, organization_id: int) -> int:
        return store.count_projects_for_scheme(self.project_fk, scheme_id, organization_id)

    # ── Cloning ──────────────────────────────────────────────────────────

    def new_scheme(self, source, new_name: str, organization_id: int):
        return self.model(
            organization_id=organization_id,
            name=new_name,
            description=source.description,
            is_default=False,
            parent_id=source.id,
        )

    def copy_entries(self, source, clone) -> None:
        for entry in source.entries:
            values = {f: copy.deepcopy(getattr(entry, f)) for f in self.entry_model.COPY_FIELDS}
            clone.entries.append(self.entry_model(**values))

    def clone_scheme(self, store, source, new_name: str, organization_id: int):
        """Deep-copy ``source`` into a new, non-default scheme.

        The whole graph is assembled in memory and persisted with a single
        flush, so a failure while copying entries leaves nothing behind.

        Raises:
            NotFoundError: ``source`` belongs to another organization.
            ValidationError: ``new_name`` is blank.
        """
        if source.organization_id != organization_id:
            raise NotFoundError(type(source).__name__, source.id, organization_id)
        new_name = (new_name or "").strip()
        if not new_name:
            raise ValidationError("new_name is required", {"field": "new_name"})

        clone = self.new_scheme(source, new_name, organization_id)
        self.copy_entries(source, clone)
        store.create_scheme(clone)
        logger.info(
            "Cloned %s %s -> %s", self.scheme_type, source.id, clone.id,
            extra={"organization_id": organization_id},
        )
        return clone

    # ── Binding ──────────────────────────────────────────────────────────

    def assign_to_project(self, store, scheme_id: int | None, project_id: int, organization_id: int):
        """Point the project's FK at ``scheme_id``; idempotent pointer swap."""
        if scheme_id is not None:
            # Cross-organization bindings are indistinguishable from missing schemes
            store.load_scheme(self.model, scheme_id, organization_id)
        return store.update_project_scheme_ref(project_id, self.project_fk, scheme_id, organization_id)


class PermissionSchemeAdapter(SchemeAdapter):
    scheme_type = "permission_scheme"
    model = PermissionScheme
    entry_model = PermissionGrant
    project_fk = "permission_scheme_id"


class NotificationSchemeAdapter(SchemeAdapter):
    scheme_type = "notification_scheme"
    model = NotificationScheme
    entry_model = NotificationSchemeEntry
    project_fk = "notification_scheme_id"


class IssueSecuritySchemeAdapter(SchemeAdapter):
    scheme_type = "issue_security_scheme"
    model = IssueSecurityScheme
    entry_model = IssueSecurityLevel
    project_fk = "issue_security_scheme_id"


class WorkflowSchemeAdapter(SchemeAdapter):
    """Workflows clone like schemes; their entries are statuses and transitions."""

    scheme_type = "workflow"
    model = Workflow
    entry_model = Transition
    project_fk = "workflow_id"

    def find_scheme_with_entries(self, store, scheme_id: int, organization_id: int):
        return store.load_workflow(scheme_id, organization_id)

    def new_scheme(self, source, new_name: str, organization_id: int):
        clone = super().new_scheme(source, new_name, organization_id)
        clone.is_active = True
        clone.initial_status_id = source.initial_status_id
        return clone

    def copy_entries(self, source, clone) -> None:
        for ws in source.workflow_statuses:
            clone.workflow_statuses.append(
                WorkflowStatus(status_id=ws.status_id, position=ws.position)
            )
        for t in source.transitions:
            clone.transitions.append(Transition(
                name=t.name,
                from_status_id=t.from_status_id,
                to_status_id=t.to_status_id,
                position=t.position,
                conditions=copy.deepcopy(t.conditions or []),
                validators=copy.deepcopy(t.validators or []),
                post_functions=copy.deepcopy(t.post_functions or []),
            ))


SCHEME_ADAPTERS: dict[str, SchemeAdapter] = {
    adapter.scheme_type: adapter
    for adapter in (
        PermissionSchemeAdapter(),
        NotificationSchemeAdapter(),
        IssueSecuritySchemeAdapter(),
        WorkflowSchemeAdapter(),
    )
}


def get_adapter(scheme_type: str) -> SchemeAdapter:
    adapter = SCHEME_ADAPTERS.get(scheme_type)
    if adapter is None:
        raise ValidationError(
            f"Unknown scheme type: {scheme_type}",
            {"scheme_type": scheme_type, "allowed": sorted(SCHEME_ADAPTERS)},
        )
    return adapter


# ═══════════════════════════════════════════════════════════════
# Caller-facing operations
# ═══════════════════════════════════════════════════════════════

def get_scheme_with_entries(store, scheme_type: str, scheme_id: int, organization_id: int):
    return get_adapter(scheme_type).find_scheme_with_entries(store, scheme_id, organization_id)


def count_projects_using(store, scheme_type: str, scheme_id: int, organization_id: int) -> int:
    return get_adapter(scheme_type).get_project_count(store, scheme_id, organization_id)


def clone_scheme(store, scheme_type: str, source, new_name: str, organization_id: int):
    return get_adapter(scheme_type).clone_scheme(store, source, new_name, organization_id)


def assign_scheme_to_project(
    store, scheme_type: str, scheme_id: int | None, project_id: int, organization_id: int,
):
    return get_adapter(scheme_type).assign_to_project(store, scheme_id, project_id, organization_id)


def is_scheme_shared(store, scheme_type: str, scheme_id: int, organization_id: int) -> SharingStatus:
    adapter = get_adapter(scheme_type)
    # Existence check first so a foreign id reports NotFound, not "unshared"
    store.load_scheme(adapter.model, scheme_id, organization_id)
    count = adapter.get_project_count(store, scheme_id, organization_id)
    return SharingStatus(shared=count > 1, project_count=count)


def fork_scheme(
    store,
    scheme_type: str,
    scheme_id: int,
    project_id: int,
    organization_id: int,
    suffix: str = DEFAULT_FORK_SUFFIX,
):
    """Clone the scheme for one project and rebind only that project.

    Every other project keeps pointing at the original.
    """
    adapter = get_adapter(scheme_type)
    source = adapter.find_scheme_with_entries(store, scheme_id, organization_id)
    # Validate the project before creating anything
    store.load_project(project_id, organization_id)
    clone = adapter.clone_scheme(store, source, f"{source.name}{suffix}", organization_id)
    adapter.assign_to_project(store, clone.id, project_id, organization_id)
    return clone


def clone_scheme_independent(store, scheme_type: str, source_id: int, new_name: str, organization_id: int):
    adapter = get_adapter(scheme_type)
    source = adapter.find_scheme_with_entries(store, source_id, organization_id)
    return adapter.clone_scheme(store, source, new_name, organization_id)
