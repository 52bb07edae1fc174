"""
Scheme Service - administration of permission, notification and
issue-security schemes, plus the sharing operations for every scheme type.

``db.session.commit()`` happens only in this file; the scheme registry
below it only flushes.
"""

import logging

from flask import current_app

from app.core.exceptions import DeleteBlockedError, NotFoundError, ValidationError
from app.models import db
from app.models.audit import write_audit
from app.models.scheme import (
    HOLDER_TYPES,
    NOTIFICATION_CHANNELS,
    NOTIFICATION_EVENTS,
    PROJECT_PERMISSIONS,
    RECIPIENT_TYPES,
)
from app.services import scheme_registry
from app.services.persistence import WorkflowStore

logger = logging.getLogger(__name__)

# Scheme types administered here; workflows have their own service
ENTRY_SCHEME_TYPES = ("permission_scheme", "notification_scheme", "issue_security_scheme")


def _store(store):
    return store or WorkflowStore()


def _entry_adapter(scheme_type: str):
    if scheme_type not in ENTRY_SCHEME_TYPES:
        raise ValidationError(
            f"Unknown scheme type: {scheme_type}",
            {"scheme_type": scheme_type, "allowed": list(ENTRY_SCHEME_TYPES)},
        )
    return scheme_registry.get_adapter(scheme_type)


def _require_choice(data: dict, field: str, allowed) -> str:
    value = data.get(field)
    if not value:
        raise ValidationError(f"{field} is required", {"field": field})
    if value not in allowed:
        raise ValidationError(
            f"Invalid {field}: {value}",
            {"field": field, "allowed": sorted(allowed)},
        )
    return value


# ── Entry validation per scheme type ────────────────────────────────────────

def _permission_entry(data: dict) -> dict:
    return {
        "permission_key": _require_choice(data, "permission_key", PROJECT_PERMISSIONS),
        "holder_type": _require_choice(data, "holder_type", HOLDER_TYPES),
        "holder_id": data.get("holder_id"),
    }


def _notification_entry(data: dict) -> dict:
    channels = data.get("channels") or ["in_app"]
    unknown = [c for c in channels if c not in NOTIFICATION_CHANNELS]
    if unknown:
        raise ValidationError(
            f"Invalid channels: {unknown}",
            {"field": "channels", "allowed": sorted(NOTIFICATION_CHANNELS)},
        )
    return {
        "event": _require_choice(data, "event", NOTIFICATION_EVENTS),
        "recipient_type": _require_choice(data, "recipient_type", RECIPIENT_TYPES),
        "recipient_id": data.get("recipient_id"),
        "channels": list(channels),
    }


def _security_level_entry(data: dict) -> dict:
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", {"field": "name"})
    return {
        "name": name,
        "description": data.get("description") or "",
        "holder_type": _require_choice(data, "holder_type", HOLDER_TYPES),
        "holder_id": data.get("holder_id"),
    }


_ENTRY_BUILDERS = {
    "permission_scheme": _permission_entry,
    "notification_scheme": _notification_entry,
    "issue_security_scheme": _security_level_entry,
}


# ═══════════════════════════════════════════════════════════════
# Scheme CRUD
# ═══════════════════════════════════════════════════════════════

def create_scheme(
    organization_id: int,
    scheme_type: str,
    name: str,
    description: str = "",
    is_default: bool = False,
    entries=None,
    actor_id=None,
):
    adapter = _entry_adapter(scheme_type)
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required", {"field": "name"})

    scheme = adapter.model(
        organization_id=organization_id,
        name=name,
        description=description or "",
        is_default=bool(is_default),
    )
    build = _ENTRY_BUILDERS[scheme_type]
    for position, raw in enumerate(entries or []):
        scheme.entries.append(adapter.entry_model(position=position, **build(raw)))

    _store(None).create_scheme(scheme)
    write_audit(
        entity_type=scheme_type, entity_id=scheme.id, action="create",
        organization_id=organization_id, actor_user_id=actor_id,
        diff={"name": name, "entries": len(scheme.entries)},
    )
    db.session.commit()
    logger.info("Created %s %s", scheme_type, scheme.id, extra={"organization_id": organization_id})
    return scheme


def list_schemes(organization_id: int, scheme_type: str) -> list:
    model = _entry_adapter(scheme_type).model
    return model.query_for_organization(organization_id).order_by(model.id).all()


def get_scheme(organization_id: int, scheme_type: str, scheme_id: int, store=None):
    _entry_adapter(scheme_type)
    return scheme_registry.get_scheme_with_entries(_store(store), scheme_type, scheme_id, organization_id)


def update_scheme(organization_id: int, scheme_type: str, scheme_id: int, data: dict, store=None):
    scheme = get_scheme(organization_id, scheme_type, scheme_id, store)
    if "name" in data:
        name = (data["name"] or "").strip()
        if not name:
            raise ValidationError("name is required", {"field": "name"})
        scheme.name = name
    if "description" in data:
        scheme.description = data["description"] or ""
    if "is_default" in data:
        scheme.is_default = bool(data["is_default"])
    db.session.commit()
    return scheme


def delete_scheme(organization_id: int, scheme_type: str, scheme_id: int, actor_id=None, store=None) -> None:
    """Delete a scheme no project uses.

    Raises:
        DeleteBlockedError: the scheme is still bound to one or more projects.
    """
    store = _store(store)
    scheme = get_scheme(organization_id, scheme_type, scheme_id, store)
    in_use = scheme_registry.count_projects_using(store, scheme_type, scheme.id, organization_id)
    if in_use:
        raise DeleteBlockedError(type(scheme).__name__, scheme.id, in_use)
    db.session.delete(scheme)
    write_audit(
        entity_type=scheme_type, entity_id=scheme_id, action="delete",
        organization_id=organization_id, actor_user_id=actor_id,
        diff={"name": scheme.name, "is_default": scheme.is_default},
    )
    db.session.commit()
    logger.info("Deleted %s %s", scheme_type, scheme_id, extra={"organization_id": organization_id})


# ── Entries ─────────────────────────────────────────────────────────────────

def add_entry(organization_id: int, scheme_type: str, scheme_id: int, data: dict, store=None):
    adapter = _entry_adapter(scheme_type)
    scheme = get_scheme(organization_id, scheme_type, scheme_id, store)
    position = max((e.position for e in scheme.entries), default=-1) + 1
    entry = adapter.entry_model(position=position, **_ENTRY_BUILDERS[scheme_type](data or {}))
    scheme.entries.append(entry)
    db.session.commit()
    return entry


def remove_entry(organization_id: int, scheme_type: str, scheme_id: int, entry_id: int, store=None) -> None:
    scheme = get_scheme(organization_id, scheme_type, scheme_id, store)
    entry = next((e for e in scheme.entries if e.id == entry_id), None)
    if entry is None:
        raise NotFoundError(_entry_adapter(scheme_type).entry_model.__name__, entry_id, organization_id)
    scheme.entries.remove(entry)
    db.session.commit()


# ═══════════════════════════════════════════════════════════════
# Sharing (all scheme types, workflows included)
# ═══════════════════════════════════════════════════════════════

def clone_scheme(
    organization_id: int,
    scheme_type: str,
    source_id: int,
    new_name: str,
    actor_id=None,
    store=None,
):
    store = _store(store)
    clone = scheme_registry.clone_scheme_independent(store, scheme_type, source_id, new_name, organization_id)
    write_audit(
        entity_type=scheme_type, entity_id=clone.id, action="scheme.cloned",
        organization_id=organization_id, actor_user_id=actor_id,
        diff={"source_id": source_id, "name": clone.name},
    )
    store.commit()
    return clone


def fork_scheme(
    organization_id: int,
    scheme_type: str,
    scheme_id: int,
    project_id: int,
    actor_id=None,
    store=None,
    suffix=None,
):
    store = _store(store)
    if suffix is None:
        suffix = current_app.config.get("WORKFLOW_FORK_SUFFIX", scheme_registry.DEFAULT_FORK_SUFFIX)
    try:
        clone = scheme_registry.fork_scheme(
            store, scheme_type, scheme_id, project_id, organization_id, suffix=suffix,
        )
        write_audit(
            entity_type=scheme_type, entity_id=clone.id, action="scheme.forked",
            organization_id=organization_id, project_id=project_id, actor_user_id=actor_id,
            diff={"source_id": scheme_id, "name": clone.name},
        )
        store.commit()
    except Exception:
        store.rollback()
        raise
    return clone


def assign_scheme(
    organization_id: int,
    scheme_type: str,
    scheme_id,
    project_id: int,
    actor_id=None,
    store=None,
):
    store = _store(store)
    project = scheme_registry.assign_scheme_to_project(store, scheme_type, scheme_id, project_id, organization_id)
    write_audit(
        entity_type="project", entity_id=project.id, action="scheme.assigned",
        organization_id=organization_id, project_id=project.id, actor_user_id=actor_id,
        diff={"scheme_type": scheme_type, "scheme_id": scheme_id},
    )
    store.commit()
    return project


def sharing_status(organization_id: int, scheme_type: str, scheme_id: int, store=None):
    return scheme_registry.is_scheme_shared(_store(store), scheme_type, scheme_id, organization_id)


def project_count(organization_id: int, scheme_type: str, scheme_id: int, store=None) -> int:
    store = _store(store)
    adapter = scheme_registry.get_adapter(scheme_type)
    store.load_scheme(adapter.model, scheme_id, organization_id)
    return adapter.get_project_count(store, scheme_id, organization_id)
