"""Scheme administration & sharing blueprint.

``<scheme_type>`` is one of permission_scheme | notification_scheme |
issue_security_scheme; the sharing endpoints also accept ``workflow``.

Endpoint groups:
  Schemes           GET/POST        /api/v1/schemes/<scheme_type>
                    GET/PUT/DELETE  /api/v1/schemes/<scheme_type>/<id>
  Entries           POST            /api/v1/schemes/<scheme_type>/<id>/entries
                    DELETE          /api/v1/schemes/<scheme_type>/<id>/entries/<entry_id>
  Sharing           GET             /api/v1/schemes/<scheme_type>/<id>/sharing
                    POST            /api/v1/schemes/<scheme_type>/<id>/clone
                    POST            /api/v1/schemes/<scheme_type>/<id>/fork
  Project binding   PUT             /api/v1/projects/<project_id>/schemes/<scheme_type>
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request

import app.services.scheme_service as ss
from app.blueprints import register_error_handlers
from app.middleware.organization_context import organization_required
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

scheme_bp = register_error_handlers(Blueprint("scheme", __name__, url_prefix="/api/v1"))


def _scheme_dict(scheme, include_entries=True):
    # Workflows serialise their graph instead of ``entries``
    if hasattr(scheme, "entries"):
        return scheme.to_dict(include_entries=include_entries)
    return scheme.to_dict(include_graph=include_entries)


# ═════════════════════════════════════════════════════════════════════════
# Scheme CRUD
# ═════════════════════════════════════════════════════════════════════════


@scheme_bp.route("/schemes/<scheme_type>", methods=["GET"])
def list_schemes(scheme_type):
    org_id, err = organization_required()
    if err:
        return err
    items = ss.list_schemes(org_id, scheme_type)
    return jsonify([s.to_dict(include_entries=False) for s in items]), 200


@scheme_bp.route("/schemes/<scheme_type>", methods=["POST"])
def create_scheme(scheme_type):
    """Body: {name, description?, is_default?, entries?: [entry]}"""
    org_id, err = organization_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    if not (data.get("name") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    entries = data.get("entries") or []
    if not isinstance(entries, list):
        return api_error(E.VALIDATION_INVALID, "entries must be a list", status=400)
    scheme = ss.create_scheme(
        org_id,
        scheme_type,
        data["name"],
        description=data.get("description", ""),
        is_default=bool(data.get("is_default", False)),
        entries=entries,
        actor_id=g.actor_id,
    )
    return jsonify(scheme.to_dict()), 201


@scheme_bp.route("/schemes/<scheme_type>/<int:scheme_id>", methods=["GET"])
def get_scheme(scheme_type, scheme_id):
    org_id, err = organization_required()
    if err:
        return err
    return jsonify(ss.get_scheme(org_id, scheme_type, scheme_id).to_dict()), 200


@scheme_bp.route("/schemes/<scheme_type>/<int:scheme_id>", methods=["PUT"])
def update_scheme(scheme_type, scheme_id):
    org_id, err = organization_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    scheme = ss.update_scheme(org_id, scheme_type, scheme_id, data)
    return jsonify(scheme.to_dict()), 200


@scheme_bp.route("/schemes/<scheme_type>/<int:scheme_id>", methods=["DELETE"])
def delete_scheme(scheme_type, scheme_id):
    """409 ERR_DELETE_BLOCKED with in_use_by_project_count while bound."""
    org_id, err = organization_required()
    if err:
        return err
    ss.delete_scheme(org_id, scheme_type, scheme_id, actor_id=g.actor_id)
    return jsonify({"deleted": True}), 200


# ── Entries ───────────────────────────────────────────────────────────────────


@scheme_bp.route("/schemes/<scheme_type>/<int:scheme_id>/entries", methods=["POST"])
def add_entry(scheme_type, scheme_id):
    org_id, err = organization_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    entry = ss.add_entry(org_id, scheme_type, scheme_id, data)
    return jsonify(entry.to_dict()), 201


@scheme_bp.route("/schemes/<scheme_type>/<int:scheme_id>/entries/<int:entry_id>", methods=["DELETE"])
def remove_entry(scheme_type, scheme_id, entry_id):
    org_id, err = organization_required()
    if err:
        return err
    ss.remove_entry(org_id, scheme_type, scheme_id, entry_id)
    return jsonify({"deleted": True}), 200


# ═════════════════════════════════════════════════════════════════════════
# Sharing
# ═════════════════════════════════════════════════════════════════════════


@scheme_bp.route("/schemes/<scheme_type>/<int:scheme_id>/sharing", methods=["GET"])
def sharing_status(scheme_type, scheme_id):
    org_id, err = organization_required()
    if err:
        return err
    return jsonify(ss.sharing_status(org_id, scheme_type, scheme_id).to_dict()), 200


@scheme_bp.route("/schemes/<scheme_type>/<int:scheme_id>/clone", methods=["POST"])
def clone_scheme(scheme_type, scheme_id):
    """Body: {new_name}. The clone is not bound to any project."""
    org_id, err = organization_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    new_name = (data.get("new_name") or "").strip()
    if not new_name:
        return api_error(E.VALIDATION_REQUIRED, "new_name is required")
    if len(new_name) > 200:
        return api_error(E.VALIDATION_INVALID, "new_name must be ≤ 200 characters", status=400)
    clone = ss.clone_scheme(org_id, scheme_type, scheme_id, new_name, actor_id=g.actor_id)
    return jsonify(_scheme_dict(clone)), 201


@scheme_bp.route("/schemes/<scheme_type>/<int:scheme_id>/fork", methods=["POST"])
def fork_scheme(scheme_type, scheme_id):
    """Body: {project_id}. Only that project is rebound to the copy."""
    org_id, err = organization_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    project_id = data.get("project_id")
    if not isinstance(project_id, int):
        return api_error(E.VALIDATION_REQUIRED, "project_id (int) is required")
    clone = ss.fork_scheme(org_id, scheme_type, scheme_id, project_id, actor_id=g.actor_id)
    return jsonify(_scheme_dict(clone)), 201


@scheme_bp.route("/projects/<int:project_id>/schemes/<scheme_type>", methods=["PUT"])
def assign_scheme(project_id, scheme_type):
    """Body: {scheme_id} - null unbinds. Idempotent."""
    org_id, err = organization_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    if "scheme_id" not in data:
        return api_error(E.VALIDATION_REQUIRED, "scheme_id is required")
    project = ss.assign_scheme(org_id, scheme_type, data["scheme_id"], project_id, actor_id=g.actor_id)
    return jsonify(project.to_dict()), 200
