"""Workflow administration blueprint.

REST API for the status catalog and workflow editing.

Endpoint groups:
  Status catalog        GET/POST        /api/v1/statuses
  Workflows             GET/POST        /api/v1/workflows
                        GET/PUT/DELETE  /api/v1/workflows/<id>
  Workflow statuses     POST            /api/v1/workflows/<id>/statuses
                        DELETE          /api/v1/workflows/<id>/statuses/<status_id>
                        PUT             /api/v1/workflows/<id>/initial-status
  Transitions           POST            /api/v1/workflows/<id>/transitions
                        DELETE          /api/v1/workflows/<id>/transitions/<transition_id>
  Graph validation      GET             /api/v1/workflows/<id>/validate
  Seeding               POST            /api/v1/workflows/seed-default
  Rule catalog          GET             /api/v1/workflow-rules

organization_id is resolved by the organization context middleware.
Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request

import app.services.workflow_service as wfs
from app.blueprints import register_error_handlers
from app.middleware.organization_context import organization_required
from app.services.rule_registry import default_registry
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

workflow_bp = register_error_handlers(Blueprint("workflow", __name__, url_prefix="/api/v1"))


# ═════════════════════════════════════════════════════════════════════════
# Status catalog
# ═════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/statuses", methods=["GET"])
def list_statuses():
    org_id, err = organization_required()
    if err:
        return err
    return jsonify([s.to_dict() for s in wfs.list_statuses(org_id)]), 200


@workflow_bp.route("/statuses", methods=["POST"])
def create_status():
    """Body: {name, category?: TODO | IN_PROGRESS | DONE}"""
    org_id, err = organization_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    if not (data.get("name") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    status = wfs.create_status(org_id, data["name"], data.get("category", "TODO"))
    return jsonify(status.to_dict()), 201


# ═════════════════════════════════════════════════════════════════════════
# Workflows
# ═════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/workflows", methods=["GET"])
def list_workflows():
    org_id, err = organization_required()
    if err:
        return err
    include_inactive = request.args.get("include_inactive", "true").lower() != "false"
    items = wfs.list_workflows(org_id, include_inactive=include_inactive)
    return jsonify([w.to_dict() for w in items]), 200


@workflow_bp.route("/workflows", methods=["POST"])
def create_workflow():
    """Create a workflow.

    Body: {name, description?, status_ids?: [int], initial_status_id?, is_default?}
    Returns: workflow with statuses and transitions (201).
    """
    org_id, err = organization_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    if not (data.get("name") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    status_ids = data.get("status_ids") or []
    if not isinstance(status_ids, list):
        return api_error(E.VALIDATION_INVALID, "status_ids must be a list", status=400)

    wf = wfs.create_workflow(
        org_id,
        data["name"],
        description=data.get("description", ""),
        status_ids=status_ids,
        initial_status_id=data.get("initial_status_id"),
        is_default=bool(data.get("is_default", False)),
        actor_id=g.actor_id,
    )
    return jsonify(wf.to_dict(include_graph=True)), 201


@workflow_bp.route("/workflows/<int:workflow_id>", methods=["GET"])
def get_workflow(workflow_id):
    org_id, err = organization_required()
    if err:
        return err
    return jsonify(wfs.get_workflow(org_id, workflow_id).to_dict(include_graph=True)), 200


@workflow_bp.route("/workflows/<int:workflow_id>", methods=["PUT"])
def update_workflow(workflow_id):
    """Body: any of {name, description, is_active, is_default}"""
    org_id, err = organization_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    wf = wfs.update_workflow(org_id, workflow_id, data)
    return jsonify(wf.to_dict()), 200


@workflow_bp.route("/workflows/<int:workflow_id>", methods=["DELETE"])
def delete_workflow(workflow_id):
    """Delete an unused workflow; 409 ERR_DELETE_BLOCKED while projects use it."""
    org_id, err = organization_required()
    if err:
        return err
    wfs.delete_workflow(org_id, workflow_id, actor_id=g.actor_id)
    return jsonify({"deleted": True}), 200


# ── Workflow statuses ─────────────────────────────────────────────────────────


@workflow_bp.route("/workflows/<int:workflow_id>/statuses", methods=["POST"])
def add_workflow_status(workflow_id):
    org_id, err = organization_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    status_id = data.get("status_id")
    if not isinstance(status_id, int):
        return api_error(E.VALIDATION_REQUIRED, "status_id (int) is required")
    wf = wfs.add_workflow_status(org_id, workflow_id, status_id, actor_id=g.actor_id)
    return jsonify(wf.to_dict(include_graph=True)), 201


@workflow_bp.route("/workflows/<int:workflow_id>/statuses/<int:status_id>", methods=["DELETE"])
def remove_workflow_status(workflow_id, status_id):
    org_id, err = organization_required()
    if err:
        return err
    wf = wfs.remove_workflow_status(org_id, workflow_id, status_id, actor_id=g.actor_id)
    return jsonify(wf.to_dict(include_graph=True)), 200


@workflow_bp.route("/workflows/<int:workflow_id>/initial-status", methods=["PUT"])
def set_initial_status(workflow_id):
    org_id, err = organization_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    status_id = data.get("status_id")
    if not isinstance(status_id, int):
        return api_error(E.VALIDATION_REQUIRED, "status_id (int) is required")
    wf = wfs.set_initial_status(org_id, workflow_id, status_id)
    return jsonify(wf.to_dict()), 200


# ── Transitions ───────────────────────────────────────────────────────────────


@workflow_bp.route("/workflows/<int:workflow_id>/transitions", methods=["POST"])
def add_transition(workflow_id):
    """Add a transition.

    Body: {
        name, from_status_id, to_status_id,
        conditions?, validators?, post_functions?   # [{name, params}] or [name]
    }
    Returns: created transition (201); 409 on duplicate (from, to, name).
    """
    org_id, err = organization_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    for field in ("name", "from_status_id", "to_status_id"):
        if data.get(field) in (None, ""):
            return api_error(E.VALIDATION_REQUIRED, f"{field} is required")

    transition = wfs.add_transition(
        org_id,
        workflow_id,
        data["name"],
        data["from_status_id"],
        data["to_status_id"],
        conditions=data.get("conditions"),
        validators=data.get("validators"),
        post_functions=data.get("post_functions"),
        actor_id=g.actor_id,
    )
    return jsonify(transition.to_dict()), 201


@workflow_bp.route("/workflows/<int:workflow_id>/transitions/<int:transition_id>", methods=["DELETE"])
def remove_transition(workflow_id, transition_id):
    org_id, err = organization_required()
    if err:
        return err
    wfs.remove_transition(org_id, workflow_id, transition_id, actor_id=g.actor_id)
    return jsonify({"deleted": True}), 200


@workflow_bp.route("/workflows/<int:workflow_id>/validate", methods=["GET"])
def validate_workflow(workflow_id):
    """Return every structural problem at once; ``valid`` is true when none."""
    org_id, err = organization_required()
    if err:
        return err
    errors = wfs.validate_workflow(org_id, workflow_id)
    return jsonify({"valid": not errors, "errors": [e.to_dict() for e in errors]}), 200


@workflow_bp.route("/workflows/seed-default", methods=["POST"])
def seed_default_workflow():
    org_id, err = organization_required()
    if err:
        return err
    wf = wfs.seed_default_workflow(org_id)
    return jsonify(wf.to_dict(include_graph=True)), 201


@workflow_bp.route("/workflow-rules", methods=["GET"])
def list_rules():
    return jsonify(default_registry.describe()), 200
