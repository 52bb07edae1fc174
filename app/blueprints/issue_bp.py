"""Projects & issues blueprint.

Endpoint groups:
  Organizations      POST            /api/v1/organizations
  Users              POST            /api/v1/users
  Projects           GET/POST        /api/v1/projects
                     GET             /api/v1/projects/<id>
  Project workflow   GET/PUT         /api/v1/projects/<id>/workflow
  Issues             POST            /api/v1/projects/<id>/issues
                     GET/PATCH/DELETE /api/v1/issues/<id>
  Transitions        GET/POST        /api/v1/issues/<id>/transitions
  History            GET             /api/v1/issues/<id>/history

Transition failures map to:
  409 ERR_INVALID_TRANSITION, 403 ERR_CONDITION_FAILED,
  422 ERR_VALIDATION_FAILED, 409 ERR_CONFLICT_CONCURRENT.
A successful transition whose post-functions failed still returns 200 with
``post_function_errors`` populated.
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request

import app.services.project_service as ps
import app.services.workflow_service as wfs
from app.blueprints import paginate_query, register_error_handlers
from app.middleware.organization_context import organization_required
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

issue_bp = register_error_handlers(Blueprint("issue", __name__, url_prefix="/api/v1"))


# ═════════════════════════════════════════════════════════════════════════
# Organizations & users
# ═════════════════════════════════════════════════════════════════════════


@issue_bp.route("/organizations", methods=["POST"])
def create_organization():
    data = request.get_json(silent=True) or {}
    for field in ("name", "slug"):
        if not (data.get(field) or "").strip():
            return api_error(E.VALIDATION_REQUIRED, f"{field} is required")
    org = ps.create_organization(data["name"], data["slug"])
    return jsonify(org.to_dict()), 201


@issue_bp.route("/users", methods=["POST"])
def create_user():
    org_id, err = organization_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    for field in ("name", "email"):
        if not (data.get(field) or "").strip():
            return api_error(E.VALIDATION_REQUIRED, f"{field} is required")
    user = ps.create_user(org_id, data["name"], data["email"])
    return jsonify(user.to_dict()), 201


# ═════════════════════════════════════════════════════════════════════════
# Projects
# ═════════════════════════════════════════════════════════════════════════


@issue_bp.route("/projects", methods=["GET"])
def list_projects():
    org_id, err = organization_required()
    if err:
        return err
    items, total = paginate_query(ps.project_query(org_id))
    return jsonify({"items": [p.to_dict() for p in items], "total": total}), 200


@issue_bp.route("/projects", methods=["POST"])
def create_project():
    """Body: {key, name, description?, workflow_id?}"""
    org_id, err = organization_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    for field in ("key", "name"):
        if not (data.get(field) or "").strip():
            return api_error(E.VALIDATION_REQUIRED, f"{field} is required")
    project = ps.create_project(
        org_id,
        data["key"],
        data["name"],
        description=data.get("description", ""),
        workflow_id=data.get("workflow_id"),
        actor_id=g.actor_id,
    )
    return jsonify(project.to_dict()), 201


@issue_bp.route("/projects/<int:project_id>", methods=["GET"])
def get_project(project_id):
    org_id, err = organization_required()
    if err:
        return err
    return jsonify(ps.get_project(org_id, project_id).to_dict()), 200


@issue_bp.route("/projects/<int:project_id>/workflow", methods=["GET"])
def get_project_workflow(project_id):
    """The project's workflow, or the organization default when it has none."""
    org_id, err = organization_required()
    if err:
        return err
    wf = wfs.get_workflow_for_project(org_id, project_id)
    return jsonify(wf.to_dict(include_graph=True)), 200


@issue_bp.route("/projects/<int:project_id>/workflow", methods=["PUT"])
def assign_project_workflow(project_id):
    """Body: {workflow_id} - null unbinds (default workflow applies)."""
    org_id, err = organization_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    if "workflow_id" not in data:
        return api_error(E.VALIDATION_REQUIRED, "workflow_id is required")
    project = wfs.assign_workflow(org_id, data["workflow_id"], project_id, actor_id=g.actor_id)
    return jsonify(project.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Issues
# ═════════════════════════════════════════════════════════════════════════


@issue_bp.route("/projects/<int:project_id>/issues", methods=["POST"])
def create_issue(project_id):
    """Body: {summary, assignee_id?, parent_id?, fields?}; reporter is the actor."""
    org_id, err = organization_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    if not (data.get("summary") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "summary is required")
    fields = data.get("fields") or {}
    if not isinstance(fields, dict):
        return api_error(E.VALIDATION_INVALID, "fields must be an object", status=400)
    issue = ps.create_issue(
        org_id,
        project_id,
        data["summary"],
        reporter_id=g.actor_id,
        assignee_id=data.get("assignee_id"),
        parent_id=data.get("parent_id"),
        fields=fields,
    )
    return jsonify(issue.to_dict()), 201


@issue_bp.route("/issues/<int:issue_id>", methods=["GET"])
def get_issue(issue_id):
    org_id, err = organization_required()
    if err:
        return err
    return jsonify(ps.get_issue(org_id, issue_id).to_dict()), 200


@issue_bp.route("/issues/<int:issue_id>", methods=["PATCH"])
def update_issue(issue_id):
    """Body: any of {summary, assignee_id, resolution, fields}. Never status."""
    org_id, err = organization_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    issue = ps.update_issue(org_id, issue_id, data)
    return jsonify(issue.to_dict()), 200


@issue_bp.route("/issues/<int:issue_id>", methods=["DELETE"])
def delete_issue(issue_id):
    org_id, err = organization_required()
    if err:
        return err
    ps.delete_issue(org_id, issue_id)
    return jsonify({"deleted": True}), 200


# ── Transitions ───────────────────────────────────────────────────────────────


@issue_bp.route("/issues/<int:issue_id>/transitions", methods=["GET"])
def list_transitions(issue_id):
    """Outgoing transitions of the current status, in declaration order.

    Query params: check_conditions=true narrows to transitions the actor may run.
    """
    org_id, err = organization_required()
    if err:
        return err
    check = request.args.get("check_conditions", "false").lower() == "true"
    transitions = wfs.get_available_transitions(
        org_id, issue_id, actor_id=g.actor_id, check_conditions=check,
    )
    return jsonify([
        {
            "id": t.id,
            "name": t.name,
            "to_status": t.to_status.to_dict() if t.to_status else None,
        }
        for t in transitions
    ]), 200


@issue_bp.route("/issues/<int:issue_id>/transitions", methods=["POST"])
def execute_transition(issue_id):
    """Execute a named transition.

    Body: {transition: str, context?: dict}
    Returns: {result: TransitionResult, issue: Issue}
    """
    org_id, err = organization_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    name = (data.get("transition") or "").strip()
    if not name:
        return api_error(E.VALIDATION_REQUIRED, "transition is required")
    context = data.get("context") or {}
    if not isinstance(context, dict):
        return api_error(E.VALIDATION_INVALID, "context must be an object", status=400)

    result = wfs.transition_issue(org_id, issue_id, name, actor_id=g.actor_id, rule_context=context)
    issue = ps.get_issue(org_id, issue_id)
    return jsonify({"result": result.to_dict(), "issue": issue.to_dict()}), 200


@issue_bp.route("/issues/<int:issue_id>/history", methods=["GET"])
def issue_history(issue_id):
    org_id, err = organization_required()
    if err:
        return err
    return jsonify([h.to_dict() for h in wfs.get_issue_history(org_id, issue_id)]), 200
