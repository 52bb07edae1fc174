"""
Organization Context Middleware - resolves the calling organization and actor.

For every ``/api/v1/`` request:
  1. Organization id is read from the ``X-Organization-Id`` header, then the
     ``organization_id`` query parameter, then the JSON body.
  2. The organization must exist and be active; otherwise the request is
     rejected before any route handler runs.
  3. ``g.organization_id`` / ``g.organization`` are set for blueprints.
  4. ``g.actor_id`` is taken from ``X-User-Id`` (optional; system calls omit it).

This middleware does NOT require an organization - blueprints that need one
call ``organization_required()`` and return its error response.

Chain order:
  timing.py  →  organization_context.py  →  route handler
"""

import logging

from flask import g, request

from app.models import db
from app.models.organization import Organization
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Paths that skip organization context
ORGANIZATION_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def _as_int(value):
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _requested_organization_id():
    org_id = _as_int(request.headers.get("X-Organization-Id"))
    if org_id is None:
        org_id = request.args.get("organization_id", type=int)
    if org_id is None and request.is_json:
        payload = request.get_json(silent=True) or {}
        if isinstance(payload, dict):
            org_id = _as_int(payload.get("organization_id"))
    return org_id


def init_organization_context(app):
    """Register organization context middleware as a before_request hook."""

    @app.before_request
    def _organization_context():
        g.organization = None
        g.organization_id = None
        g.actor_id = None

        if not request.path.startswith("/api/v1/"):
            return None
        for prefix in ORGANIZATION_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None

        g.actor_id = _as_int(request.headers.get("X-User-Id"))

        org_id = _requested_organization_id()
        if org_id is None:
            return None

        organization = db.session.get(Organization, org_id)
        if organization is None:
            logger.warning("Unknown organization_id %s", org_id, extra={"organization_id": org_id})
            return api_error(E.NOT_FOUND, "Organization not found")
        if not organization.is_active:
            logger.warning("Organization %s is deactivated", org_id, extra={"organization_id": org_id})
            return api_error(E.CONFLICT_STATE, "Organization is deactivated", status=403)

        g.organization = organization
        g.organization_id = organization.id
        return None

    logger.info("Organization context middleware installed")


def organization_required():
    """Return ``(organization_id, None)`` or ``(None, error_response)``."""
    org_id = getattr(g, "organization_id", None)
    if org_id is None:
        return None, api_error(
            E.ORGANIZATION_REQUIRED,
            "organization_id is required (X-Organization-Id header or organization_id param)",
        )
    return org_id, None
