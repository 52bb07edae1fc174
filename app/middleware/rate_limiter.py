"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies granular limits per route category, keyed by the
calling organization when one is resolved, else by remote IP.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

ADMIN_WRITE_LIMIT = "60/minute"
TRANSITION_LIMIT = "300/minute"


def organization_rate_limit_key():
    """Dynamic rate limit key: organization_id if available, else remote IP."""
    org_id = getattr(g, "organization_id", None)
    if org_id:
        return f"organization:{org_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per organization, falling back to remote IP):
        - Workflow / scheme administration:  60/minute
        - Issue endpoints (transitions):    300/minute

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("workflow", "scheme"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(ADMIN_WRITE_LIMIT, key_func=organization_rate_limit_key)(bp)

    bp = app.blueprints.get("issue")
    if bp:
        limiter.limit(TRANSITION_LIMIT, key_func=organization_rate_limit_key)(bp)

    app.logger.info(
        "Rate limiter configured - admin: %s, issues: %s",
        ADMIN_WRITE_LIMIT, TRANSITION_LIMIT,
    )
