"""Standardised API error responses.

Usage
-----
    from app.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Workflow not found")
    return api_error(E.VALIDATION_REQUIRED, "name is required")
    return api_error(E.CONDITION_FAILED, str(exc), details=exc.to_dict())
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for every application error
     • workflow pipeline errors mirror the exception that produced them
    """

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    CONFLICT_CONCURRENT = "ERR_CONFLICT_CONCURRENT"
    DELETE_BLOCKED = "ERR_DELETE_BLOCKED"

    # Workflow pipeline
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    CONDITION_FAILED = "ERR_CONDITION_FAILED"
    VALIDATION_FAILED = "ERR_VALIDATION_FAILED"

    # Context – HTTP 400
    ORGANIZATION_REQUIRED = "ERR_ORGANIZATION_REQUIRED"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.CONFLICT_CONCURRENT: 409,
    E.DELETE_BLOCKED: 409,
    E.INVALID_TRANSITION: 409,
    E.CONDITION_FAILED: 403,
    E.VALIDATION_FAILED: 422,
    E.ORGANIZATION_REQUIRED: 400,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (rule name, reason, counts).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def exception_error(exc: Exception, *, status: int | None = None):
    """Render one of the ``app.core.exceptions`` types via ``api_error``."""
    code = getattr(exc, "code", E.INTERNAL)
    if status is None:
        status = getattr(exc, "http_status", None)
    to_dict = getattr(exc, "to_dict", None)
    details = to_dict() if callable(to_dict) else None
    return api_error(code, str(exc), status=status, details=details)
