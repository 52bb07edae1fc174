"""
Issue Workflow Platform
Blueprint registry and shared view helpers.
"""

import logging

from flask import request
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from app.core.exceptions import ConflictError, NotFoundError, ValidationError, WorkflowError
from app.models import db
from app.utils.errors import E, api_error, exception_error

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  - max items (default 200, capped at max_limit)
        offset - starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def register_error_handlers(bp):
    """Map the service exception hierarchy onto JSON responses for ``bp``."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        logger.debug("Not found: %s", error)
        return exception_error(error, status=404)

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return exception_error(error, status=422)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return exception_error(error, status=409)

    @bp.errorhandler(WorkflowError)
    def _handle_workflow(error: WorkflowError):
        return exception_error(error)

    @bp.errorhandler(IntegrityError)
    def _handle_integrity(error: IntegrityError):
        db.session.rollback()
        logger.warning("Integrity error on %s: %s", request.endpoint, error.orig)
        return api_error(E.CONFLICT_DUPLICATE, "Conflicts with an existing record")

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        db.session.rollback()
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")

    return bp
