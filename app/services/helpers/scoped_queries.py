"""
Organization-scoped query helpers.

Every get-by-id in the platform MUST use these helpers instead of
Model.query.get(pk) or db.session.get(Model, pk). Direct .get() calls
bypass organization isolation - a critical security boundary, since
workflows, statuses and schemes are all per-organization configuration.

Usage:
    # Scope by organization_id (most common - OrganizationModel subclasses)
    workflow = get_scoped(Workflow, workflow_id, organization_id=org_id)

    # Scope by workflow_id (transitions hang off a workflow, not an org)
    transition = get_scoped(Transition, transition_id, workflow_id=workflow.id)

    # When None is an acceptable outcome (optional FK lookups)
    scheme = get_scoped_or_none(PermissionScheme, pk, organization_id=org_id)

Scope field resolution:
    Each keyword argument maps directly to a column name on the model.
    If the model does not have that column, a ValueError is raised at
    call time so the bug surfaces immediately during development/testing
    rather than silently allowing unscoped access in production.
"""

import logging

from sqlalchemy import select

from app.core.exceptions import NotFoundError
from app.models import db

logger = logging.getLogger(__name__)

# Supported scope keyword → expected model column name mapping.
_SCOPE_KWARGS = ("organization_id", "project_id", "workflow_id", "scheme_id")


def get_scoped(
    model,
    pk: int,
    *,
    organization_id: int | None = None,
    project_id: int | None = None,
    workflow_id: int | None = None,
    scheme_id: int | None = None,
    session=None,
):
    """Fetch a single entity by PK with mandatory scope filter.

    At least one scope parameter MUST be provided and MUST correspond to a
    column that actually exists on the model.

    Cross-organization access is indistinguishable from a missing record:
    both raise NotFoundError → HTTP 404.

    Args:
        model: SQLAlchemy model class with an `id` PK column.
        pk: Primary key value to look up.
        organization_id / project_id / workflow_id / scheme_id: scope filters.
        session: Session to query with; defaults to ``db.session``.

    Raises:
        ValueError: If no scope parameter is provided, or a provided scope
                    names a column the model lacks.
        NotFoundError: If the entity does not exist OR belongs to a different
                       scope. The two cases are intentionally indistinguishable.
    """
    provided_scopes: dict[str, int] = {
        "organization_id": organization_id,
        "project_id": project_id,
        "workflow_id": workflow_id,
        "scheme_id": scheme_id,
    }
    provided_scopes = {k: v for k, v in provided_scopes.items() if v is not None}

    if not provided_scopes:
        raise ValueError(
            f"{model.__name__} id={pk} requires at least one scope filter "
            f"({', '.join(_SCOPE_KWARGS)}). "
            "Unscoped lookups are forbidden - they bypass organization isolation."
        )

    missing_fields = {field for field in provided_scopes if not hasattr(model, field)}
    if missing_fields:
        raise ValueError(
            f"{model.__name__} id={pk}: scope field(s) {sorted(missing_fields)} "
            f"do not exist as columns on {model.__name__}. "
            "Refusing to perform a partially scoped lookup."
        )

    stmt = select(model).where(model.id == pk)
    for field, value in provided_scopes.items():
        stmt = stmt.where(getattr(model, field) == value)

    result = (session or db.session).execute(stmt).scalar_one_or_none()

    if result is None:
        logger.debug(
            "get_scoped: %s id=%s not found in scope %s",
            model.__name__,
            pk,
            provided_scopes,
        )
        raise NotFoundError(
            resource=model.__name__,
            resource_id=pk,
            organization_id=provided_scopes.get("organization_id"),
        )

    return result


def get_scoped_or_none(model, pk: int, **scopes):
    """Same as get_scoped but returns None instead of raising NotFoundError.

    Still enforces the scope parameter requirement, because silent unscoped
    lookups are never acceptable regardless of return style.
    """
    try:
        return get_scoped(model, pk, **scopes)
    except NotFoundError:
        return None
