"""
Platform-wide exception hierarchy.

Every service raises one of these types; blueprints register handlers
against them once and get consistent HTTP status codes and machine-readable
error codes everywhere. Each exception carries the structured fields a
caller needs (rule name, reason, counts), so nobody has to parse messages.

Usage:
    from app.core.exceptions import NotFoundError, ConditionFailedError

    raise NotFoundError(resource="Workflow", resource_id=42)
    raise ConditionFailedError("actor_is_assignee")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Security note: Used for BOTH genuinely missing records AND cross-organization
    access attempts. A 403 would confirm the resource exists; a 404 does not.

    Args:
        resource: Human-readable model/entity name (e.g. "Workflow", "Issue").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        organization_id: Optional - the scope that was enforced. For debug logging only.
    """

    code = "ERR_NOT_FOUND"

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        organization_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.organization_id = organization_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if organization_id is not None:
            msg += f" (organization={organization_id})"
        super().__init__(msg)

    def to_dict(self) -> dict:
        return {"resource": self.resource, "resource_id": self.resource_id}


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Distinct from HTTP 400 (malformed input, caught in blueprint) - this
    exception signals that the data was well-formed but violated a business
    rule (e.g. transition endpoint outside the workflow, unknown category).

    Maps to HTTP 422 in blueprint error handlers.
    """

    code = "ERR_VALIDATION_INVALID"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return dict(self.details)


class ConflictError(Exception):
    """Base for HTTP 409 conditions."""

    code = "ERR_CONFLICT_STATE"

    def to_dict(self) -> dict:
        return {}


class DuplicateError(ConflictError):
    """Raised when an operation would create a duplicate unique constraint violation.

    Args:
        resource: Model name.
        field: The unique field (or key) that would be duplicated.
        value: The conflicting value (truncated in HTTP response; full in logs).
    """

    code = "ERR_CONFLICT_DUPLICATE"

    def __init__(self, resource: str, field: str, value=None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")

    def to_dict(self) -> dict:
        return {"resource": self.resource, "field": self.field}


class ConcurrentModificationError(ConflictError):
    """Raised when a compare-and-swap commit finds the row already changed.

    The caller should reload and retry the whole operation; the pipeline
    is not resumable from the middle.
    """

    code = "ERR_CONFLICT_CONCURRENT"

    def __init__(self, resource: str, resource_id, expected=None, actual=None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{resource} id={resource_id} was modified concurrently "
            f"(expected status={expected!r}, found {actual!r})"
        )

    def to_dict(self) -> dict:
        return {
            "resource": self.resource,
            "resource_id": self.resource_id,
            "expected": self.expected,
            "actual": self.actual,
        }


class DeleteBlockedError(ConflictError):
    """Raised when deleting a scheme/workflow still referenced by projects."""

    code = "ERR_DELETE_BLOCKED"

    def __init__(self, resource: str, resource_id, in_use_by_project_count: int) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.in_use_by_project_count = in_use_by_project_count
        super().__init__(
            f"Cannot delete {resource} id={resource_id}: "
            f"used by {in_use_by_project_count} project(s)"
        )

    def to_dict(self) -> dict:
        return {
            "resource": self.resource,
            "resource_id": self.resource_id,
            "in_use_by_project_count": self.in_use_by_project_count,
        }


# ── Workflow transition failures ─────────────────────────────────────────────


class WorkflowError(Exception):
    """Base for failures that abort a transition before its commit."""

    code = "ERR_WORKFLOW"
    http_status = 409

    def to_dict(self) -> dict:
        return {}


class InvalidTransitionError(WorkflowError):
    """No transition with that name leaves the issue's current status."""

    code = "ERR_INVALID_TRANSITION"

    def __init__(self, transition_name: str, status_id: int | None) -> None:
        self.transition_name = transition_name
        self.status_id = status_id
        super().__init__(
            f"Transition '{transition_name}' is not available from status id={status_id}"
        )

    def to_dict(self) -> dict:
        return {"transition": self.transition_name, "status_id": self.status_id}


class ConditionFailedError(WorkflowError):
    """A gating condition returned false (or errored / timed out)."""

    code = "ERR_CONDITION_FAILED"
    http_status = 403

    def __init__(self, condition_name: str, reason: str | None = None) -> None:
        self.condition_name = condition_name
        self.reason = reason
        msg = f"Condition '{condition_name}' not satisfied"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)

    def to_dict(self) -> dict:
        return {"condition": self.condition_name, "reason": self.reason}


class TransitionValidationError(WorkflowError):
    """A validator rejected the issue's current data."""

    code = "ERR_VALIDATION_FAILED"
    http_status = 422

    def __init__(self, validator_name: str, reason: str) -> None:
        self.validator_name = validator_name
        self.reason = reason
        super().__init__(f"Validator '{validator_name}' failed: {reason}")

    def to_dict(self) -> dict:
        return {"validator": self.validator_name, "reason": self.reason}
