"""
Workflow engine - executes one issue transition as an atomic unit.

Pipeline (strict order, short-circuits on the first failure):

    1. resolve     transition named ``transition_name`` leaving the issue's
                   current status                      → InvalidTransitionError
    2. conditions  declaration order, pure predicates  → ConditionFailedError
    3. validators  declaration order, data checks      → TransitionValidationError
    4. commit      compare-and-swap of ``status_id``   → ConcurrentModificationError
    5. post-funcs  declaration order, best effort; failures are collected on
                   the ``TransitionResult`` and never undo step 4

Steps 1-3 are read-only, so any failure there leaves nothing to clean up and
the call can simply be retried. Step 4 is the single mutating step; it also
requires the issue's ``version`` to be the one read at the start. Every rule
invocation is bounded by ``WORKFLOW_RULE_TIMEOUT_SECONDS``; a timeout is a
failure for conditions/validators and a collected error for post-functions.

Rules never see ORM rows or the session. Each gets a fresh ``IssueSnapshot``
plus detached copies of the actor and transition, and reads through a
``RuleStore``. A post-function's changes are copied onto the issue only when
it returns normally; one that raises or times out leaves the issue untouched.

The engine is stateless: graphs are rebuilt from the loaded workflow on every
call, and all persistence goes through the ``WorkflowStore`` passed in.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import asdict, dataclass, field
from types import SimpleNamespace

from flask import current_app, has_app_context
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import (
    ConditionFailedError,
    InvalidTransitionError,
    NotFoundError,
    TransitionValidationError,
)
from app.models.workflow import normalize_rules
from app.services import builtin_rules  # noqa: F401  (registers the built-in rules)
from app.services.persistence import RuleStore
from app.services.rule_registry import (
    CONDITION,
    DEFAULT_RULE_TIMEOUT_SECONDS,
    POST_FUNCTION,
    VALIDATOR,
    RuleContext,
    RuleTimeoutError,
    default_registry,
    run_rule,
)
from app.services.transition_graph import TransitionGraph

logger = logging.getLogger(__name__)

_CONFIG_TIMEOUT = object()


@dataclass(frozen=True)
class PostFunctionError:
    """A post-function that failed after the status commit. Never raised."""

    post_function_name: str
    cause: str
    error_type: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class TransitionResult:
    issue_id: int
    transition_id: int
    transition_name: str
    from_status_id: int
    to_status_id: int
    post_function_errors: list[PostFunctionError] = field(default_factory=list)

    @property
    def has_warnings(self) -> bool:
        return bool(self.post_function_errors)

    def to_dict(self) -> dict:
        return {
            "issue_id": self.issue_id,
            "transition_id": self.transition_id,
            "transition_name": self.transition_name,
            "from_status_id": self.from_status_id,
            "to_status_id": self.to_status_id,
            "post_function_errors": [e.to_dict() for e in self.post_function_errors],
        }


def _resolve_timeout(timeout_seconds):
    if timeout_seconds is not _CONFIG_TIMEOUT:
        return timeout_seconds
    if has_app_context():
        return current_app.config.get("WORKFLOW_RULE_TIMEOUT_SECONDS", DEFAULT_RULE_TIMEOUT_SECONDS)
    return DEFAULT_RULE_TIMEOUT_SECONDS


def _detach(obj):
    """Column values of a mapped row as a plain namespace (None passes through)."""
    if obj is None:
        return None
    return SimpleNamespace(**{
        attr.key: copy.deepcopy(getattr(obj, attr.key))
        for attr in sa_inspect(obj).mapper.column_attrs
    })


def _context(issue, actor, rule, transition, store, rule_context) -> RuleContext:
    return RuleContext(
        issue=issue.snapshot(),
        actor=_detach(actor),
        params=copy.deepcopy(rule["params"]),
        transition=_detach(transition),
        organization_id=issue.organization_id,
        store=RuleStore(store) if store is not None else None,
        data=copy.deepcopy(dict(rule_context or {})),
    )


def _condition_passes(name, fn, ctx, timeout_seconds) -> tuple[bool, str | None]:
    if fn is None:
        return False, "condition is not registered"
    try:
        return bool(run_rule(name, fn, ctx, timeout_seconds)), None
    except RuleTimeoutError as exc:
        logger.warning("Condition timed out: %s", exc, extra={"rule": name, "issue_id": ctx.issue.id})
        return False, str(exc)
    except Exception as exc:
        logger.warning(
            "Condition %s raised %s: %s", name, type(exc).__name__, exc,
            extra={"rule": name, "issue_id": ctx.issue.id},
        )
        return False, f"{type(exc).__name__}: {exc}"


def _validator_reason(name, fn, ctx, timeout_seconds) -> str | None:
    """None when the validator accepts, otherwise the rejection reason."""
    if fn is None:
        return "validator is not registered"
    try:
        outcome = run_rule(name, fn, ctx, timeout_seconds)
    except RuleTimeoutError as exc:
        logger.warning("Validator timed out: %s", exc, extra={"rule": name, "issue_id": ctx.issue.id})
        return str(exc)
    except Exception as exc:
        return str(exc) or type(exc).__name__
    if outcome is None or outcome is True:
        return None
    if outcome is False:
        return "rejected"
    return str(outcome)


# ═══════════════════════════════════════════════════════════════
# Public API
# ═══════════════════════════════════════════════════════════════

def execute_transition(
    issue,
    workflow,
    transition_name: str,
    actor,
    rule_context: dict | None = None,
    *,
    store,
    registry=None,
    timeout_seconds=_CONFIG_TIMEOUT,
    on_commit=None,
) -> TransitionResult:
    """Run the transition pipeline for one issue.

    Args:
        issue: The ``Issue`` to move; its ``status_id`` and ``version`` are
            the expected prior values for the compare-and-swap.
        workflow: The loaded ``Workflow`` governing the issue's project.
        transition_name: Name of an outgoing transition of the current status.
        actor: The ``User`` performing the transition (may be None for system).
        rule_context: Extra data handed to every rule as ``ctx.data``.
        store: ``WorkflowStore`` used for the commit.
        registry: Rule registry; defaults to ``default_registry``.
        timeout_seconds: Per-rule bound; defaults to the app config value.
            ``None``/``0`` runs rules inline without a bound.
        on_commit: ``callable(issue, transition, from_status_id)`` run inside
            the commit transaction, after the status swap (history, audit).

    Returns:
        TransitionResult, possibly carrying post-function errors.

    Raises:
        NotFoundError: the issue's current status is not part of the workflow.
        InvalidTransitionError: no such transition leaves the current status.
        ConditionFailedError: a condition returned false, errored or timed out.
        TransitionValidationError: a validator rejected the issue's data.
        ConcurrentModificationError: the issue changed since it was read.
    """
    registry = registry or default_registry
    timeout_seconds = _resolve_timeout(timeout_seconds)
    graph = TransitionGraph.from_workflow(workflow)
    from_status_id = issue.status_id
    expected_version = issue.version
    log_extra = {
        "issue_id": issue.id,
        "organization_id": issue.organization_id,
        "transition": transition_name,
    }

    # 1. Resolve
    if not graph.has_status(from_status_id):
        raise NotFoundError("Status", from_status_id, issue.organization_id)
    transition = graph.find_by_name(from_status_id, transition_name)
    if transition is None:
        raise InvalidTransitionError(transition_name, from_status_id)

    # 2. Conditions
    for rule in normalize_rules(transition.conditions):
        name = rule["name"]
        ctx = _context(issue, actor, rule, transition, store, rule_context)
        passed, reason = _condition_passes(name, registry.get(CONDITION, name), ctx, timeout_seconds)
        if not passed:
            logger.info("Transition blocked by condition %s", name, extra={**log_extra, "rule": name})
            raise ConditionFailedError(name, reason)

    # 3. Validators
    for rule in normalize_rules(transition.validators):
        name = rule["name"]
        ctx = _context(issue, actor, rule, transition, store, rule_context)
        reason = _validator_reason(name, registry.get(VALIDATOR, name), ctx, timeout_seconds)
        if reason is not None:
            logger.info("Transition rejected by validator %s: %s", name, reason, extra={**log_extra, "rule": name})
            raise TransitionValidationError(name, reason)

    # 4. Commit
    try:
        store.commit_issue_status(issue.id, transition.to_status_id, from_status_id, expected_version)
        if on_commit is not None:
            on_commit(issue, transition, from_status_id)
        store.commit()
    except Exception:
        # ConcurrentModificationError included: nothing from this call may persist
        store.rollback()
        raise
    logger.info(
        "Issue %s transitioned %s -> %s via '%s'",
        issue.id, from_status_id, transition.to_status_id, transition.name,
        extra=log_extra,
    )

    result = TransitionResult(
        issue_id=issue.id,
        transition_id=transition.id,
        transition_name=transition.name,
        from_status_id=from_status_id,
        to_status_id=transition.to_status_id,
    )

    # 5. Post-functions
    for rule in normalize_rules(transition.post_functions):
        name = rule["name"]
        fn = registry.get(POST_FUNCTION, name)
        if fn is None:
            result.post_function_errors.append(
                PostFunctionError(name, "post-function is not registered", "LookupError")
            )
            logger.warning("Post-function %s is not registered", name, extra={**log_extra, "rule": name})
            continue
        ctx = _context(issue, actor, rule, transition, store, rule_context)
        try:
            run_rule(name, fn, ctx, timeout_seconds)
        except Exception as exc:
            # The rule's snapshot is dropped with whatever it changed
            result.post_function_errors.append(
                PostFunctionError(name, str(exc) or type(exc).__name__, type(exc).__name__)
            )
            logger.warning(
                "Post-function %s failed: %s", name, exc,
                extra={**log_extra, "rule": name},
            )
            continue
        issue.apply_snapshot(ctx.issue)

    try:
        store.commit()
    except SQLAlchemyError as exc:
        store.rollback()
        result.post_function_errors.append(
            PostFunctionError("<commit>", str(exc), type(exc).__name__)
        )
        logger.warning("Post-function changes could not be saved: %s", exc, extra=log_extra)

    return result


def list_available_transitions(
    issue,
    workflow,
    actor=None,
    *,
    store=None,
    registry=None,
    check_conditions: bool = False,
    timeout_seconds=_CONFIG_TIMEOUT,
) -> list:
    """Outgoing transitions of the issue's current status, in declaration order.

    With ``check_conditions`` the list is narrowed to transitions whose
    conditions all pass for ``actor``; nothing is written either way.
    """
    graph = TransitionGraph.from_workflow(workflow)
    candidates = graph.list_available_transitions(issue.status_id)
    if not check_conditions:
        return candidates

    registry = registry or default_registry
    timeout_seconds = _resolve_timeout(timeout_seconds)
    allowed = []
    for transition in candidates:
        for rule in normalize_rules(transition.conditions):
            name = rule["name"]
            ctx = _context(issue, actor, rule, transition, store, None)
            passed, _ = _condition_passes(name, registry.get(CONDITION, name), ctx, timeout_seconds)
            if not passed:
                break
        else:
            allowed.append(transition)
    return allowed
