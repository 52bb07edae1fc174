"""
Workflow rule registry.

Transitions reference their conditions, validators and post-functions by a
stable string name; this module maps those names to Python callables and
runs each invocation under a bounded timeout.

Rule contract (every rule receives one ``RuleContext``):
    condition(ctx)      -> truthy to allow, falsy to block
    validator(ctx)      -> None / True to accept, a reason string (or False)
                           to reject; raising also rejects
    post_function(ctx)  -> changes ``ctx.issue``; return value ignored;
                           raising is collected as an error by the engine,
                           never propagated

``ctx.issue``, ``ctx.actor`` and ``ctx.transition`` are detached copies, not
ORM rows, and ``ctx.store`` is a read-only gateway. A bounded rule runs on a
worker thread without the Flask application context, so it cannot reach
``db.session`` behind the engine's back; after a timeout its gateway is
revoked and whatever it still does to its copies is thrown away.

Rules may be plain functions or ``async def`` coroutines.

Usage:
    from app.services.rule_registry import default_registry

    @default_registry.condition("actor_is_admin")
    def actor_is_admin(ctx):
        return ctx.actor is not None and ctx.actor.email.endswith("@admin.local")
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)

CONDITION = "condition"
VALIDATOR = "validator"
POST_FUNCTION = "post_function"
RULE_KINDS = (CONDITION, VALIDATOR, POST_FUNCTION)

DEFAULT_RULE_TIMEOUT_SECONDS = 5.0

RuleFn = Callable[["RuleContext"], Any]


class RuleTimeoutError(TimeoutError):
    """A single rule invocation exceeded its time budget."""

    def __init__(self, rule_name: str, timeout_seconds: float) -> None:
        self.rule_name = rule_name
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Rule '{rule_name}' timed out after {timeout_seconds:.2f}s")


class RuleAbandonedError(RuntimeError):
    """A rule that already timed out tried to read through its store."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Rule store is closed; '{operation}' refused after timeout")


@dataclass
class RuleContext:
    """Everything a rule may look at for one invocation."""

    issue: Any
    actor: Any
    params: dict
    transition: Any = None
    organization_id: int | None = None
    store: Any = None
    data: dict = field(default_factory=dict)

    def abandon(self) -> None:
        """Cut a timed-out rule off from the database."""
        revoke = getattr(self.store, "revoke", None)
        if revoke is not None:
            revoke()


class RuleRegistry:
    """Name-keyed tables of conditions, validators and post-functions."""

    def __init__(self) -> None:
        self._rules: dict[str, dict[str, RuleFn]] = {kind: {} for kind in RULE_KINDS}

    def register(self, kind: str, name: str, fn: RuleFn) -> RuleFn:
        if kind not in self._rules:
            raise ValueError(f"Unknown rule kind '{kind}'; expected one of {RULE_KINDS}")
        if name in self._rules[kind]:
            logger.debug("Replacing %s rule '%s'", kind, name)
        self._rules[kind][name] = fn
        return fn

    def condition(self, name: str):
        return lambda fn: self.register(CONDITION, name, fn)

    def validator(self, name: str):
        return lambda fn: self.register(VALIDATOR, name, fn)

    def post_function(self, name: str):
        return lambda fn: self.register(POST_FUNCTION, name, fn)

    def get(self, kind: str, name: str) -> RuleFn | None:
        return self._rules.get(kind, {}).get(name)

    def names(self, kind: str) -> list[str]:
        return sorted(self._rules.get(kind, {}))

    def copy(self) -> "RuleRegistry":
        """Independent registry seeded with this one's rules."""
        clone = RuleRegistry()
        for kind, rules in self._rules.items():
            clone._rules[kind].update(rules)
        return clone

    def describe(self) -> dict[str, list[str]]:
        return {kind: self.names(kind) for kind in RULE_KINDS}


def _invoke(fn: RuleFn, ctx: RuleContext):
    result = fn(ctx)
    if inspect.isawaitable(result):
        return asyncio.run(_await(result))
    return result


async def _await(awaitable):
    return await awaitable


def run_rule(
    name: str,
    fn: RuleFn,
    ctx: RuleContext,
    timeout_seconds: float | None = DEFAULT_RULE_TIMEOUT_SECONDS,
):
    """Invoke one rule, bounded by ``timeout_seconds``.

    The rule runs on a worker thread with no Flask application context;
    ``timeout_seconds`` of ``None`` or ``0`` runs it inline on the caller's
    thread instead. A worker that overruns is left to finish on its own, but
    ``ctx.abandon()`` is called before this returns so it can no longer read
    through ``ctx.store``.

    Raises:
        RuleTimeoutError: the rule did not finish in time.
        Exception: whatever the rule itself raised.
    """
    if not timeout_seconds:
        return _invoke(fn, ctx)

    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"rule-{name}")
    future = pool.submit(_invoke, fn, ctx)
    try:
        return future.result(timeout=timeout_seconds)
    except FutureTimeout as exc:
        ctx.abandon()
        logger.warning("Rule %s abandoned after %.2fs", name, timeout_seconds, extra={"rule": name})
        raise RuleTimeoutError(name, timeout_seconds) from exc
    finally:
        pool.shutdown(wait=False, cancel_futures=True)


default_registry = RuleRegistry()
