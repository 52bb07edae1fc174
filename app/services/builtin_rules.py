"""
Built-in workflow rules, registered on ``default_registry`` at import.

Conditions (gate on actor / permission state):
    actor_is_assignee   actor is the issue's assignee
    actor_is_reporter   actor reported the issue
    actor_in_list       actor id in ``params.user_ids``
    field_not_empty     ``params.field`` has a value

Validators (gate on issue data):
    required_field      ``params.field`` has a value
    field_matches       ``params.field`` is one of ``params.values``
    no_open_subtasks    every subtask sits in a DONE-category status

Post-functions (side effects after the status commit):
    assign_to_actor     assignee := actor
    clear_field         ``params.field`` := None
    set_resolution      resolution := ``params.resolution``
"""

from app.services.rule_registry import default_registry


def _is_empty(value) -> bool:
    return value is None or (isinstance(value, (str, list, dict)) and not value)


def _required_param(ctx, name: str):
    value = ctx.params.get(name)
    if _is_empty(value):
        raise ValueError(f"missing rule parameter '{name}'")
    return value


# ── Conditions ───────────────────────────────────────────────────────────────

@default_registry.condition("actor_is_assignee")
def actor_is_assignee(ctx):
    return ctx.actor is not None and ctx.issue.assignee_id == ctx.actor.id


@default_registry.condition("actor_is_reporter")
def actor_is_reporter(ctx):
    return ctx.actor is not None and ctx.issue.reporter_id == ctx.actor.id


@default_registry.condition("actor_in_list")
def actor_in_list(ctx):
    allowed = {int(uid) for uid in ctx.params.get("user_ids") or []}
    return ctx.actor is not None and ctx.actor.id in allowed


@default_registry.condition("field_not_empty")
def field_not_empty(ctx):
    return not _is_empty(ctx.issue.field_value(_required_param(ctx, "field")))


# ── Validators ───────────────────────────────────────────────────────────────

@default_registry.validator("required_field")
def required_field(ctx):
    field = _required_param(ctx, "field")
    if _is_empty(ctx.issue.field_value(field)):
        return f"Field '{field}' is required for this transition"
    return None


@default_registry.validator("field_matches")
def field_matches(ctx):
    field = _required_param(ctx, "field")
    allowed = list(_required_param(ctx, "values"))
    value = ctx.issue.field_value(field)
    if value not in allowed:
        return f"Field '{field}' must be one of {allowed}, got {value!r}"
    return None


@default_registry.validator("no_open_subtasks")
def no_open_subtasks(ctx):
    open_keys = ctx.store.open_subtask_keys(ctx.issue.id)
    if open_keys:
        return f"Subtasks still open: {', '.join(open_keys)}"
    return None


# ── Post-functions ───────────────────────────────────────────────────────────

@default_registry.post_function("assign_to_actor")
def assign_to_actor(ctx):
    if ctx.actor is None:
        raise ValueError("no actor to assign")
    ctx.issue.assignee_id = ctx.actor.id


@default_registry.post_function("clear_field")
def clear_field(ctx):
    ctx.issue.set_field_value(_required_param(ctx, "field"), None)


@default_registry.post_function("set_resolution")
def set_resolution(ctx):
    ctx.issue.resolution = _required_param(ctx, "resolution")
