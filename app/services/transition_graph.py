"""
Transition graph - legal status-to-status moves of one workflow.

Built fresh from a loaded ``Workflow`` for every call (nothing is cached
across requests). Answers the read-only questions the engine and the admin
screens ask:

    find_transition(from, to)        all edges between two statuses
    find_by_name(from, name)         the edge the engine will execute
    list_available_transitions(from) outgoing edges in declaration order
    validate_graph()                 every structural problem, as a list

Declaration order (``Transition.position`` then insertion id) is preserved
exactly; menus render transitions in that order.
"""

from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass

from app.core.exceptions import NotFoundError

# GraphError codes
UNKNOWN_STATUS = "unknown_status"
ORPHAN_STATUS = "orphan_status"
MISSING_INITIAL_STATUS = "missing_initial_status"
INITIAL_STATUS_NOT_IN_WORKFLOW = "initial_status_not_in_workflow"
DUPLICATE_TRANSITION = "duplicate_transition"


@dataclass(frozen=True)
class GraphError:
    """One structural problem found by ``validate_graph``."""

    code: str
    message: str
    status_id: int | None = None
    transition_id: int | None = None
    transition_name: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


class TransitionGraph:
    def __init__(self, status_ids, transitions, initial_status_id=None):
        self.status_ids: list[int] = list(status_ids)
        self.transitions = list(transitions)
        self.initial_status_id = initial_status_id
        self._status_set = set(self.status_ids)

    @classmethod
    def from_workflow(cls, workflow) -> "TransitionGraph":
        return cls(workflow.status_ids, workflow.transitions, workflow.initial_status_id)

    def has_status(self, status_id) -> bool:
        return status_id in self._status_set

    # ── Queries ──────────────────────────────────────────────────────────

    def list_available_transitions(self, from_status_id) -> list:
        return [t for t in self.transitions if t.from_status_id == from_status_id]

    def find_transition(self, from_status_id, to_status_id) -> list:
        """Every transition on the ``from -> to`` edge, in declaration order.

        Several transitions may share an edge under different names; the
        caller disambiguates by name.

        Raises:
            NotFoundError: no transition connects the two statuses.
        """
        candidates = [
            t for t in self.transitions
            if t.from_status_id == from_status_id and t.to_status_id == to_status_id
        ]
        if not candidates:
            raise NotFoundError("Transition", f"{from_status_id}->{to_status_id}")
        return candidates

    def find_by_name(self, from_status_id, name: str):
        for t in self.transitions:
            if t.from_status_id == from_status_id and t.name == name:
                return t
        return None

    def reachable_from(self, status_id) -> set:
        seen = {status_id}
        queue = deque([status_id])
        while queue:
            current = queue.popleft()
            for t in self.list_available_transitions(current):
                if t.to_status_id not in seen:
                    seen.add(t.to_status_id)
                    queue.append(t.to_status_id)
        return seen

    # ── Validation ───────────────────────────────────────────────────────

    def validate_graph(self) -> list[GraphError]:
        """Collect all structural problems; never raises."""
        errors: list[GraphError] = []

        seen_keys = set()
        for t in self.transitions:
            for endpoint in (t.from_status_id, t.to_status_id):
                if endpoint not in self._status_set:
                    errors.append(GraphError(
                        code=UNKNOWN_STATUS,
                        message=f"Transition '{t.name}' references status {endpoint} "
                                "which is not part of this workflow",
                        status_id=endpoint,
                        transition_id=t.id,
                        transition_name=t.name,
                    ))
            key = (t.from_status_id, t.name)
            if key in seen_keys:
                errors.append(GraphError(
                    code=DUPLICATE_TRANSITION,
                    message=f"Transition '{t.name}' is declared more than once "
                            f"from status {t.from_status_id}",
                    transition_id=t.id,
                    transition_name=t.name,
                ))
            seen_keys.add(key)

        if self.initial_status_id is None:
            errors.append(GraphError(
                code=MISSING_INITIAL_STATUS,
                message="Workflow has no initial status",
            ))
            return errors
        if self.initial_status_id not in self._status_set:
            errors.append(GraphError(
                code=INITIAL_STATUS_NOT_IN_WORKFLOW,
                message=f"Initial status {self.initial_status_id} is not part of this workflow",
                status_id=self.initial_status_id,
            ))
            return errors

        reachable = self.reachable_from(self.initial_status_id)
        for status_id in self.status_ids:
            if status_id not in reachable:
                errors.append(GraphError(
                    code=ORPHAN_STATUS,
                    message=f"Status {status_id} is unreachable from the initial status",
                    status_id=status_id,
                ))
        return errors
