"""
Workflow persistence collaborator.

The workflow engine and the scheme registry never touch ``db.session``
directly; they receive a ``WorkflowStore`` and go through it for every read
and write. Tests can therefore hand the engine a store bound to any session,
and the compare-and-swap commit contract lives in exactly one place.

Concurrency:
    ``commit_issue_status`` is an ``UPDATE … WHERE id = :id AND status_id =
    :expected AND version = :version``. Of two transitions racing from the
    same prior status only one UPDATE matches a row; the other sees rowcount 0
    and gets ``ConcurrentModificationError``. Matching on ``version`` as well
    catches an issue that left the expected status and came back to it in
    between. No in-process lock is involved.

Rules never receive a ``WorkflowStore``: they get a ``RuleStore``, a
read-only gateway that can be revoked once a timed-out rule is abandoned.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.orm import scoped_session, selectinload

from app.core.exceptions import ConcurrentModificationError, NotFoundError
from app.models import db
from app.models.project import Issue, Project
from app.models.workflow import Status, Transition, Workflow, WorkflowStatus
from app.services.helpers.scoped_queries import get_scoped
from app.services.rule_registry import RuleAbandonedError

logger = logging.getLogger(__name__)


class WorkflowStore:
    """SQLAlchemy-backed implementation of the persistence contract."""

    def __init__(self, session=None):
        self.session = session or db.session

    # ── Transaction control ──────────────────────────────────────────────

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    # ── Workflows ────────────────────────────────────────────────────────

    def load_workflow(self, workflow_id: int, organization_id: int) -> Workflow:
        """Load a workflow with its status set and transitions in declaration order."""
        stmt = (
            select(Workflow)
            .where(Workflow.id == workflow_id, Workflow.organization_id == organization_id)
            .options(
                selectinload(Workflow.workflow_statuses).selectinload(WorkflowStatus.status),
                selectinload(Workflow.transitions).selectinload(Transition.to_status),
            )
        )
        workflow = self.session.execute(stmt).scalar_one_or_none()
        if workflow is None:
            raise NotFoundError("Workflow", workflow_id, organization_id)
        return workflow

    def load_default_workflow(self, organization_id: int) -> Workflow | None:
        stmt = (
            select(Workflow.id)
            .where(
                Workflow.organization_id == organization_id,
                Workflow.is_default.is_(True),
                Workflow.is_active.is_(True),
            )
            .order_by(Workflow.id)
            .limit(1)
        )
        workflow_id = self.session.execute(stmt).scalar_one_or_none()
        if workflow_id is None:
            return None
        return self.load_workflow(workflow_id, organization_id)

    # ── Projects / issues ────────────────────────────────────────────────

    def load_project(self, project_id: int, organization_id: int) -> Project:
        return get_scoped(Project, project_id, organization_id=organization_id, session=self.session)

    def load_issue(self, issue_id: int, organization_id: int) -> Issue:
        issue = get_scoped(Issue, issue_id, organization_id=organization_id, session=self.session)
        if issue.deleted_at is not None:
            raise NotFoundError("Issue", issue_id, organization_id)
        return issue

    def load_issue_status(self, issue_id: int) -> int | None:
        return self.session.execute(
            select(Issue.status_id).where(Issue.id == issue_id)
        ).scalar_one_or_none()

    def open_subtask_keys(self, issue_id: int) -> list[str]:
        """Keys of live subtasks whose status is not in the DONE category."""
        stmt = (
            select(Issue.key)
            .join(Status, Status.id == Issue.status_id)
            .where(
                Issue.parent_id == issue_id,
                Issue.deleted_at.is_(None),
                Status.category != "DONE",
            )
            .order_by(Issue.id)
        )
        return list(self.session.execute(stmt).scalars())

    def commit_issue_status(
        self,
        issue_id: int,
        new_status_id: int,
        expected_prior_status_id: int,
        expected_version: int | None = None,
    ) -> None:
        """Compare-and-swap the issue's status.

        With ``expected_version`` the swap also requires the row to be
        unchanged since it was read, not merely back in the same status.

        Raises:
            ConcurrentModificationError: the stored status (or version) no
                longer matches; nothing was written.
        """
        conditions = [Issue.id == issue_id, Issue.status_id == expected_prior_status_id]
        if expected_version is not None:
            conditions.append(Issue.version == expected_version)
        stmt = (
            update(Issue)
            .where(*conditions)
            .values(
                status_id=new_status_id,
                version=Issue.version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if result.rowcount != 1:
            actual = self.load_issue_status(issue_id)
            logger.warning(
                "Status commit conflict issue_id=%s expected=%s actual=%s expected_version=%s",
                issue_id, expected_prior_status_id, actual, expected_version,
                extra={"issue_id": issue_id},
            )
            raise ConcurrentModificationError("Issue", issue_id, expected_prior_status_id, actual)
        # Any in-session copy of the row is stale now; reload on next access
        self.session.expire(self.session.get(Issue, issue_id))

    # ── Schemes ──────────────────────────────────────────────────────────

    def load_scheme(self, model, scheme_id: int, organization_id: int, options=()):
        stmt = (
            select(model)
            .where(model.id == scheme_id, model.organization_id == organization_id)
            .options(*options)
        )
        scheme = self.session.execute(stmt).scalar_one_or_none()
        if scheme is None:
            raise NotFoundError(model.__name__, scheme_id, organization_id)
        return scheme

    def create_scheme(self, scheme):
        """Persist a fully built scheme graph in one flush.

        The scheme and all of its child rows are assembled in memory before
        this call, so a failure while copying entries never reaches the
        session; a failure during the flush rolls the whole graph back.
        """
        self.session.add(scheme)
        try:
            self.session.flush()
        except Exception:
            self.session.rollback()
            raise
        return scheme

    def count_projects_for_scheme(self, project_fk: str, scheme_id: int, organization_id: int) -> int:
        column = getattr(Project, project_fk)
        return self.session.execute(
            select(func.count(Project.id)).where(
                column == scheme_id,
                Project.organization_id == organization_id,
            )
        ).scalar_one()

    def update_project_scheme_ref(
        self,
        project_id: int,
        project_fk: str,
        scheme_id: int | None,
        organization_id: int,
    ) -> Project:
        project = self.load_project(project_id, organization_id)
        setattr(project, project_fk, scheme_id)
        self.session.flush()
        return project


class RuleStore:
    """Read-only database access handed to workflow rules as ``ctx.store``.

    Reads run on the caller's session (resolved on the caller's thread, so a
    worker thread needs no application context) and are serialized with
    ``revoke()``. Once the engine gives up on a timed-out rule it revokes the
    gateway; the revoke waits for an in-flight read to finish, and every
    later read raises ``RuleAbandonedError``.
    """

    def __init__(self, store: WorkflowStore):
        session = store.session
        if isinstance(session, scoped_session):
            session = session()
        self._store = WorkflowStore(session)
        self._lock = threading.Lock()
        self._revoked = False

    @property
    def revoked(self) -> bool:
        return self._revoked

    def revoke(self) -> None:
        with self._lock:
            self._revoked = True

    def _read(self, method: str, *args):
        with self._lock:
            if self._revoked:
                raise RuleAbandonedError(method)
            return getattr(self._store, method)(*args)

    def load_issue_status(self, issue_id: int) -> int | None:
        return self._read("load_issue_status", issue_id)

    def open_subtask_keys(self, issue_id: int) -> list[str]:
        return self._read("open_subtask_keys", issue_id)
