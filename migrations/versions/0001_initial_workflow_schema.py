"""initial_workflow_schema

Organizations, users, status catalog, workflows + transitions, the three
scheme families, projects, issues, issue history and the audit log.

Revision ID: 0001a7c3e9b1
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "0001a7c3e9b1"
down_revision = None
branch_labels = None
depends_on = None


def _scheme_columns(table):
    return [
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("parent_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parent_id"], [f"{table}.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    ]


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "organizations" not in existing_tables:
        op.create_table(
            "organizations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("slug"),
        )

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=150), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("organization_id", "email", name="uq_user_org_email"),
        )
        op.create_index("ix_users_organization_id", "users", ["organization_id"])

    if "statuses" not in existing_tables:
        op.create_table(
            "statuses",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("category", sa.String(length=20), nullable=False, server_default="TODO"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("organization_id", "name", name="uq_status_org_name"),
        )
        op.create_index("ix_statuses_organization_id", "statuses", ["organization_id"])

    if "workflows" not in existing_tables:
        op.create_table(
            "workflows",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("parent_id", sa.Integer(), nullable=True),
            sa.Column("initial_status_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["parent_id"], ["workflows.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["initial_status_id"], ["statuses.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_workflows_organization_id", "workflows", ["organization_id"])

    if "workflow_statuses" not in existing_tables:
        op.create_table(
            "workflow_statuses",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workflow_id", sa.Integer(), nullable=False),
            sa.Column("status_id", sa.Integer(), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
            sa.ForeignKeyConstraint(["workflow_id"], ["workflows.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["status_id"], ["statuses.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("workflow_id", "status_id", name="uq_workflow_status"),
        )
        op.create_index("ix_workflow_statuses_workflow_id", "workflow_statuses", ["workflow_id"])

    if "transitions" not in existing_tables:
        op.create_table(
            "transitions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workflow_id", sa.Integer(), nullable=False),
            sa.Column("from_status_id", sa.Integer(), nullable=False),
            sa.Column("to_status_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("conditions", sa.JSON(), nullable=False),
            sa.Column("validators", sa.JSON(), nullable=False),
            sa.Column("post_functions", sa.JSON(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["workflow_id"], ["workflows.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["from_status_id"], ["statuses.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["to_status_id"], ["statuses.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "workflow_id", "from_status_id", "name",
                name="uq_transition_source_name",
            ),
        )
        op.create_index("ix_transitions_workflow_id", "transitions", ["workflow_id"])

    for table in ("permission_schemes", "notification_schemes", "issue_security_schemes"):
        if table not in existing_tables:
            op.create_table(table, *_scheme_columns(table))
            op.create_index(f"ix_{table}_organization_id", table, ["organization_id"])

    if "permission_grants" not in existing_tables:
        op.create_table(
            "permission_grants",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("scheme_id", sa.Integer(), nullable=False),
            sa.Column("permission_key", sa.String(length=60), nullable=False),
            sa.Column("holder_type", sa.String(length=30), nullable=False),
            sa.Column("holder_id", sa.String(length=64), nullable=True),
            sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
            sa.ForeignKeyConstraint(["scheme_id"], ["permission_schemes.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_permission_grants_scheme_id", "permission_grants", ["scheme_id"])

    if "notification_scheme_entries" not in existing_tables:
        op.create_table(
            "notification_scheme_entries",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("scheme_id", sa.Integer(), nullable=False),
            sa.Column("event", sa.String(length=40), nullable=False),
            sa.Column("recipient_type", sa.String(length=30), nullable=False),
            sa.Column("recipient_id", sa.String(length=64), nullable=True),
            sa.Column("channels", sa.JSON(), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
            sa.ForeignKeyConstraint(["scheme_id"], ["notification_schemes.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_notification_scheme_entries_scheme_id", "notification_scheme_entries", ["scheme_id"],
        )

    if "issue_security_levels" not in existing_tables:
        op.create_table(
            "issue_security_levels",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("scheme_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("holder_type", sa.String(length=30), nullable=False),
            sa.Column("holder_id", sa.String(length=64), nullable=True),
            sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
            sa.ForeignKeyConstraint(["scheme_id"], ["issue_security_schemes.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_issue_security_levels_scheme_id", "issue_security_levels", ["scheme_id"])

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("key", sa.String(length=20), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("workflow_id", sa.Integer(), nullable=True),
            sa.Column("permission_scheme_id", sa.Integer(), nullable=True),
            sa.Column("notification_scheme_id", sa.Integer(), nullable=True),
            sa.Column("issue_security_scheme_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["workflow_id"], ["workflows.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["permission_scheme_id"], ["permission_schemes.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["notification_scheme_id"], ["notification_schemes.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(
                ["issue_security_scheme_id"], ["issue_security_schemes.id"], ondelete="SET NULL",
            ),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("organization_id", "key", name="uq_project_org_key"),
        )
        op.create_index("ix_projects_organization_id", "projects", ["organization_id"])
        for column in (
            "workflow_id", "permission_scheme_id", "notification_scheme_id", "issue_security_scheme_id",
        ):
            op.create_index(f"ix_projects_{column}", "projects", [column])

    if "issues" not in existing_tables:
        op.create_table(
            "issues",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("key", sa.String(length=40), nullable=False),
            sa.Column("summary", sa.String(length=500), nullable=False),
            sa.Column("status_id", sa.Integer(), nullable=False),
            sa.Column("assignee_id", sa.Integer(), nullable=True),
            sa.Column("reporter_id", sa.Integer(), nullable=True),
            sa.Column("parent_id", sa.Integer(), nullable=True),
            sa.Column("resolution", sa.String(length=100), nullable=True),
            sa.Column("fields", sa.JSON(), nullable=False),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["status_id"], ["statuses.id"]),
            sa.ForeignKeyConstraint(["assignee_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["reporter_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["parent_id"], ["issues.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("organization_id", "key", name="uq_issue_org_key"),
        )
        for column in ("organization_id", "project_id", "status_id", "parent_id"):
            op.create_index(f"ix_issues_{column}", "issues", [column])

    if "issue_history" not in existing_tables:
        op.create_table(
            "issue_history",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("issue_id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=True),
            sa.Column("field", sa.String(length=60), nullable=False),
            sa.Column("old_value", sa.String(length=200), nullable=True),
            sa.Column("new_value", sa.String(length=200), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["issue_id"], ["issues.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_issue_history_organization_id", "issue_history", ["organization_id"])
        op.create_index("ix_issue_history_issue_id", "issue_history", ["issue_id"])

    if "audit_logs" not in existing_tables:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=True),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("diff_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_audit_logs_organization_id", "audit_logs", ["organization_id"])
        op.create_index("ix_audit_logs_actor_user_id", "audit_logs", ["actor_user_id"])
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_project", "audit_logs", ["project_id"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])


def downgrade():
    for table in (
        "audit_logs",
        "issue_history",
        "issues",
        "projects",
        "issue_security_levels",
        "notification_scheme_entries",
        "permission_grants",
        "issue_security_schemes",
        "notification_schemes",
        "permission_schemes",
        "transitions",
        "workflow_statuses",
        "workflows",
        "statuses",
        "users",
        "organizations",
    ):
        op.drop_table(table)
