"""create projects, project webhooks and deploy logs

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

from alembic import op

revision = "0a1b2c3d4e5f"
down_revision = None
branch_labels = None
depends_on = None

deploy_trigger_enum = sa.Enum("webhook", "manual", name="deploytrigger", create_type=True)
deploy_run_state_enum = sa.Enum(
    "pending", "running", "succeeded", "failed", "skipped", name="deployrunstate", create_type=True
)


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    if is_postgres:
        deploy_trigger_enum.create(bind, checkfirst=True)
        deploy_run_state_enum.create(bind, checkfirst=True)

    op.create_table(
        "projects",
        sa.Column("project_id", UUID(as_uuid=True), nullable=False),
        sa.Column("system_username", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("project_id"),
        sa.UniqueConstraint("system_username", "name", name="uq_projects_owner_name"),
    )
    op.create_index("ix_projects_system_username", "projects", ["system_username"])

    op.create_table(
        "project_webhooks",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("project_id", UUID(as_uuid=True), nullable=False),
        sa.Column("branch", sa.String(length=120), nullable=False, server_default="main"),
        sa.Column("secret_encrypted", sa.Text(), nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["project_id"], ["projects.project_id"]),
        sa.UniqueConstraint("project_id"),
    )

    op.create_table(
        "deploy_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("run_id", sa.String(length=32), nullable=False),
        sa.Column("project_id", UUID(as_uuid=True), nullable=True),
        sa.Column("project_key", sa.String(length=200), nullable=False),
        sa.Column("trigger", deploy_trigger_enum, nullable=False),
        sa.Column("status", deploy_run_state_enum, nullable=False),
        sa.Column("commit_hash", sa.String(length=64), nullable=True),
        sa.Column("has_changes", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["project_id"], ["projects.project_id"]),
    )
    op.create_index("ix_deploy_logs_run_id", "deploy_logs", ["run_id"])
    op.create_index("ix_deploy_logs_project_id", "deploy_logs", ["project_id"])
    op.create_index("ix_deploy_logs_created_at", "deploy_logs", ["created_at"])


def downgrade() -> None:
    op.drop_table("deploy_logs")
    op.drop_table("project_webhooks")
    op.drop_index("ix_projects_system_username", table_name="projects")
    op.drop_table("projects")
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        deploy_run_state_enum.drop(bind, checkfirst=True)
        deploy_trigger_enum.drop(bind, checkfirst=True)
