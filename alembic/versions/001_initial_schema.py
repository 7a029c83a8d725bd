"""Initial schema — groups, users, tasks and distribution previews.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Groups
    op.create_table(
        "groups",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    # Users
    op.create_table(
        "users",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("email", sa.String(254), unique=True, nullable=True),
    )

    # Group members
    op.create_table(
        "group_members",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "group_id",
            sa.String(32),
            sa.ForeignKey("groups.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.String(32),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.String(20), nullable=False, server_default="RegularUser"),
    )
    op.create_index(
        "idx_group_members_group_user", "group_members", ["group_id", "user_id"], unique=True
    )

    # Tasks
    op.create_table(
        "tasks",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column(
            "group_id",
            sa.String(32),
            sa.ForeignKey("groups.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("difficulty", sa.Integer, nullable=False, server_default="5"),
        sa.Column("status", sa.String(20), nullable=False, server_default="Pending"),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "assigned_user_id", sa.String(32), sa.ForeignKey("users.id"), nullable=True
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("difficulty BETWEEN 1 AND 10", name="ck_tasks_difficulty"),
    )
    op.create_index("idx_tasks_group_due", "tasks", ["group_id", "due_at"])
    op.create_index("idx_tasks_assignee", "tasks", ["assigned_user_id"])

    # Distribution previews (deleted by the sweeper once expires_at has passed)
    op.create_table(
        "distribution_previews",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("group_id", sa.String(32), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="Processing"),
        sa.Column("method", sa.String(20), nullable=True),
        sa.Column("assignments", JSONB, nullable=False, server_default="[]"),
        sa.Column("total_tasks", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_users", sa.Integer, nullable=False, server_default="0"),
        sa.Column("workload_variance", sa.Float, nullable=False, server_default="0"),
        sa.Column("tasks_per_user", JSONB, nullable=False, server_default="{}"),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_previews_expires", "distribution_previews", ["expires_at"])
    op.create_index("idx_previews_group", "distribution_previews", ["group_id"])


def downgrade() -> None:
    op.drop_table("distribution_previews")
    op.drop_table("tasks")
    op.drop_table("group_members")
    op.drop_table("users")
    op.drop_table("groups")
