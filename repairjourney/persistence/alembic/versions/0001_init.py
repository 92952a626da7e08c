"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    op.create_table(
        "repair_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("device_type", sa.String(), nullable=True),
        sa.Column("device_brand", sa.String(), nullable=True),
        sa.Column("device_model", sa.String(), nullable=True),
        sa.Column("issue_description", sa.Text(), nullable=True),
        sa.Column("symptoms", postgresql.JSONB(), nullable=True),
        sa.Column("status", sa.String(), server_default="started", nullable=False),
        # Pointer to the current consolidated artifact; nullable until the first write.
        sa.Column("metadata_url", sa.Text(), nullable=True),
        sa.Column("initial_submission", postgresql.JSONB(), nullable=True),
        sa.Column("diagnostic_results", postgresql.JSONB(), nullable=True),
        sa.Column("issue_confirmation", postgresql.JSONB(), nullable=True),
        sa.Column("repair_guide", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_repair_sessions_user_id", "repair_sessions", ["user_id"], unique=False)
    op.create_index("ix_repair_sessions_status", "repair_sessions", ["status"], unique=False)

    op.create_table(
        "repair_session_files",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "repair_session_id",
            sa.Integer(),
            sa.ForeignKey("repair_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("file_name", sa.String(), nullable=False),
        sa.Column("file_url", sa.Text(), nullable=False),
        sa.Column("file_purpose", sa.String(), nullable=False),
        sa.Column("step_name", sa.String(), nullable=True),
        sa.Column("content_type", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index(
        "ix_repair_session_files_repair_session_id", "repair_session_files", ["repair_session_id"], unique=False
    )
    # Backs the submission dedup lookup (session id + purpose prefix).
    op.create_index(
        "ix_repair_session_files_session_purpose",
        "repair_session_files",
        ["repair_session_id", "file_purpose"],
        unique=False,
    )

    op.create_table(
        "user_interactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("repair_request_id", sa.Integer(), nullable=True),
        sa.Column("interaction_type", sa.String(), nullable=False),
        sa.Column("content", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index(
        "ix_user_interactions_repair_request_id", "user_interactions", ["repair_request_id"], unique=False
    )

    op.create_table(
        "repair_analytics",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("repair_request_id", sa.Integer(), nullable=True),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("event_data", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index(
        "ix_repair_analytics_repair_request_id", "repair_analytics", ["repair_request_id"], unique=False
    )


def downgrade() -> None:
    op.drop_index("ix_repair_analytics_repair_request_id", table_name="repair_analytics")
    op.drop_table("repair_analytics")
    op.drop_index("ix_user_interactions_repair_request_id", table_name="user_interactions")
    op.drop_table("user_interactions")
    op.drop_index("ix_repair_session_files_session_purpose", table_name="repair_session_files")
    op.drop_index("ix_repair_session_files_repair_session_id", table_name="repair_session_files")
    op.drop_table("repair_session_files")
    op.drop_index("ix_repair_sessions_status", table_name="repair_sessions")
    op.drop_index("ix_repair_sessions_user_id", table_name="repair_sessions")
    op.drop_table("repair_sessions")
    op.drop_index("ix_users_username", table_name="users")
    op.drop_table("users")
