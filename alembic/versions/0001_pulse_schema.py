"""Pulse schema: invocation log, entities, continuity memories.

Revision ID: 0001_pulse_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0001_pulse_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the pulse log plus the entity tables it reads."""
    op.create_table(
        "pulse_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("entity_id", sa.String(length=200), nullable=False),
        sa.Column("entity_name", sa.String(length=200), nullable=True),
        sa.Column(
            "wake_type",
            sa.Enum("scheduled", "continue", name="pulse_wake_type", native_enum=False),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum(
                "pending",
                "in_progress",
                "completed",
                "failed",
                "skipped",
                name="pulse_status",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column(
            "skip_reason",
            sa.Enum(
                "active_conversation",
                "budget_exhausted",
                "outside_active_hours",
                "max_chain_depth",
                name="pulse_skip_reason",
                native_enum=False,
            ),
            nullable=True,
        ),
        sa.Column("chain_depth", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "end_signal",
            sa.Enum(
                "rest",
                "tool_limit",
                "error",
                "crash_recovery",
                name="pulse_end_signal",
                native_enum=False,
            ),
            nullable=True,
        ),
        sa.Column("task_context", sa.Text(), nullable=True),
        sa.Column("reflection", sa.Text(), nullable=True),
        sa.Column("token_usage", sa.JSON(), nullable=True),
        sa.Column("tool_call_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_pulse_logs_entity_id", "pulse_logs", ["entity_id"])
    op.create_index("ix_pulse_logs_entity_created", "pulse_logs", ["entity_id", "created_at"])
    op.create_index(
        "ix_pulse_logs_entity_status_created",
        "pulse_logs",
        ["entity_id", "status", "created_at"],
    )

    op.create_table(
        "entities",
        sa.Column("id", sa.String(length=200), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("workspace_url", sa.String(length=1000), nullable=True),
        sa.Column("model_override", sa.String(length=200), nullable=True),
        sa.Column("preferred_model", sa.String(length=200), nullable=True),
        sa.Column("pulse", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "continuity_memories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("entity_id", sa.String(length=200), nullable=False),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("importance", sa.Float(), nullable=False, server_default="0"),
        sa.Column("last_accessed", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_continuity_memories_entity_id", "continuity_memories", ["entity_id"])


def downgrade() -> None:
    """Drop pulse tables."""
    op.drop_index("ix_continuity_memories_entity_id", table_name="continuity_memories")
    op.drop_table("continuity_memories")
    op.drop_table("entities")
    op.drop_index("ix_pulse_logs_entity_status_created", table_name="pulse_logs")
    op.drop_index("ix_pulse_logs_entity_created", table_name="pulse_logs")
    op.drop_index("ix_pulse_logs_entity_id", table_name="pulse_logs")
    op.drop_table("pulse_logs")
