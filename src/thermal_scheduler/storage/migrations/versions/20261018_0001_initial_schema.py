"""Initial supervisor schema: profiles, checkpoints, episodes, decisions, trace."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "device_profiles",
        sa.Column("device_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("thermal_mass", sa.Float(), nullable=False),
        sa.Column("cooling_rate", sa.Float(), nullable=False),
        sa.Column("cooling_effectiveness", sa.Float(), nullable=False),
        sa.Column("thermal_efficiency", sa.Float(), nullable=False),
        sa.Column("optimal_max", sa.Float(), nullable=False),
        sa.Column("safe_max", sa.Float(), nullable=False),
        sa.Column("warning_max", sa.Float(), nullable=False),
        sa.Column("critical", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("device_id"),
    )

    op.create_table(
        "task_checkpoints",
        sa.Column("checkpoint_id", sa.String(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("progress", sa.Float(), nullable=True),
        sa.Column("state_json", sa.Text(), nullable=False),
        sa.Column("output_json", sa.Text(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("detail", sa.String(), nullable=True),
        sa.Column("warning", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("checkpoint_id"),
        sa.UniqueConstraint("task_id", "sequence", name="uq_task_checkpoints_task_sequence"),
    )
    op.create_index("ix_task_checkpoints_task_id", "task_checkpoints", ["task_id"])
    op.create_index("ix_task_checkpoints_reason", "task_checkpoints", ["reason"])

    op.create_table(
        "abort_episodes",
        sa.Column("episode_id", sa.String(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("temperature", sa.Float(), nullable=True),
        sa.Column("peak_temperature", sa.Float(), nullable=False),
        sa.Column("elapsed_seconds", sa.Integer(), nullable=False),
        sa.Column("thermal_alerts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("power_alerts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "checkpoint_saved",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("suspended", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("episode_id"),
    )
    op.create_index("ix_abort_episodes_task_id", "abort_episodes", ["task_id"])
    op.create_index("ix_abort_episodes_reason", "abort_episodes", ["reason"])
    op.create_index(
        "idx_abort_episodes_task_time",
        "abort_episodes",
        ["task_id", "created_at"],
    )

    op.create_table(
        "scheduling_decisions",
        sa.Column("decision_id", sa.String(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("verdict", sa.String(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("checks_json", sa.Text(), nullable=True),
        sa.Column("retry_after_minutes", sa.Integer(), nullable=True),
        sa.Column("next_window", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("decision_id"),
        sa.CheckConstraint(
            "verdict IN ('accept', 'defer', 'sleep', 'idle')",
            name="ck_scheduling_decisions_verdict",
        ),
    )
    op.create_index("ix_scheduling_decisions_task_id", "scheduling_decisions", ["task_id"])
    op.create_index("ix_scheduling_decisions_user_id", "scheduling_decisions", ["user_id"])
    op.create_index(
        "idx_scheduling_decisions_task_time",
        "scheduling_decisions",
        ["task_id", "created_at"],
    )
    op.create_index(
        "idx_scheduling_decisions_verdict_time",
        "scheduling_decisions",
        ["verdict", "created_at"],
    )

    op.create_table(
        "thermal_trace",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("temperature", sa.Float(), nullable=False),
        sa.Column("elapsed_seconds", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_thermal_trace_task_id", "thermal_trace", ["task_id"])
    op.create_index(
        "idx_thermal_trace_task_elapsed",
        "thermal_trace",
        ["task_id", "elapsed_seconds"],
    )

    op.create_table(
        "resumption_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("abort_reason", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_resumption_requests_task_id", "resumption_requests", ["task_id"])
    op.create_index("ix_resumption_requests_status", "resumption_requests", ["status"])


def downgrade() -> None:
    op.drop_index("ix_resumption_requests_status", table_name="resumption_requests")
    op.drop_index("ix_resumption_requests_task_id", table_name="resumption_requests")
    op.drop_table("resumption_requests")
    op.drop_index("idx_thermal_trace_task_elapsed", table_name="thermal_trace")
    op.drop_index("ix_thermal_trace_task_id", table_name="thermal_trace")
    op.drop_table("thermal_trace")
    op.drop_index("idx_scheduling_decisions_verdict_time", table_name="scheduling_decisions")
    op.drop_index("idx_scheduling_decisions_task_time", table_name="scheduling_decisions")
    op.drop_index("ix_scheduling_decisions_user_id", table_name="scheduling_decisions")
    op.drop_index("ix_scheduling_decisions_task_id", table_name="scheduling_decisions")
    op.drop_table("scheduling_decisions")
    op.drop_index("idx_abort_episodes_task_time", table_name="abort_episodes")
    op.drop_index("ix_abort_episodes_reason", table_name="abort_episodes")
    op.drop_index("ix_abort_episodes_task_id", table_name="abort_episodes")
    op.drop_table("abort_episodes")
    op.drop_index("ix_task_checkpoints_reason", table_name="task_checkpoints")
    op.drop_index("ix_task_checkpoints_task_id", table_name="task_checkpoints")
    op.drop_table("task_checkpoints")
    op.drop_table("device_profiles")
