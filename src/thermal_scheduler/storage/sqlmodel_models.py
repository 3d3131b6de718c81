"""SQLModel ORM tables for supervisor storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, Index, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class DeviceProfileRow(SQLModel, table=True):
    __tablename__ = "device_profiles"  # type: ignore[bad-override]

    device_id: str = Field(primary_key=True)
    name: str
    thermal_mass: float
    cooling_rate: float
    cooling_effectiveness: float
    thermal_efficiency: float
    optimal_max: float
    safe_max: float
    warning_max: float
    critical: float
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskCheckpointRow(SQLModel, table=True):
    __tablename__ = "task_checkpoints"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint(
            "task_id",
            "sequence",
            name="uq_task_checkpoints_task_sequence",
        ),
    )

    checkpoint_id: str = Field(primary_key=True)
    task_id: str = Field(index=True)
    sequence: int
    progress: float | None = None
    state_json: str = Field(sa_column=Column(Text, nullable=False))
    output_json: str = Field(sa_column=Column(Text, nullable=False))
    reason: str = Field(index=True)
    detail: str | None = None
    warning: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AbortEpisodeRow(SQLModel, table=True):
    __tablename__ = "abort_episodes"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_abort_episodes_task_time", "task_id", "created_at"),)

    episode_id: str = Field(primary_key=True)
    task_id: str = Field(index=True)
    reason: str = Field(index=True)
    temperature: float | None = None
    peak_temperature: float
    elapsed_seconds: int
    thermal_alerts: int = 0
    power_alerts: int = 0
    checkpoint_saved: bool = False
    suspended: bool = False
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class SchedulingDecisionRow(SQLModel, table=True):
    __tablename__ = "scheduling_decisions"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_scheduling_decisions_task_time", "task_id", "created_at"),
        Index("idx_scheduling_decisions_verdict_time", "verdict", "created_at"),
        CheckConstraint(
            "verdict IN ('accept', 'defer', 'sleep', 'idle')",
            name="ck_scheduling_decisions_verdict",
        ),
    )

    decision_id: str = Field(primary_key=True)
    task_id: str = Field(index=True)
    user_id: str = Field(index=True)
    verdict: str
    reason: str = Field(sa_column=Column(Text, nullable=False))
    checks_json: str | None = Field(default=None, sa_column=Column(Text))
    retry_after_minutes: int | None = None
    next_window: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ThermalTraceRow(SQLModel, table=True):
    __tablename__ = "thermal_trace"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_thermal_trace_task_elapsed", "task_id", "elapsed_seconds"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(index=True)
    temperature: float
    elapsed_seconds: float
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ResumptionRequestRow(SQLModel, table=True):
    __tablename__ = "resumption_requests"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(index=True)
    abort_reason: str
    status: str = Field(index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
