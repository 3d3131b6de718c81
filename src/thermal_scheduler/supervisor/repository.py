"""Persistent log repository for supervisor records."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, literal_column
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from thermal_scheduler.storage.alembic_runner import upgrade_head
from thermal_scheduler.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from thermal_scheduler.storage.sqlmodel_models import (
    AbortEpisodeRow,
    DeviceProfileRow,
    ResumptionRequestRow,
    SchedulingDecisionRow,
    TaskCheckpointRow,
    ThermalTraceRow,
)
from thermal_scheduler.supervisor.errors import CheckpointWriteError, DuplicateCheckpointError
from thermal_scheduler.supervisor.models import (
    AbortEpisode,
    AbortReason,
    Checkpoint,
    CheckpointPayload,
    CheckpointReason,
    Decision,
    DecisionVerdict,
    DecisionWrite,
    DeviceThermalProfile,
    ResumptionRequest,
    ThermalTracePoint,
)

RESUMPTION_PENDING = "pending"
SEQUENCE_CLAIM_ATTEMPTS = 32
_ROWID = literal_column("rowid")


class SupervisorRepository:
    """Append-only log persistence facade backed by SQLModel + SQLite."""

    def __init__(
        self,
        db_path: Path,
        *,
        sqlite_busy_timeout_ms: int = 5_000,
    ) -> None:
        self.db_path = db_path
        self.sqlite_busy_timeout_ms = sqlite_busy_timeout_ms
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    # -- device profiles -------------------------------------------------------

    def upsert_profile(self, profile: DeviceThermalProfile) -> DeviceThermalProfile:
        """Create or replace the thermal profile of a device."""

        now = utc_now()
        with Session(self.engine) as session:
            row = session.exec(
                select(DeviceProfileRow).where(DeviceProfileRow.device_id == profile.device_id),
            ).one_or_none()
            if row is None:
                row = DeviceProfileRow(
                    device_id=profile.device_id,
                    name=profile.name,
                    thermal_mass=profile.thermal_mass,
                    cooling_rate=profile.cooling_rate,
                    cooling_effectiveness=profile.cooling_effectiveness,
                    thermal_efficiency=profile.thermal_efficiency,
                    optimal_max=profile.optimal_max,
                    safe_max=profile.safe_max,
                    warning_max=profile.warning_max,
                    critical=profile.critical,
                    created_at=to_db_datetime(now),
                    updated_at=to_db_datetime(now),
                )
            else:
                row.name = profile.name
                row.thermal_mass = profile.thermal_mass
                row.cooling_rate = profile.cooling_rate
                row.cooling_effectiveness = profile.cooling_effectiveness
                row.thermal_efficiency = profile.thermal_efficiency
                row.optimal_max = profile.optimal_max
                row.safe_max = profile.safe_max
                row.warning_max = profile.warning_max
                row.critical = profile.critical
                row.updated_at = to_db_datetime(now)
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_profile(row)

    def get_profile(self, device_id: str) -> DeviceThermalProfile | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(DeviceProfileRow).where(DeviceProfileRow.device_id == device_id),
            ).one_or_none()
        return _to_profile(row) if row is not None else None

    def list_profiles(self) -> list[DeviceThermalProfile]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(DeviceProfileRow).order_by(col(DeviceProfileRow.device_id).asc()),
            ).all()
        return [_to_profile(row) for row in rows]

    # -- checkpoints -----------------------------------------------------------

    def max_checkpoint_sequence(self, task_id: str) -> int:
        """Highest stored sequence for a task, 0 when none."""

        with Session(self.engine) as session:
            return _max_sequence(session=session, task_id=task_id)

    def append_checkpoint(
        self,
        *,
        task_id: str,
        payload: CheckpointPayload,
        sequence: int | None = None,
        warning: str | None = None,
    ) -> Checkpoint:
        """Append one checkpoint row with the next (or an explicit) sequence.

        Raises DuplicateCheckpointError when an explicit sequence is not above
        the current maximum for the task. Without one, a sequence claimed by a
        concurrent writer is re-read and the insert retried.
        """

        if sequence is not None:
            return self._insert_checkpoint(
                task_id=task_id,
                payload=payload,
                sequence=sequence,
                warning=warning,
            )

        last_error: DuplicateCheckpointError | None = None
        for _ in range(SEQUENCE_CLAIM_ATTEMPTS):
            try:
                return self._insert_checkpoint(
                    task_id=task_id,
                    payload=payload,
                    sequence=None,
                    warning=warning,
                )
            except DuplicateCheckpointError as error:
                last_error = error
        raise CheckpointWriteError(
            f"Checkpoint sequence for task {task_id} kept colliding with concurrent "
            f"writers after {SEQUENCE_CLAIM_ATTEMPTS} attempts",
        ) from last_error

    def _insert_checkpoint(
        self,
        *,
        task_id: str,
        payload: CheckpointPayload,
        sequence: int | None,
        warning: str | None,
    ) -> Checkpoint:
        now = utc_now()
        with Session(self.engine) as session:
            current = _max_sequence(session=session, task_id=task_id)
            target = current + 1 if sequence is None else sequence
            if target <= current:
                raise DuplicateCheckpointError(task_id, target, current)

            row = TaskCheckpointRow(
                checkpoint_id=str(uuid4()),
                task_id=task_id,
                sequence=target,
                progress=payload.progress,
                state_json=_dump_blob(payload.state),
                output_json=_dump_blob(payload.output),
                reason=payload.reason.value,
                detail=payload.detail,
                warning=warning,
                created_at=to_db_datetime(now),
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise DuplicateCheckpointError(task_id, target, current) from error
            session.refresh(row)
            return _to_checkpoint(row)

    def latest_checkpoint(self, task_id: str) -> Checkpoint | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(TaskCheckpointRow)
                .where(TaskCheckpointRow.task_id == task_id)
                .order_by(col(TaskCheckpointRow.sequence).desc())
                .limit(1),
            ).one_or_none()
        return _to_checkpoint(row) if row is not None else None

    def list_checkpoints(self, task_id: str) -> list[Checkpoint]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskCheckpointRow)
                .where(TaskCheckpointRow.task_id == task_id)
                .order_by(col(TaskCheckpointRow.sequence).asc()),
            ).all()
        return [_to_checkpoint(row) for row in rows]

    def delete_checkpoints(self, task_id: str) -> int:
        """Purge every checkpoint of a task; returns deleted row count."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_delete(TaskCheckpointRow).where(col(TaskCheckpointRow.task_id) == task_id),
            )
            session.commit()
            return int(result.rowcount or 0)

    # -- abort episodes --------------------------------------------------------

    def add_abort_episode(  # noqa: PLR0913
        self,
        *,
        task_id: str,
        reason: AbortReason,
        temperature: float | None,
        peak_temperature: float,
        elapsed_seconds: int,
        thermal_alerts: int,
        power_alerts: int,
        checkpoint_saved: bool,
        suspended: bool,
    ) -> AbortEpisode:
        with Session(self.engine) as session:
            row = AbortEpisodeRow(
                episode_id=str(uuid4()),
                task_id=task_id,
                reason=reason.value,
                temperature=temperature,
                peak_temperature=peak_temperature,
                elapsed_seconds=elapsed_seconds,
                thermal_alerts=thermal_alerts,
                power_alerts=power_alerts,
                checkpoint_saved=checkpoint_saved,
                suspended=suspended,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_episode(row)

    def list_abort_episodes(
        self,
        *,
        task_id: str | None = None,
        limit: int = 50,
    ) -> list[AbortEpisode]:
        with Session(self.engine) as session:
            statement = (
                select(AbortEpisodeRow)
                .order_by(col(AbortEpisodeRow.created_at).desc(), _ROWID.desc())
                .limit(limit)
            )
            if task_id is not None:
                statement = statement.where(AbortEpisodeRow.task_id == task_id)
            rows = session.exec(statement).all()
        return [_to_episode(row) for row in rows]

    # -- scheduling decisions --------------------------------------------------

    def add_decision(self, payload: DecisionWrite) -> Decision:
        """Append one decision to the audit log."""

        with Session(self.engine) as session:
            row = SchedulingDecisionRow(
                decision_id=str(uuid4()),
                task_id=payload.task_id,
                user_id=payload.user_id,
                verdict=payload.verdict.value,
                reason=payload.reason,
                checks_json=json.dumps(
                    payload.checks,
                    ensure_ascii=False,
                    sort_keys=True,
                    default=str,
                )
                if payload.checks
                else None,
                retry_after_minutes=payload.retry_after_minutes,
                next_window=(
                    to_utc_aware_datetime(payload.next_window).isoformat()
                    if payload.next_window is not None
                    else None
                ),
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_decision(row)

    def list_decisions(
        self,
        *,
        task_id: str | None = None,
        limit: int = 50,
    ) -> list[Decision]:
        with Session(self.engine) as session:
            statement = (
                select(SchedulingDecisionRow)
                .order_by(col(SchedulingDecisionRow.created_at).desc(), _ROWID.desc())
                .limit(limit)
            )
            if task_id is not None:
                statement = statement.where(SchedulingDecisionRow.task_id == task_id)
            rows = session.exec(statement).all()
        return [_to_decision(row) for row in rows]

    def count_decisions_by_verdict(self, *, since: datetime) -> dict[DecisionVerdict, int]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(SchedulingDecisionRow.verdict, func.count())
                .where(col(SchedulingDecisionRow.created_at) >= to_db_datetime(since))
                .group_by(col(SchedulingDecisionRow.verdict)),
            ).all()
        return {DecisionVerdict(verdict): int(count) for verdict, count in rows}

    # -- thermal trace ---------------------------------------------------------

    def add_trace_point(self, *, task_id: str, temperature: float, elapsed_seconds: float) -> None:
        with Session(self.engine) as session:
            session.add(
                ThermalTraceRow(
                    task_id=task_id,
                    temperature=temperature,
                    elapsed_seconds=elapsed_seconds,
                    created_at=to_db_datetime(utc_now()),
                ),
            )
            session.commit()

    def list_trace(self, task_id: str) -> list[ThermalTracePoint]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(ThermalTraceRow)
                .where(ThermalTraceRow.task_id == task_id)
                .order_by(col(ThermalTraceRow.elapsed_seconds).asc(), col(ThermalTraceRow.id).asc()),
            ).all()
        return [
            ThermalTracePoint(
                task_id=row.task_id,
                temperature=row.temperature,
                elapsed_seconds=row.elapsed_seconds,
                created_at=to_utc_aware_datetime(row.created_at),
            )
            for row in rows
        ]

    # -- resumption requests ---------------------------------------------------

    def add_resumption_request(self, *, task_id: str, abort_reason: AbortReason) -> None:
        with Session(self.engine) as session:
            session.add(
                ResumptionRequestRow(
                    task_id=task_id,
                    abort_reason=abort_reason.value,
                    status=RESUMPTION_PENDING,
                    created_at=to_db_datetime(utc_now()),
                ),
            )
            session.commit()

    def list_resumption_requests(self, *, status: str | None = None) -> list[ResumptionRequest]:
        with Session(self.engine) as session:
            statement = select(ResumptionRequestRow).order_by(
                col(ResumptionRequestRow.created_at).asc(),
            )
            if status is not None:
                statement = statement.where(ResumptionRequestRow.status == status)
            rows = session.exec(statement).all()
        return [
            ResumptionRequest(
                request_id=row.id or 0,
                task_id=row.task_id,
                abort_reason=row.abort_reason,
                status=row.status,
                created_at=to_utc_aware_datetime(row.created_at),
            )
            for row in rows
        ]


def _max_sequence(*, session: Session, task_id: str) -> int:
    value = session.exec(
        select(func.max(TaskCheckpointRow.sequence)).where(TaskCheckpointRow.task_id == task_id),
    ).one()
    return int(value or 0)


def _dump_blob(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def _load_blob(raw: str | None) -> Any:
    if not raw:
        return None
    return json.loads(raw)


def _to_profile(row: DeviceProfileRow) -> DeviceThermalProfile:
    return DeviceThermalProfile(
        device_id=row.device_id,
        name=row.name,
        thermal_mass=row.thermal_mass,
        cooling_rate=row.cooling_rate,
        cooling_effectiveness=row.cooling_effectiveness,
        thermal_efficiency=row.thermal_efficiency,
        optimal_max=row.optimal_max,
        safe_max=row.safe_max,
        warning_max=row.warning_max,
        critical=row.critical,
    )


def _to_checkpoint(row: TaskCheckpointRow) -> Checkpoint:
    return Checkpoint(
        checkpoint_id=row.checkpoint_id,
        task_id=row.task_id,
        sequence=row.sequence,
        progress=row.progress,
        state=_load_blob(row.state_json),
        output=_load_blob(row.output_json),
        reason=CheckpointReason(row.reason),
        detail=row.detail,
        warning=row.warning,
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_episode(row: AbortEpisodeRow) -> AbortEpisode:
    return AbortEpisode(
        episode_id=row.episode_id,
        task_id=row.task_id,
        reason=AbortReason(row.reason),
        temperature=row.temperature,
        peak_temperature=row.peak_temperature,
        elapsed_seconds=row.elapsed_seconds,
        thermal_alerts=row.thermal_alerts,
        power_alerts=row.power_alerts,
        checkpoint_saved=row.checkpoint_saved,
        suspended=row.suspended,
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_decision(row: SchedulingDecisionRow) -> Decision:
    checks: dict[str, dict[str, Any]] = {}
    if row.checks_json:
        parsed = json.loads(row.checks_json)
        if isinstance(parsed, dict):
            checks = parsed
    return Decision(
        decision_id=row.decision_id,
        task_id=row.task_id,
        user_id=row.user_id,
        verdict=DecisionVerdict(row.verdict),
        reason=row.reason,
        checks=checks,
        retry_after_minutes=row.retry_after_minutes,
        next_window=(
            to_utc_aware_datetime(datetime.fromisoformat(row.next_window))
            if row.next_window
            else None
        ),
        created_at=to_utc_aware_datetime(row.created_at),
    )
