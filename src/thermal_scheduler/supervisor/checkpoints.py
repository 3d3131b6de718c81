"""Durable task progress snapshots and resume instructions."""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy.exc import OperationalError

from thermal_scheduler.config import CheckpointSettings
from thermal_scheduler.supervisor.contracts import (
    CheckpointProducer,
    CheckpointWriteError,
    DuplicateCheckpointError,
    call_producer,
)
from thermal_scheduler.supervisor.models import (
    BatchSaveResult,
    Checkpoint,
    CheckpointPayload,
    CheckpointReason,
    CheckpointStats,
    CompletionEstimate,
    ResumeInstructions,
)
from thermal_scheduler.supervisor.repository import SupervisorRepository

logger = logging.getLogger(__name__)

NO_PRODUCER_WARNING = "no checkpoint producer registered; progress carried forward"
PRODUCER_FAILED_WARNING = "checkpoint producer failed; progress carried forward"


class CheckpointStore:
    """Checkpoint persistence with producer registry for emergency saves."""

    def __init__(
        self,
        repository: SupervisorRepository,
        *,
        settings: CheckpointSettings | None = None,
    ) -> None:
        self._repository = repository
        self.settings = settings or CheckpointSettings()
        self._producers: dict[str, CheckpointProducer] = {}
        self._append_locks: dict[str, threading.RLock] = {}
        self._lock = threading.Lock()

    def register_producer(self, task_id: str, producer: CheckpointProducer) -> None:
        with self._lock:
            replaced = task_id in self._producers
            self._producers[task_id] = producer
        if replaced:
            logger.debug("Checkpoint producer replaced for task %s", task_id)

    def unregister_producer(self, task_id: str) -> None:
        with self._lock:
            self._producers.pop(task_id, None)

    def save(
        self,
        task_id: str,
        payload: CheckpointPayload,
        *,
        sequence: int | None = None,
    ) -> Checkpoint:
        """Persist one snapshot with the next sequence number.

        Raises DuplicateCheckpointError for a non-increasing explicit sequence
        and CheckpointWriteError once transient write retries are exhausted.
        """

        _validate_progress(payload.progress)
        return self._append(task_id=task_id, payload=payload, sequence=sequence)

    def emergency_save(self, task_id: str, detail: str) -> Checkpoint | None:
        """Snapshot the task right now; never raises.

        The registered producer is called synchronously. Without a producer,
        or if it fails, a warning checkpoint carrying the previous progress is
        recorded instead. Returns None only when the write itself fails.
        """

        with self._lock:
            producer = self._producers.get(task_id)

        warning: str | None = None
        payload: CheckpointPayload | None = None
        if producer is not None:
            try:
                payload = call_producer(producer)
                _validate_progress(payload.progress)
            except Exception:
                logger.exception("Checkpoint producer failed for task %s", task_id)
                payload = None
                warning = PRODUCER_FAILED_WARNING
        else:
            warning = NO_PRODUCER_WARNING

        try:
            with self._task_lock(task_id):
                if payload is None:
                    payload = self._carry_forward(task_id, detail)
                    logger.warning("Emergency checkpoint for task %s: %s", task_id, warning)
                else:
                    payload.reason = CheckpointReason.EMERGENCY
                    payload.detail = detail
                checkpoint = self._append(task_id=task_id, payload=payload, warning=warning)
        except Exception:
            logger.exception("Emergency checkpoint write failed for task %s", task_id)
            return None

        logger.info(
            "Emergency checkpoint saved: task=%s sequence=%s progress=%s",
            task_id,
            checkpoint.sequence,
            checkpoint.progress,
        )
        return checkpoint

    def latest(self, task_id: str) -> Checkpoint | None:
        return self._repository.latest_checkpoint(task_id)

    def all(self, task_id: str) -> list[Checkpoint]:
        return self._repository.list_checkpoints(task_id)

    def resume_instructions(self, task_id: str) -> ResumeInstructions | None:
        """Build resume data from the most recent checkpoint, if any."""

        checkpoint = self.latest(task_id)
        if checkpoint is None:
            return None
        progress_known = checkpoint.progress is not None
        resume_from = checkpoint.progress if checkpoint.progress is not None else 0.0
        lost = 0.0
        if progress_known and _carried_forward(checkpoint):
            snapshots = [
                item
                for item in self.all(task_id)
                if item.warning is None and item.progress is not None
            ]
            lost = min(_lost_progress(snapshots, checkpoint.created_at), 100.0 - resume_from)
        return ResumeInstructions(
            task_id=task_id,
            checkpoint_id=checkpoint.checkpoint_id,
            skip_to_sequence=checkpoint.sequence,
            resume_from_percent=resume_from,
            state=checkpoint.state,
            output=checkpoint.output,
            reason=checkpoint.reason,
            progress_known=progress_known,
            warning=checkpoint.warning,
            lost_percent=lost,
        )

    def estimate_remaining(
        self,
        task_id: str,
        total_duration_seconds: float,
    ) -> CompletionEstimate:
        checkpoint = self.latest(task_id)
        progress = 0.0
        if checkpoint is not None and checkpoint.progress is not None:
            progress = checkpoint.progress
        return CompletionEstimate(
            progress_percent=progress,
            remaining_seconds=total_duration_seconds * (100.0 - progress) / 100.0,
            last_checkpoint_at=checkpoint.created_at if checkpoint is not None else None,
        )

    def stats(self, task_id: str) -> CheckpointStats:
        checkpoints = self.all(task_id)
        if not checkpoints:
            return CheckpointStats(total=0)
        progresses = [item.progress for item in checkpoints if item.progress is not None]
        reasons = Counter(item.reason.value for item in checkpoints)
        return CheckpointStats(
            total=len(checkpoints),
            progress_min=min(progresses) if progresses else None,
            progress_max=max(progresses) if progresses else None,
            reasons=dict(reasons),
            first_at=checkpoints[0].created_at,
            last_at=checkpoints[-1].created_at,
        )

    def batch_save(
        self,
        entries: Iterable[tuple[str, CheckpointPayload]],
    ) -> list[BatchSaveResult]:
        results: list[BatchSaveResult] = []
        for task_id, payload in entries:
            try:
                checkpoint = self.save(task_id, payload)
            except (CheckpointWriteError, DuplicateCheckpointError, ValueError) as error:
                logger.error("Batch checkpoint failed for task %s: %s", task_id, error)
                results.append(BatchSaveResult(task_id=task_id, success=False, error=str(error)))
                continue
            results.append(BatchSaveResult(task_id=task_id, success=True, checkpoint=checkpoint))
        return results

    def dispose(self, task_id: str) -> int:
        """Delete all checkpoints of a completed task and forget its producer."""

        self.unregister_producer(task_id)
        deleted = self._repository.delete_checkpoints(task_id)
        logger.info("Checkpoints disposed: task=%s deleted=%d", task_id, deleted)
        return deleted

    def _carry_forward(self, task_id: str, detail: str) -> CheckpointPayload:
        previous = self._repository.latest_checkpoint(task_id)
        if previous is None:
            return CheckpointPayload(
                progress=None,
                reason=CheckpointReason.EMERGENCY,
                detail=detail,
            )
        return CheckpointPayload(
            progress=previous.progress,
            state=previous.state,
            output=previous.output,
            reason=CheckpointReason.EMERGENCY,
            detail=detail,
        )

    def _task_lock(self, task_id: str) -> threading.RLock:
        with self._lock:
            lock = self._append_locks.get(task_id)
            if lock is None:
                lock = self._append_locks[task_id] = threading.RLock()
            return lock

    def _append(
        self,
        *,
        task_id: str,
        payload: CheckpointPayload,
        sequence: int | None = None,
        warning: str | None = None,
    ) -> Checkpoint:
        attempts = self.settings.write_retries + 1
        last_error: OperationalError | None = None
        for attempt in range(1, attempts + 1):
            try:
                with self._task_lock(task_id):
                    return self._repository.append_checkpoint(
                        task_id=task_id,
                        payload=payload,
                        sequence=sequence,
                        warning=warning,
                    )
            except OperationalError as error:
                last_error = error
                logger.warning(
                    "Checkpoint write failed for task %s (attempt %d/%d): %s",
                    task_id,
                    attempt,
                    attempts,
                    error,
                )
        raise CheckpointWriteError(
            f"Checkpoint write failed for task {task_id} after {attempts} attempts",
        ) from last_error


def _validate_progress(progress: float | None) -> None:
    if progress is None:
        return
    if not 0 <= progress <= 100:
        raise ValueError(f"Checkpoint progress must be within 0..100, got {progress!r}")


def _carried_forward(checkpoint: Checkpoint) -> bool:
    return checkpoint.reason is CheckpointReason.EMERGENCY and checkpoint.warning in (
        NO_PRODUCER_WARNING,
        PRODUCER_FAILED_WARNING,
    )


def _lost_progress(snapshots: list[Checkpoint], aborted_at: datetime) -> float:
    """Progress made between the last real snapshot and the abort.

    Extrapolated from the rate observed across the snapshots; 0 when fewer
    than two snapshots are spread over time.
    """

    if len(snapshots) < 2:  # noqa: PLR2004
        return 0.0
    first, last = snapshots[0], snapshots[-1]
    span = (last.created_at - first.created_at).total_seconds()
    if span <= 0 or first.progress is None or last.progress is None:
        return 0.0
    rate = max(0.0, (last.progress - first.progress) / span)
    gap = max(0.0, (aborted_at - last.created_at).total_seconds())
    return rate * gap
