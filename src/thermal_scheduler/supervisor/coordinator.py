"""Scheduling decision pipeline: thermal, policy, energy, queue."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from thermal_scheduler.storage.common import to_utc_aware_datetime, utc_now
from thermal_scheduler.supervisor.contracts import (
    DeviceProfileStore,
    DeviceSleep,
    EnergyCheck,
    PolicyCheck,
    QueueOccupancy,
)
from thermal_scheduler.supervisor.models import (
    Decision,
    DecisionVerdict,
    DecisionWrite,
    ForecastVerdict,
    Task,
    TaskUrgency,
)
from thermal_scheduler.supervisor.predictor import ThermalPredictor
from thermal_scheduler.supervisor.profiles import resolve_profile
from thermal_scheduler.supervisor.repository import SupervisorRepository

logger = logging.getLogger(__name__)

QUEUE_EMPTY_SLEEP_REASON = "queue_empty"
_ENERGY_DEFERRABLE = {TaskUrgency.LOW, TaskUrgency.NORMAL}


class DecisionCoordinator:
    """Runs the ordered sub-checks and records one decision per call.

    Sub-check failures are fail-open: a broken policy, energy or thermal
    check never defers work on its own.
    """

    def __init__(  # noqa: PLR0913
        self,
        predictor: ThermalPredictor,
        repository: SupervisorRepository,
        profile_store: DeviceProfileStore | None,
        *,
        device_id: str,
        policy_check: PolicyCheck | None = None,
        energy_check: EnergyCheck | None = None,
        queue_occupancy: QueueOccupancy | None = None,
        device_sleep: DeviceSleep | None = None,
    ) -> None:
        self.predictor = predictor
        self.repository = repository
        self.profile_store = profile_store
        self.device_id = device_id
        self.policy_check = policy_check
        self.energy_check = energy_check
        self.queue_occupancy = queue_occupancy
        self.device_sleep = device_sleep

    def decide(self, task: Task, user_id: str) -> Decision:
        """Return Accept, Defer, Sleep or Idle for one pending task."""

        checks: dict[str, dict[str, Any]] = {}
        try:
            payload = self._evaluate(task, user_id, checks)
        except Exception as error:
            logger.exception("Scheduling decision failed for task %s", task.task_id)
            checks["error"] = {"message": str(error), "type": type(error).__name__}
            payload = DecisionWrite(
                task_id=task.task_id,
                user_id=user_id,
                verdict=DecisionVerdict.ACCEPT,
                reason=f"Decision pipeline error, accepting: {error}",
                checks=checks,
            )

        logger.info(
            "Scheduling decision: task=%s verdict=%s reason=%s",
            task.task_id,
            payload.verdict.value,
            payload.reason,
        )
        try:
            return self.repository.add_decision(payload)
        except Exception:
            logger.exception("Decision log write failed for task %s", task.task_id)
            return Decision(
                decision_id=str(uuid4()),
                task_id=payload.task_id,
                user_id=payload.user_id,
                verdict=payload.verdict,
                reason=payload.reason,
                checks=payload.checks,
                retry_after_minutes=payload.retry_after_minutes,
                next_window=payload.next_window,
                created_at=utc_now(),
            )

    def decision_counts(self, hours: int = 24) -> dict[str, int]:
        """Verdict histogram over the last `hours`, zero-filled."""

        since = utc_now() - timedelta(hours=hours)
        counts = self.repository.count_decisions_by_verdict(since=since)
        return {verdict.value: counts.get(verdict, 0) for verdict in DecisionVerdict}

    def _evaluate(
        self,
        task: Task,
        user_id: str,
        checks: dict[str, dict[str, Any]],
    ) -> DecisionWrite:
        def result(
            verdict: DecisionVerdict,
            reason: str,
            *,
            retry_after_minutes: int | None = None,
            next_window: datetime | None = None,
        ) -> DecisionWrite:
            return DecisionWrite(
                task_id=task.task_id,
                user_id=user_id,
                verdict=verdict,
                reason=reason,
                checks=checks,
                retry_after_minutes=retry_after_minutes,
                next_window=next_window,
            )

        thermal_veto = self._thermal_check(task, checks)
        if thermal_veto is not None:
            reason, retry_after = thermal_veto
            return result(DecisionVerdict.DEFER, reason, retry_after_minutes=retry_after)

        if self.policy_check is not None:
            try:
                policy = self.policy_check(user_id)
            except Exception as error:
                logger.exception("Policy check failed for user %s, allowing", user_id)
                checks["policy"] = {"passed": True, "error": str(error)}
            else:
                checks["policy"] = {"passed": policy.allowed, "reason": policy.reason}
                if not policy.allowed and task.urgency is not TaskUrgency.CRITICAL:
                    return result(
                        DecisionVerdict.DEFER,
                        f"Policy: {policy.reason or 'outside delegation window'}",
                        retry_after_minutes=_minutes_until(policy.next_window),
                        next_window=policy.next_window,
                    )

        if self.energy_check is not None:
            try:
                energy = self.energy_check(task)
            except Exception as error:
                logger.exception("Energy check failed for task %s, allowing", task.task_id)
                checks["energy"] = {"passed": True, "error": str(error)}
            else:
                checks["energy"] = {"passed": energy.clean, "reason": energy.reason}
                if not energy.clean and task.urgency in _ENERGY_DEFERRABLE:
                    return result(
                        DecisionVerdict.DEFER,
                        f"Energy: {energy.reason or 'grid is not clean'}",
                        retry_after_minutes=_minutes_until(energy.next_clean_window),
                        next_window=energy.next_clean_window,
                    )

        if self.queue_occupancy is None:
            checks["queue"] = {"known": False}
            return result(DecisionVerdict.IDLE, "Queue occupancy unknown")
        try:
            occupancy = self.queue_occupancy()
        except Exception as error:
            logger.exception("Queue occupancy check failed, accepting task %s", task.task_id)
            checks["queue"] = {"known": False, "error": str(error)}
            return result(DecisionVerdict.ACCEPT, "Queue check failed; accepting")
        checks["queue"] = {"known": occupancy is not None, "occupancy": occupancy}
        if occupancy is None:
            return result(DecisionVerdict.IDLE, "Queue occupancy unknown")
        if occupancy == 0:
            self._sleep_device()
            return result(DecisionVerdict.SLEEP, "Queue is empty; device may sleep")
        return result(DecisionVerdict.ACCEPT, f"All checks passed ({occupancy} queued)")

    def _thermal_check(
        self,
        task: Task,
        checks: dict[str, dict[str, Any]],
    ) -> tuple[str, int | None] | None:
        profile = resolve_profile(self.profile_store, self.device_id)
        try:
            forecast = self.predictor.forecast(task, profile)
        except Exception as error:
            logger.exception("Thermal forecast failed for task %s, proceeding", task.task_id)
            checks["thermal"] = {"passed": True, "error": str(error)}
            return None

        details: dict[str, Any] = {"passed": forecast.safe_to_run}
        details.update(forecast.to_details())
        checks["thermal"] = details

        if forecast.verdict is ForecastVerdict.REJECT:
            return f"Thermal: device-damage risk. {forecast.reason}", None
        if forecast.verdict is ForecastVerdict.WAIT:
            return f"Thermal: {forecast.reason}", forecast.wait_minutes
        if forecast.verdict is ForecastVerdict.SEGMENT:
            task.segment_plan = forecast.segment_plan
        return None

    def _sleep_device(self) -> None:
        if self.device_sleep is None:
            return
        try:
            self.device_sleep.suspend(QUEUE_EMPTY_SLEEP_REASON)
        except Exception:
            logger.exception("Device sleep request failed")


def _minutes_until(moment: datetime | None) -> int | None:
    if moment is None:
        return None
    seconds = (to_utc_aware_datetime(moment) - utc_now()).total_seconds()
    return max(0, math.ceil(seconds / 60))
