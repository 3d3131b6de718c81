from __future__ import annotations

from datetime import timedelta

import allure
import pytest

from fakes import RecordingSleep, SequenceTemperatureSource
from thermal_scheduler.storage.common import utc_now
from thermal_scheduler.supervisor.coordinator import DecisionCoordinator
from thermal_scheduler.supervisor.models import (
    DecisionVerdict,
    DeviceThermalProfile,
    EnergyResult,
    PolicyResult,
    Task,
    TaskUrgency,
)
from thermal_scheduler.supervisor.predictor import ThermalPredictor
from thermal_scheduler.supervisor.profiles import RepositoryProfileStore
from thermal_scheduler.supervisor.repository import SupervisorRepository

pytestmark = [
    allure.epic("Thermal Scheduling"),
    allure.feature("Scheduling Decisions"),
]

LAPTOP = DeviceThermalProfile(
    device_id="laptop",
    name="Test Laptop",
    safe_max=60.0,
    warning_max=70.0,
    critical=80.0,
    cooling_rate=1.5,
)


def _coordinator(
    repository: SupervisorRepository,
    *,
    temperature: float = 40.0,
    **kwargs,
) -> tuple[DecisionCoordinator, SequenceTemperatureSource]:
    store = RepositoryProfileStore(repository)
    store.save(LAPTOP)
    source = SequenceTemperatureSource([temperature])
    coordinator = DecisionCoordinator(
        ThermalPredictor(source),
        repository,
        store,
        device_id="laptop",
        **kwargs,
    )
    return coordinator, source


def _download(task_id: str, urgency: TaskUrgency = TaskUrgency.NORMAL) -> Task:
    return Task(task_id=task_id, category="download", power_watts=50, urgency=urgency)


def test_empty_queue_sleeps_and_busy_queue_accepts(repository: SupervisorRepository) -> None:
    sleep = RecordingSleep()
    occupancy = {"value": 0}
    coordinator, _ = _coordinator(
        repository,
        policy_check=lambda _user: PolicyResult(allowed=True),
        energy_check=lambda _task: EnergyResult(clean=True),
        queue_occupancy=lambda: occupancy["value"],
        device_sleep=sleep,
    )

    sleeping = coordinator.decide(_download("t-1"), "alice")
    occupancy["value"] = 3
    accepted = coordinator.decide(_download("t-2"), "alice")

    assert sleeping.verdict is DecisionVerdict.SLEEP
    assert sleeping.reason
    assert sleep.suspends == ["queue_empty"]
    assert accepted.verdict is DecisionVerdict.ACCEPT
    assert accepted.checks["queue"] == {"known": True, "occupancy": 3}
    assert accepted.checks["thermal"]["passed"] is True


def test_every_decision_is_logged_with_sub_check_outcomes(
    repository: SupervisorRepository,
) -> None:
    coordinator, _ = _coordinator(repository, queue_occupancy=lambda: 2)

    decision = coordinator.decide(_download("logged"), "alice")

    stored = repository.list_decisions(task_id="logged")
    assert [item.decision_id for item in stored] == [decision.decision_id]
    assert stored[0].checks["thermal"]["verdict"] == "proceed"
    assert stored[0].checks["thermal"]["profile_id"] == "laptop"
    assert coordinator.decision_counts()["accept"] == 1
    assert coordinator.decision_counts()["defer"] == 0


def test_critical_forecast_defers_while_cached(repository: SupervisorRepository) -> None:
    coordinator, source = _coordinator(repository, temperature=70.0, queue_occupancy=lambda: 1)
    task = Task(task_id="train", category="ml-training", power_watts=1_000, segmentable=True)

    first = coordinator.decide(task, "alice")
    source.set(35.0)
    second = coordinator.decide(task, "alice")

    assert first.verdict is DecisionVerdict.DEFER
    assert "device-damage risk" in first.reason
    assert second.verdict is DecisionVerdict.DEFER
    assert first.checks["thermal"]["verdict"] == "reject"


def test_wait_forecast_defers_with_retry_estimate(repository: SupervisorRepository) -> None:
    coordinator, _ = _coordinator(repository, temperature=65.0, queue_occupancy=lambda: 1)
    task = Task(task_id="encode", category="video-encoding", power_watts=400, duration_seconds=7_200)

    decision = coordinator.decide(task, "alice")

    assert decision.verdict is DecisionVerdict.DEFER
    assert decision.retry_after_minutes == 8


def test_segment_forecast_attaches_plan_and_continues(repository: SupervisorRepository) -> None:
    coordinator, _ = _coordinator(repository, temperature=65.0, queue_occupancy=lambda: 1)
    task = Task(
        task_id="encode",
        category="video-encoding",
        power_watts=400,
        duration_seconds=7_200,
        segmentable=True,
    )

    decision = coordinator.decide(task, "alice")

    assert decision.verdict is DecisionVerdict.ACCEPT
    assert len(task.segment_plan) == 2
    assert decision.checks["thermal"]["segments"] == 2


def test_policy_denial_defers_unless_critical(repository: SupervisorRepository) -> None:
    window = utc_now() + timedelta(hours=2)
    coordinator, _ = _coordinator(
        repository,
        policy_check=lambda _user: PolicyResult(
            allowed=False,
            reason="outside delegation hours",
            next_window=window,
        ),
        queue_occupancy=lambda: 1,
    )

    deferred = coordinator.decide(_download("normal"), "alice")
    critical = coordinator.decide(_download("urgent", TaskUrgency.CRITICAL), "alice")

    assert deferred.verdict is DecisionVerdict.DEFER
    assert "outside delegation hours" in deferred.reason
    assert deferred.next_window == window
    assert deferred.retry_after_minutes in {119, 120}
    assert critical.verdict is DecisionVerdict.ACCEPT


@pytest.mark.parametrize(
    ("urgency", "expected"),
    [
        (TaskUrgency.LOW, DecisionVerdict.DEFER),
        (TaskUrgency.NORMAL, DecisionVerdict.DEFER),
        (TaskUrgency.HIGH, DecisionVerdict.ACCEPT),
        (TaskUrgency.CRITICAL, DecisionVerdict.ACCEPT),
    ],
)
def test_dirty_grid_defers_only_flexible_tasks(
    repository: SupervisorRepository,
    urgency: TaskUrgency,
    expected: DecisionVerdict,
) -> None:
    clean_at = utc_now() + timedelta(minutes=45)
    coordinator, _ = _coordinator(
        repository,
        energy_check=lambda _task: EnergyResult(
            clean=False,
            reason="coal peak",
            next_clean_window=clean_at,
        ),
        queue_occupancy=lambda: 1,
    )

    decision = coordinator.decide(_download(f"task-{urgency.value}", urgency), "alice")

    assert decision.verdict is expected
    if expected is DecisionVerdict.DEFER:
        assert decision.next_window == clean_at
        assert "coal peak" in decision.reason


def test_failing_sub_checks_fail_open(repository: SupervisorRepository) -> None:
    def broken_policy(_user: str) -> PolicyResult:
        raise RuntimeError("policy service down")

    def broken_energy(_task: Task) -> EnergyResult:
        raise TimeoutError("grid API timeout")

    coordinator, _ = _coordinator(
        repository,
        policy_check=broken_policy,
        energy_check=broken_energy,
        queue_occupancy=lambda: 4,
    )

    decision = coordinator.decide(_download("resilient"), "alice")

    assert decision.verdict is DecisionVerdict.ACCEPT
    assert decision.checks["policy"]["passed"] is True
    assert "policy service down" in decision.checks["policy"]["error"]
    assert decision.checks["energy"]["passed"] is True


def test_predictor_failure_is_treated_as_proceed(
    repository: SupervisorRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    coordinator, _ = _coordinator(repository, queue_occupancy=lambda: 1)

    def broken(*_args, **_kwargs):
        raise RuntimeError("model crashed")

    monkeypatch.setattr(coordinator.predictor, "forecast", broken)

    decision = coordinator.decide(_download("no-forecast"), "alice")

    assert decision.verdict is DecisionVerdict.ACCEPT
    assert decision.checks["thermal"] == {"passed": True, "error": "model crashed"}


def test_unknown_occupancy_is_idle_and_failing_occupancy_accepts(
    repository: SupervisorRepository,
) -> None:
    no_capability, _ = _coordinator(repository)
    unknown, _ = _coordinator(repository, queue_occupancy=lambda: None)

    def broken_queue() -> int | None:
        raise RuntimeError("queue unreachable")

    failing, _ = _coordinator(repository, queue_occupancy=broken_queue)

    assert no_capability.decide(_download("a"), "alice").verdict is DecisionVerdict.IDLE
    assert unknown.decide(_download("b"), "alice").verdict is DecisionVerdict.IDLE
    assert failing.decide(_download("c"), "alice").verdict is DecisionVerdict.ACCEPT


def test_degraded_forecast_continues_and_is_recorded(repository: SupervisorRepository) -> None:
    coordinator, source = _coordinator(repository, queue_occupancy=lambda: 1)
    source.set(None)

    decision = coordinator.decide(_download("blind"), "alice")

    assert decision.verdict is DecisionVerdict.ACCEPT
    assert decision.checks["thermal"]["degraded"] is True


def test_missing_profile_falls_back_to_generic(repository: SupervisorRepository) -> None:
    coordinator = DecisionCoordinator(
        ThermalPredictor(SequenceTemperatureSource([40.0])),
        repository,
        RepositoryProfileStore(repository),
        device_id="unknown-device",
        queue_occupancy=lambda: 1,
    )

    decision = coordinator.decide(_download("generic"), "alice")

    assert decision.verdict is DecisionVerdict.ACCEPT
    assert decision.checks["thermal"]["profile_id"] == "unknown-device"


def test_unexpected_pipeline_error_accepts(
    repository: SupervisorRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    coordinator, _ = _coordinator(repository, queue_occupancy=lambda: 1)

    def broken(*_args, **_kwargs):
        raise KeyError("boom")

    monkeypatch.setattr(coordinator, "_thermal_check", broken)

    decision = coordinator.decide(_download("oops"), "alice")

    assert decision.verdict is DecisionVerdict.ACCEPT
    assert decision.checks["error"]["type"] == "KeyError"


def test_decision_log_failure_keeps_verdict(
    repository: SupervisorRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    sleep = RecordingSleep()
    coordinator, _ = _coordinator(repository, queue_occupancy=lambda: 0, device_sleep=sleep)

    def broken(_payload):
        raise RuntimeError("disk full")

    monkeypatch.setattr(repository, "add_decision", broken)

    decision = coordinator.decide(_download("unlogged"), "alice")

    assert decision.verdict is DecisionVerdict.SLEEP
    assert decision.decision_id
