from __future__ import annotations

from pathlib import Path

import allure

from fakes import FakeClock, RecordingSuspend, SequenceTemperatureSource
from thermal_scheduler.config import Settings, SupervisorSettings
from thermal_scheduler.supervisor.models import MonitorState, Task
from thermal_scheduler.supervisor.services import SupervisorService

pytestmark = [
    allure.epic("Thermal Scheduling"),
    allure.feature("Component Wiring"),
]

TASK = Task(task_id="sync", category="download", power_watts=20, duration_seconds=600)


def _service(tmp_path: Path, cache_seconds: float, source: SequenceTemperatureSource, clock):
    settings = Settings(
        db_path=tmp_path / "service.db",
        device_id="laptop",
        supervisor=SupervisorSettings(sensor_cache_seconds=cache_seconds),
    )
    return SupervisorService(settings=settings, temperature_source=source, clock=clock)


def test_forecast_and_monitoring_share_one_sensor_read(tmp_path: Path) -> None:
    clock = FakeClock()
    source = SequenceTemperatureSource([50.0, 64.0])
    service = _service(tmp_path, 2.0, source, clock)
    try:
        decision = service.coordinator.decide(TASK, "alice")
        handle = service.abort_supervisor.start("sync", TASK, RecordingSuspend(), run_loop=False)

        assert source.reads == 1
        assert handle.initial_temperature == 50.0
        assert service.repository.list_decisions(task_id="sync")[0].verdict is decision.verdict

        clock.advance(2.5)
        state = service.abort_supervisor.check_health("sync")

        assert state is MonitorState.RUNNING
        assert source.reads == 2
        stats = service.abort_supervisor.stats("sync")
        assert stats is not None
        assert stats.peak_temperature == 64.0
    finally:
        service.close()


def test_zero_sensor_cache_reads_every_time(tmp_path: Path) -> None:
    source = SequenceTemperatureSource([50.0, 52.0, 54.0])
    service = _service(tmp_path, 0.0, source, FakeClock())
    try:
        service.abort_supervisor.start("sync", TASK, RecordingSuspend(), run_loop=False)
        service.abort_supervisor.check_health("sync")

        assert source.reads == 2
        assert service.temperature_source.read().temperature == 54.0
    finally:
        service.close()
