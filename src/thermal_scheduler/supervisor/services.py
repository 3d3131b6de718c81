"""Wiring of the supervisor components around one repository and sensor."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from thermal_scheduler.config import Settings
from thermal_scheduler.supervisor.abort_monitor import AbortSupervisor
from thermal_scheduler.supervisor.checkpoints import CheckpointStore
from thermal_scheduler.supervisor.contracts import (
    DeviceSleep,
    EnergyCheck,
    PolicyCheck,
    PowerStatus,
    QueueOccupancy,
    TemperatureSource,
)
from thermal_scheduler.supervisor.coordinator import DecisionCoordinator
from thermal_scheduler.supervisor.predictor import ThermalPredictor
from thermal_scheduler.supervisor.profiles import RepositoryProfileStore, resolve_profile
from thermal_scheduler.supervisor.repository import SupervisorRepository
from thermal_scheduler.supervisor.sensors import CachedTemperatureSource

logger = logging.getLogger(__name__)


class SupervisorService:
    """Predictor, abort supervisor, checkpoints and coordinator on shared state.

    Predictor and abort supervisor poll the same ``CachedTemperatureSource``,
    so a forecast and a monitoring tick close together cost one sensor read.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        settings: Settings,
        temperature_source: TemperatureSource,
        power_status: PowerStatus | None = None,
        device_sleep: DeviceSleep | None = None,
        policy_check: PolicyCheck | None = None,
        energy_check: EnergyCheck | None = None,
        queue_occupancy: QueueOccupancy | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings.validate()
        self.settings = settings
        self.repository = SupervisorRepository(
            settings.db_path,
            sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        )
        self.repository.init_schema()
        self.profiles = RepositoryProfileStore(self.repository)
        self.temperature_source = CachedTemperatureSource(
            temperature_source,
            cache_seconds=settings.supervisor.sensor_cache_seconds,
            clock=clock,
        )
        self.predictor = ThermalPredictor(
            self.temperature_source,
            settings=settings.predictor,
            clock=clock,
        )
        self.checkpoints = CheckpointStore(self.repository, settings=settings.checkpoints)
        self.abort_supervisor = AbortSupervisor(
            self.temperature_source,
            self.checkpoints,
            self.repository,
            power_status=power_status,
            device_sleep=device_sleep,
            settings=settings.supervisor,
            clock=clock,
            profile=resolve_profile(self.profiles, settings.device_id),
        )
        self.coordinator = DecisionCoordinator(
            self.predictor,
            self.repository,
            self.profiles,
            device_id=settings.device_id,
            policy_check=policy_check,
            energy_check=energy_check,
            queue_occupancy=queue_occupancy,
            device_sleep=device_sleep,
        )
        logger.info(
            "Supervisor ready: db=%s device=%s sensor_cache=%.2fs",
            settings.db_path,
            settings.device_id,
            settings.supervisor.sensor_cache_seconds,
        )

    def close(self) -> None:
        self.abort_supervisor.shutdown()
        self.repository.close()
