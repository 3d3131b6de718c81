"""Pre-flight thermal forecast for pending tasks.

The model is deliberately coarse: a task's declared power is turned into a
heating rate, the device profile decides which trajectory shape applies, and
the forecast peak is compared with the profile's zone thresholds.

Heating rate (°C/min)::

    heat_watts / 100 / thermal_mass

Steady state::

    start + heating_rate / cooling_effectiveness

Shapes by thermal mass:

* ``< 0.5``  linear rise for at most ``linear_cap_minutes``
* ``< 2.0``  asymptotic approach, time constant ``mass * 10`` min,
  peak at 60 % of the run
* otherwise  slower exponential approach, time constant ``mass * 20`` min,
  peak at 70 % of the run
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from thermal_scheduler.config import PredictorSettings
from thermal_scheduler.storage.common import utc_now
from thermal_scheduler.supervisor.contracts import SensorUnavailable, TemperatureSource
from thermal_scheduler.supervisor.models import (
    DeviceThermalProfile,
    ForecastVerdict,
    HeatEstimate,
    SegmentPlanEntry,
    Task,
    TemperatureReading,
    ThermalForecast,
    ThermalZone,
    Trajectory,
    TrajectoryEstimate,
)

logger = logging.getLogger(__name__)

CATEGORY_MULTIPLIERS: dict[str, float] = {
    "ml-training": 1.8,
    "video-encoding": 1.6,
    "rendering": 1.5,
    "data-processing": 1.2,
    "archive-backup": 0.8,
    "database-query": 0.6,
    "cleanup": 0.4,
    "download": 0.3,
}
DEFAULT_MULTIPLIER = 1.0

_SPIKY_CATEGORIES = frozenset({"video-encoding"})
_FLUCTUATING_CATEGORIES = frozenset({"rendering", "ml-training"})
_SSD_CATEGORIES = frozenset({"archive-backup", "database-query"})

POST_RUN_COOLING_MINUTES = 5.0
END_TEMPERATURE_FLOOR_DELTA = 5.0


@dataclass(slots=True)
class _CacheEntry:
    forecast: ThermalForecast
    profile: DeviceThermalProfile
    stored_at: float


def category_multiplier(category: str) -> float:
    return CATEGORY_MULTIPLIERS.get(category, DEFAULT_MULTIPLIER)


def cooling_minutes(current: float, target: float, cooling_rate: float) -> int:
    """Whole minutes needed to cool from current down to target."""

    if current <= target:
        return 0
    return math.ceil((current - target) / cooling_rate)


class ThermalPredictor:
    """Forecasts peak temperature and recommends how to run a task."""

    def __init__(
        self,
        temperature_source: TemperatureSource | None = None,
        *,
        settings: PredictorSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.temperature_source = temperature_source
        self.settings = settings or PredictorSettings()
        self._clock = clock
        self._cache: dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()

    def forecast(
        self,
        task: Task,
        profile: DeviceThermalProfile,
        current_reading: TemperatureReading | None = None,
    ) -> ThermalForecast:
        """Pre-flight check: would this task overheat the device?

        Without an explicit reading the predictor polls its temperature
        source. An unavailable sensor never blocks: the forecast falls back to
        the nominal temperature and is flagged ``degraded``.
        """

        if current_reading is None:
            cached = self._cached(task.task_id, profile)
            if cached is not None:
                return cached

        degraded = False
        if current_reading is not None:
            start = current_reading.temperature
        else:
            try:
                start = self._read_temperature()
            except SensorUnavailable as error:
                logger.warning(
                    "Temperature unavailable for pre-flight check of task %s: %s",
                    task.task_id,
                    error,
                )
                degraded = True
                start = self.settings.nominal_temperature

        heat = self.estimate_heat(task, profile)
        duration_seconds = task.duration_seconds or self.settings.default_duration_seconds
        trajectory = self.predict_trajectory(start, heat, duration_seconds, profile)
        if degraded:
            result = self._degraded_forecast(task, profile, trajectory, heat)
        else:
            result = self.assess(task, profile, trajectory, heat)
            with self._lock:
                self._cache[task.task_id] = _CacheEntry(
                    forecast=result,
                    profile=profile,
                    stored_at=self._clock(),
                )

        logger.debug(
            "Forecast for task %s: peak=%.1f°C verdict=%s degraded=%s",
            task.task_id,
            result.peak_temperature,
            result.verdict.value,
            result.degraded,
        )
        return result

    def estimate_heat(self, task: Task, profile: DeviceThermalProfile) -> HeatEstimate:
        """Heat the task turns into device temperature, in watts."""

        declared = task.power_watts if task.power_watts is not None else (
            self.settings.default_power_watts
        )
        baseline = declared * category_multiplier(task.category)
        heat_watts = baseline * profile.thermal_efficiency

        if task.category in _SPIKY_CATEGORIES:
            variability = "spiky"
        elif task.category in _FLUCTUATING_CATEGORIES:
            variability = "fluctuating"
        else:
            variability = "stable"

        hotspots: list[str] = []
        if baseline > 100:
            hotspots.extend(("GPU", "CPU"))
        elif baseline > 50:
            hotspots.append("CPU")
        if task.category in _SSD_CATEGORIES:
            hotspots.append("SSD")

        return HeatEstimate(
            baseline_watts=baseline,
            heat_watts=heat_watts,
            variability=variability,
            hotspots=tuple(hotspots) if hotspots else ("CPU",),
        )

    def predict_trajectory(
        self,
        start: float,
        heat: HeatEstimate,
        duration_seconds: float,
        profile: DeviceThermalProfile,
    ) -> TrajectoryEstimate:
        settings = self.settings
        duration = duration_seconds / 60.0
        mass = profile.thermal_mass
        heating_rate = heat.heat_watts / 100.0 / mass
        steady_state = start + heating_rate / profile.cooling_effectiveness

        if mass < 0.5:
            rise_minutes = min(duration, settings.linear_cap_minutes)
            peak = start + heating_rate * rise_minutes
            peak_minutes = rise_minutes
            shape = Trajectory.LINEAR
        elif mass < 2.0:
            approach = 1 - math.exp(-duration / (mass * settings.asymptotic_time_factor))
            peak = start + (steady_state - start) * approach
            peak_minutes = duration * settings.asymptotic_peak_fraction
            shape = Trajectory.ASYMPTOTIC
        else:
            approach = 1 - math.exp(-duration / (mass * settings.exponential_time_factor))
            peak = start + (steady_state - start) * approach
            peak_minutes = duration * settings.exponential_peak_fraction
            shape = Trajectory.EXPONENTIAL

        peak = min(peak, settings.physical_ceiling)
        cooled = (
            profile.cooling_rate
            * profile.cooling_effectiveness
            * min(POST_RUN_COOLING_MINUTES, duration * 0.1)
        )
        end = max(peak - cooled, start - END_TEMPERATURE_FLOOR_DELTA)
        return TrajectoryEstimate(
            start_temperature=start,
            peak_temperature=peak,
            peak_minutes=peak_minutes,
            end_temperature=end,
            trajectory=shape,
        )

    def assess(
        self,
        task: Task,
        profile: DeviceThermalProfile,
        trajectory: TrajectoryEstimate,
        heat: HeatEstimate,
    ) -> ThermalForecast:
        """Turn a predicted trajectory into a verdict, first matching rule wins."""

        peak = trajectory.peak_temperature
        wait_minutes: int | None = None
        plan: tuple[SegmentPlanEntry, ...] = ()

        if peak > profile.critical:
            verdict = ForecastVerdict.REJECT
            zone = ThermalZone.CRITICAL
            reason = (
                f"Peak temperature {peak:.1f}°C exceeds critical threshold "
                f"({profile.critical:.0f}°C)"
            )
        elif peak > profile.warning_max and not task.segmentable:
            verdict = ForecastVerdict.WAIT
            zone = ThermalZone.WARNING
            wait_minutes = cooling_minutes(peak, profile.safe_max, profile.cooling_rate)
            reason = (
                f"Peak temperature {peak:.1f}°C exceeds warning threshold "
                f"({profile.warning_max:.0f}°C) and the task cannot be segmented; "
                f"wait ~{wait_minutes} min for cooling"
            )
        elif peak > profile.warning_max:
            verdict = ForecastVerdict.SEGMENT
            zone = ThermalZone.WARNING
            plan = self.recommend_segmentation(task, peak, profile)
            reason = (
                f"Peak temperature {peak:.1f}°C exceeds warning threshold "
                f"({profile.warning_max:.0f}°C); split into {len(plan)} segments"
            )
        elif peak > profile.safe_max:
            verdict = ForecastVerdict.PROCEED
            zone = ThermalZone.ACCEPTABLE
            reason = f"Acceptable: peak temperature {peak:.1f}°C is in safe range"
        else:
            verdict = ForecastVerdict.PROCEED
            zone = ThermalZone.OPTIMAL
            reason = f"Optimal: peak temperature {peak:.1f}°C is well within safe range"

        return ThermalForecast(
            task_id=task.task_id,
            profile_id=profile.device_id,
            start_temperature=trajectory.start_temperature,
            peak_temperature=peak,
            peak_minutes=trajectory.peak_minutes,
            end_temperature=trajectory.end_temperature,
            trajectory=trajectory.trajectory,
            verdict=verdict,
            zone=zone,
            safety_margin=profile.critical - peak,
            reason=reason,
            heat=heat,
            created_at=utc_now(),
            wait_minutes=wait_minutes,
            segment_plan=plan,
        )

    def recommend_segmentation(
        self,
        task: Task,
        peak: float,
        profile: DeviceThermalProfile,
    ) -> tuple[SegmentPlanEntry, ...]:
        """Split a task so each run stays cooler than the whole would."""

        overage = max(0.0, peak - profile.safe_max)
        needed = math.ceil((overage / self.settings.segment_overage_step) ** 2)
        return self.create_segment_plan(task, max(2, needed))

    def create_segment_plan(self, task: Task, count: int) -> tuple[SegmentPlanEntry, ...]:
        total = task.duration_seconds or self.settings.default_duration_seconds
        length = total / count
        return tuple(
            SegmentPlanEntry(
                index=index + 1,
                start_seconds=index * length,
                end_seconds=(index + 1) * length,
                needs_checkpoint=index < count - 1,
                cooldown_after_seconds=(
                    self.settings.segment_cooldown_seconds if index < count - 1 else 0
                ),
            )
            for index in range(count)
        )

    def minutes_until_safe(self, profile: DeviceThermalProfile, current: float) -> int:
        """Cooling time to reach the safe ceiling, capped for scheduling."""

        return min(
            cooling_minutes(current, profile.safe_max, profile.cooling_rate),
            self.settings.max_wait_minutes,
        )

    def invalidate(self, task_id: str) -> None:
        with self._lock:
            self._cache.pop(task_id, None)

    def invalidate_all(self) -> None:
        with self._lock:
            self._cache.clear()

    def _cached(self, task_id: str, profile: DeviceThermalProfile) -> ThermalForecast | None:
        with self._lock:
            entry = self._cache.get(task_id)
            if entry is None:
                return None
            expired = self._clock() - entry.stored_at >= self.settings.cache_ttl_seconds
            if expired or entry.profile != profile:
                del self._cache[task_id]
                return None
            return entry.forecast

    def _read_temperature(self) -> float:
        if self.temperature_source is None:
            raise SensorUnavailable("no temperature source configured")
        return self.temperature_source.read().temperature

    def _degraded_forecast(
        self,
        task: Task,
        profile: DeviceThermalProfile,
        trajectory: TrajectoryEstimate,
        heat: HeatEstimate,
    ) -> ThermalForecast:
        return ThermalForecast(
            task_id=task.task_id,
            profile_id=profile.device_id,
            start_temperature=trajectory.start_temperature,
            peak_temperature=trajectory.peak_temperature,
            peak_minutes=trajectory.peak_minutes,
            end_temperature=trajectory.end_temperature,
            trajectory=trajectory.trajectory,
            verdict=ForecastVerdict.PROCEED,
            zone=ThermalZone.OPTIMAL,
            safety_margin=profile.critical - trajectory.peak_temperature,
            reason=(
                "Temperature telemetry unavailable; assuming nominal "
                f"{trajectory.start_temperature:.0f}°C and proceeding"
            ),
            heat=heat,
            created_at=utc_now(),
            degraded=True,
        )
