"""Runtime thermal/power supervision of running tasks.

One daemon ticker thread per monitored task polls the temperature source and
aborts the task (emergency checkpoint, cooperative suspend, episode log) when
the device crosses the abort threshold or is heating fast enough to get there.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timedelta
from uuid import uuid4

from thermal_scheduler.config import SupervisorSettings
from thermal_scheduler.storage.common import utc_now
from thermal_scheduler.supervisor.checkpoints import CheckpointStore
from thermal_scheduler.supervisor.contracts import (
    DeviceSleep,
    PowerStatus,
    SensorUnavailable,
    SuspendAction,
    TemperatureSource,
    call_suspend,
)
from thermal_scheduler.supervisor.models import (
    AbortOutcome,
    AbortReason,
    DeviceThermalProfile,
    MonitoredTaskSummary,
    MonitoringHandle,
    MonitorState,
    MonitorStats,
    Task,
)
from thermal_scheduler.supervisor.predictor import cooling_minutes
from thermal_scheduler.supervisor.repository import SupervisorRepository

logger = logging.getLogger(__name__)

BASELINE_FALLBACK_TEMPERATURE = 30.0
TRACE_LIMIT = 720
MAX_WAKE_DELAY_MINUTES = 60
CRITICAL_STATUS = "critical"
THERMAL_SLEEP_REASON = "thermal_abort"

_TERMINAL_STATES = {MonitorState.ABORTED, MonitorState.STOPPED}


@dataclass(slots=True)
class MonitoredTask:
    """Mutable monitoring session for one running task."""

    monitor_id: str
    task: Task
    suspend_action: SuspendAction
    started_at: datetime
    started_monotonic: float
    start_temperature: float
    peak_temperature: float
    state: MonitorState = MonitorState.RUNNING
    trace: deque[float] = field(default_factory=lambda: deque(maxlen=TRACE_LIMIT))
    thermal_alerts: int = 0
    power_alerts: int = 0
    power_over_ticks: int = 0
    stop_event: threading.Event = field(default_factory=threading.Event)
    thread: threading.Thread | None = None
    busy: threading.Lock = field(default_factory=threading.Lock)
    abort_lock: threading.Lock = field(default_factory=threading.Lock)

    @property
    def task_id(self) -> str:
        return self.task.task_id

    @property
    def terminal(self) -> bool:
        return self.state in _TERMINAL_STATES


class AbortSupervisor:
    """Registry of monitored tasks with threshold, trend and power triggers."""

    def __init__(  # noqa: PLR0913
        self,
        temperature_source: TemperatureSource,
        checkpoints: CheckpointStore,
        repository: SupervisorRepository,
        *,
        power_status: PowerStatus | None = None,
        device_sleep: DeviceSleep | None = None,
        settings: SupervisorSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
        profile: DeviceThermalProfile | None = None,
    ) -> None:
        self.temperature_source = temperature_source
        self.checkpoints = checkpoints
        self.repository = repository
        self.power_status = power_status
        self.device_sleep = device_sleep
        self.settings = settings or SupervisorSettings()
        self.profile = profile
        self._clock = clock
        self._registry: dict[str, MonitoredTask] = {}
        self._registry_lock = threading.Lock()

    # -- lifecycle -------------------------------------------------------------

    def start(
        self,
        task_id: str,
        task: Task,
        suspend_callback: SuspendAction,
        *,
        run_loop: bool = True,
    ) -> MonitoringHandle:
        """Register a task and begin periodic health checks.

        Raises ValueError when the task is already actively monitored.
        """

        try:
            baseline = self.temperature_source.read().temperature
        except SensorUnavailable as error:
            logger.warning(
                "Baseline temperature unavailable for task %s, assuming %.1f°C: %s",
                task_id,
                BASELINE_FALLBACK_TEMPERATURE,
                error,
            )
            baseline = BASELINE_FALLBACK_TEMPERATURE

        entry = MonitoredTask(
            monitor_id=uuid4().hex,
            task=task,
            suspend_action=suspend_callback,
            started_at=utc_now(),
            started_monotonic=self._clock(),
            start_temperature=baseline,
            peak_temperature=baseline,
        )
        with self._registry_lock:
            existing = self._registry.get(task_id)
            if existing is not None and not existing.terminal:
                raise ValueError(f"Task {task_id} is already monitored")
            self._registry[task_id] = entry

        if run_loop:
            entry.thread = threading.Thread(
                target=self._ticker,
                args=(entry,),
                daemon=True,
                name=f"thermal-monitor-{task_id}",
            )
            entry.thread.start()

        logger.info("Monitoring started: task=%s baseline=%.1f°C", task_id, baseline)
        return MonitoringHandle(
            monitor_id=entry.monitor_id,
            task_id=task_id,
            started_at=entry.started_at,
            initial_temperature=baseline,
        )

    def stop(self, task_id: str) -> None:
        """Normal completion: end monitoring without any abort side effects."""

        entry = self._get(task_id)
        if entry is None:
            return
        with entry.abort_lock:
            if entry.terminal:
                return
            entry.state = MonitorState.STOPPED
        self._stop_ticker(entry)
        logger.info(
            "Monitoring stopped: task=%s peak=%.1f°C elapsed=%.0fs",
            task_id,
            entry.peak_temperature,
            self._elapsed(entry),
        )

    def clear(self, task_id: str) -> bool:
        """Forget a finished session; active sessions are kept."""

        with self._registry_lock:
            entry = self._registry.get(task_id)
            if entry is None or not entry.terminal:
                return False
            del self._registry[task_id]
            return True

    def shutdown(self) -> None:
        with self._registry_lock:
            entries = list(self._registry.values())
        for entry in entries:
            self._stop_ticker(entry)
        logger.info("Abort supervisor shut down (%d sessions)", len(entries))

    def configure(self, **overrides: object) -> SupervisorSettings:
        """Replace selected thresholds for all monitored tasks."""

        known = {item.name for item in fields(SupervisorSettings)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ValueError(f"Unknown supervisor settings: {', '.join(unknown)}")
        updated = replace(self.settings, **overrides)
        if updated.alert_threshold >= updated.abort_threshold:
            raise ValueError(
                f"alert_threshold must be below abort_threshold "
                f"({updated.alert_threshold} >= {updated.abort_threshold})",
            )
        self.settings = updated
        logger.info("Supervisor settings updated: %s", ", ".join(sorted(overrides)))
        return updated

    # -- monitoring ------------------------------------------------------------

    def check_health(self, task_id: str) -> MonitorState | None:
        """Run one monitoring tick for a task; None for unknown tasks."""

        entry = self._get(task_id)
        if entry is None:
            return None
        return self._tick(entry)

    def abort(
        self,
        task_id: str,
        reason: AbortReason,
        temperature: float | None = None,
    ) -> AbortOutcome | None:
        """Emergency-stop a task; repeated calls are no-ops returning None."""

        entry = self._get(task_id)
        if entry is None:
            return None
        with entry.abort_lock:
            if entry.terminal:
                return None
            entry.state = MonitorState.ABORTED

        if temperature is None and entry.trace:
            temperature = entry.trace[-1]
        logger.warning(
            "Aborting task %s: reason=%s temperature=%s",
            task_id,
            reason.value,
            f"{temperature:.1f}°C" if temperature is not None else "unknown",
        )

        checkpoint = self.checkpoints.emergency_save(
            task_id,
            detail=_abort_detail(reason, temperature),
        )

        suspended = False
        try:
            call_suspend(entry.suspend_action)
            suspended = True
        except Exception:
            logger.exception("Suspend callback failed for task %s", task_id)

        episode_id: str | None = None
        try:
            episode = self.repository.add_abort_episode(
                task_id=task_id,
                reason=reason,
                temperature=temperature,
                peak_temperature=entry.peak_temperature,
                elapsed_seconds=int(self._elapsed(entry)),
                thermal_alerts=entry.thermal_alerts,
                power_alerts=entry.power_alerts,
                checkpoint_saved=checkpoint is not None,
                suspended=suspended,
            )
            episode_id = episode.episode_id
        except Exception:
            logger.exception("Abort episode write failed for task %s", task_id)

        try:
            self.repository.add_resumption_request(task_id=task_id, abort_reason=reason)
        except Exception:
            logger.exception("Resumption request write failed for task %s", task_id)

        self._stop_ticker(entry)

        sleep_requested = False
        device_sleep = self.device_sleep
        if reason.is_thermal and device_sleep is not None:
            sleep_requested = self._request_device_sleep(device_sleep, temperature)

        return AbortOutcome(
            task_id=task_id,
            reason=reason,
            episode_id=episode_id,
            checkpoint_saved=checkpoint is not None,
            suspended=suspended,
            sleep_requested=sleep_requested,
        )

    # -- read-only views -------------------------------------------------------

    def stats(self, task_id: str) -> MonitorStats | None:
        entry = self._get(task_id)
        if entry is None:
            return None
        trace = list(entry.trace)
        return MonitorStats(
            task_id=task_id,
            state=entry.state,
            start_temperature=entry.start_temperature,
            peak_temperature=entry.peak_temperature,
            min_temperature=min(trace) if trace else None,
            max_temperature=max(trace) if trace else None,
            thermal_alerts=entry.thermal_alerts,
            power_alerts=entry.power_alerts,
            elapsed_seconds=self._elapsed(entry),
            aborted=entry.state is MonitorState.ABORTED,
        )

    def monitored_tasks(self) -> list[MonitoredTaskSummary]:
        with self._registry_lock:
            entries = list(self._registry.values())
        return [
            MonitoredTaskSummary(
                task_id=entry.task_id,
                state=entry.state,
                peak_temperature=entry.peak_temperature,
                alerts=entry.thermal_alerts + entry.power_alerts,
            )
            for entry in entries
        ]

    # -- internals -------------------------------------------------------------

    def _get(self, task_id: str) -> MonitoredTask | None:
        with self._registry_lock:
            return self._registry.get(task_id)

    def _elapsed(self, entry: MonitoredTask) -> float:
        return max(0.0, self._clock() - entry.started_monotonic)

    def _ticker(self, entry: MonitoredTask) -> None:
        while not entry.stop_event.wait(timeout=self.settings.interval_seconds):
            try:
                self._tick(entry)
            except Exception:
                logger.exception("Monitoring tick failed for task %s", entry.task_id)
            if entry.terminal:
                break

    def _stop_ticker(self, entry: MonitoredTask) -> None:
        entry.stop_event.set()
        thread = entry.thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(5.0, self.settings.interval_seconds))

    def _tick(self, entry: MonitoredTask) -> MonitorState:
        if entry.terminal:
            return entry.state
        if not entry.busy.acquire(blocking=False):
            logger.debug("Monitoring tick skipped for task %s: previous tick busy", entry.task_id)
            return entry.state
        try:
            return self._evaluate(entry)
        finally:
            entry.busy.release()

    def _evaluate(self, entry: MonitoredTask) -> MonitorState:
        settings = self.settings
        try:
            reading = self.temperature_source.read()
        except SensorUnavailable as error:
            logger.warning("Temperature unavailable for task %s: %s", entry.task_id, error)
            return entry.state
        if entry.terminal:
            return entry.state

        temperature = reading.temperature
        entry.peak_temperature = max(entry.peak_temperature, temperature)
        entry.trace.append(temperature)
        elapsed = self._elapsed(entry)
        try:
            self.repository.add_trace_point(
                task_id=entry.task_id,
                temperature=temperature,
                elapsed_seconds=elapsed,
            )
        except Exception:  # noqa: BLE001
            logger.debug("Thermal trace write failed for task %s", entry.task_id, exc_info=True)

        reason: AbortReason | None = None
        if settings.enable_thermal_abort:
            if temperature >= settings.abort_threshold or reading.status == CRITICAL_STATUS:
                reason = AbortReason.THERMAL_CRITICAL
            elif self._trend_triggered(entry, temperature):
                reason = AbortReason.THERMAL_TREND
        power_status = self.power_status
        if reason is None and settings.enable_power_abort and power_status is not None:
            reason = self._power_trigger(entry, power_status)
        if reason is not None:
            self.abort(entry.task_id, reason, temperature)
            return entry.state

        if settings.enable_thermal_abort:
            self._update_alert(entry, temperature)
        return entry.state

    def _update_alert(self, entry: MonitoredTask, temperature: float) -> None:
        settings = self.settings
        with entry.abort_lock:
            if entry.terminal:
                return
            if temperature >= settings.alert_threshold:
                entry.state = MonitorState.ALERT_RAISED
                entry.thermal_alerts += 1
                logger.warning(
                    "Thermal alert for task %s: %.1f°C (alert %.1f°C, abort %.1f°C)",
                    entry.task_id,
                    temperature,
                    settings.alert_threshold,
                    settings.abort_threshold,
                )
            elif entry.state is MonitorState.ALERT_RAISED:
                entry.state = MonitorState.RUNNING
                logger.info("Thermal alert cleared for task %s: %.1f°C", entry.task_id, temperature)

    def _trend_triggered(self, entry: MonitoredTask, temperature: float) -> bool:
        settings = self.settings
        if temperature < settings.abort_threshold - settings.trend_margin:
            return False
        if len(entry.trace) < settings.trend_min_readings:
            return False
        window = list(entry.trace)[-settings.trend_window :]
        slope = (window[-1] - window[0]) / (len(window) - 1)
        if slope <= settings.trend_slope_per_tick:
            return False
        logger.warning(
            "Rising thermal trend for task %s: %.1f°C at +%.2f°C per tick",
            entry.task_id,
            temperature,
            slope,
        )
        return True

    def _power_trigger(
        self,
        entry: MonitoredTask,
        power_status: PowerStatus,
    ) -> AbortReason | None:
        settings = self.settings
        try:
            power = power_status.read()
        except SensorUnavailable as error:
            logger.debug("Power status unavailable for task %s: %s", entry.task_id, error)
            return None

        if (
            power.on_battery
            and power.battery_percent is not None
            and power.battery_percent < settings.battery_floor_percent
        ):
            logger.warning(
                "Battery critical for task %s: %.0f%%",
                entry.task_id,
                power.battery_percent,
            )
            return AbortReason.POWER_BATTERY

        if power.draw_percent is not None and power.draw_percent > settings.power_alert_percent:
            entry.power_alerts += 1
            entry.power_over_ticks += 1
            logger.warning(
                "Power draw alert for task %s: %.0f%% (%d/%d ticks)",
                entry.task_id,
                power.draw_percent,
                entry.power_over_ticks,
                settings.power_sustained_ticks,
            )
            if entry.power_over_ticks >= settings.power_sustained_ticks:
                return AbortReason.POWER_DRAW
        else:
            entry.power_over_ticks = 0
        return None

    def _request_device_sleep(
        self,
        device_sleep: DeviceSleep,
        temperature: float | None,
    ) -> bool:
        try:
            device_sleep.suspend(THERMAL_SLEEP_REASON)
        except Exception:
            logger.exception("Device sleep request failed")
            return False
        if self.profile is not None and temperature is not None:
            minutes = min(
                cooling_minutes(temperature, self.profile.safe_max, self.profile.cooling_rate),
                MAX_WAKE_DELAY_MINUTES,
            )
            wake_at = utc_now() + timedelta(minutes=minutes)
            try:
                device_sleep.schedule_wake(wake_at)
                logger.info("Device wake scheduled in %d min at %s", minutes, wake_at.isoformat())
            except Exception:
                logger.exception("Device wake scheduling failed")
        return True


def _abort_detail(reason: AbortReason, temperature: float | None) -> str:
    if temperature is None:
        return f"abort: {reason.value}"
    return f"abort: {reason.value} at {temperature:.1f}°C"
