"""Controllers for thermal scheduler CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from thermal_scheduler.config import Settings
from thermal_scheduler.storage.common import utc_now
from thermal_scheduler.supervisor.metrics import build_supervisor_metrics, render_stats_lines
from thermal_scheduler.supervisor.models import (
    DeviceThermalProfile,
    Task,
    TemperatureReading,
    ThermalForecast,
)
from thermal_scheduler.supervisor.predictor import ThermalPredictor
from thermal_scheduler.supervisor.profiles import RepositoryProfileStore, resolve_profile
from thermal_scheduler.supervisor.repository import SupervisorRepository


@dataclass(slots=True)
class ForecastCommand:
    """CLI input for a one-off thermal forecast."""

    db_path: Path | None
    task_id: str
    category: str
    power_watts: float | None
    duration_seconds: int | None
    segmentable: bool
    temperature: float | None
    device_id: str | None


@dataclass(slots=True)
class ProfileSetCommand:
    """CLI input for storing a device thermal profile."""

    db_path: Path | None
    device_id: str
    name: str
    thermal_mass: float
    cooling_rate: float
    cooling_effectiveness: float
    thermal_efficiency: float
    optimal_max: float
    safe_max: float
    warning_max: float
    critical: float


@dataclass(slots=True)
class ProfileShowCommand:
    db_path: Path | None
    device_id: str | None


@dataclass(slots=True)
class DecisionsListCommand:
    """CLI input for decision log listing."""

    db_path: Path | None
    task_id: str | None
    limit: int


@dataclass(slots=True)
class DecisionsStatsCommand:
    db_path: Path | None
    hours: int


@dataclass(slots=True)
class EpisodesCommand:
    """CLI input for abort episode listing."""

    db_path: Path | None
    task_id: str | None
    limit: int


@dataclass(slots=True)
class CheckpointsCommand:
    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class TraceCommand:
    db_path: Path | None
    task_id: str


class SupervisorCliController:
    """Coordinates thermal scheduler command execution."""

    def forecast(self, command: ForecastCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        device_id = command.device_id or settings.device_id
        with _repository(settings) as repository:
            profile = resolve_profile(RepositoryProfileStore(repository), device_id)

        predictor = ThermalPredictor(settings=settings.predictor)
        task = Task(
            task_id=command.task_id,
            category=command.category,
            power_watts=command.power_watts,
            duration_seconds=command.duration_seconds,
            segmentable=command.segmentable,
        )
        reading = (
            TemperatureReading(temperature=command.temperature)
            if command.temperature is not None
            else None
        )
        forecast = predictor.forecast(task, profile, current_reading=reading)
        return _forecast_lines(forecast)

    def profile_set(self, command: ProfileSetCommand) -> list[str]:
        profile = DeviceThermalProfile(
            device_id=command.device_id,
            name=command.name,
            thermal_mass=command.thermal_mass,
            cooling_rate=command.cooling_rate,
            cooling_effectiveness=command.cooling_effectiveness,
            thermal_efficiency=command.thermal_efficiency,
            optimal_max=command.optimal_max,
            safe_max=command.safe_max,
            warning_max=command.warning_max,
            critical=command.critical,
        )
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            saved = RepositoryProfileStore(repository).save(profile)
        return [f"Profile saved: device_id={saved.device_id}", *_profile_lines(saved)]

    def profile_show(self, command: ProfileShowCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        device_id = command.device_id or settings.device_id
        with _repository(settings) as repository:
            stored = repository.get_profile(device_id)
            profile = stored or resolve_profile(None, device_id)
        header = (
            f"Profile: device_id={device_id}"
            if stored is not None
            else f"Profile: device_id={device_id} (generic fallback)"
        )
        return [header, *_profile_lines(profile)]

    def decisions(self, command: DecisionsListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            decisions = repository.list_decisions(task_id=command.task_id, limit=command.limit)
        if not decisions:
            return ["No scheduling decisions recorded."]
        lines = [f"Scheduling decisions (latest {len(decisions)}):"]
        for decision in decisions:
            line = (
                f"- {decision.created_at.isoformat()} task={decision.task_id} "
                f"user={decision.user_id} verdict={decision.verdict.value} "
                f"reason={decision.reason}"
            )
            if decision.retry_after_minutes is not None:
                line += f" retry_after={decision.retry_after_minutes}m"
            if decision.next_window is not None:
                line += f" next_window={decision.next_window.isoformat()}"
            lines.append(line)
            if decision.checks:
                lines.append(
                    "  checks=" + json.dumps(decision.checks, ensure_ascii=False, sort_keys=True),
                )
        return lines

    def decisions_stats(self, command: DecisionsStatsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        since = utc_now() - timedelta(hours=command.hours)
        with _repository(settings) as repository:
            snapshot = build_supervisor_metrics(repository=repository, since=since)
        return render_stats_lines(snapshot=snapshot, hours=command.hours)

    def episodes(self, command: EpisodesCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            episodes = repository.list_abort_episodes(task_id=command.task_id, limit=command.limit)
        if not episodes:
            return ["No abort episodes recorded."]
        lines = [f"Abort episodes (latest {len(episodes)}):"]
        for episode in episodes:
            temperature = (
                f"{episode.temperature:.1f}°C" if episode.temperature is not None else "unknown"
            )
            lines.append(
                f"- {episode.created_at.isoformat()} task={episode.task_id} "
                f"reason={episode.reason.value} temperature={temperature} "
                f"peak={episode.peak_temperature:.1f}°C elapsed={episode.elapsed_seconds}s "
                f"alerts={episode.thermal_alerts}/{episode.power_alerts} "
                f"checkpoint={'yes' if episode.checkpoint_saved else 'no'} "
                f"suspended={'yes' if episode.suspended else 'no'}",
            )
        return lines

    def checkpoints(self, command: CheckpointsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            checkpoints = repository.list_checkpoints(command.task_id)
        if not checkpoints:
            return [f"No checkpoints for task {command.task_id}."]
        lines = [f"Checkpoints for task {command.task_id}: {len(checkpoints)}"]
        for checkpoint in checkpoints:
            progress = (
                f"{checkpoint.progress:.1f}%" if checkpoint.progress is not None else "unknown"
            )
            line = (
                f"- seq={checkpoint.sequence} progress={progress} "
                f"reason={checkpoint.reason.value} at={checkpoint.created_at.isoformat()}"
            )
            if checkpoint.detail:
                line += f" detail={checkpoint.detail}"
            if checkpoint.warning:
                line += f" warning={checkpoint.warning}"
            lines.append(line)
        return lines

    def trace(self, command: TraceCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            points = repository.list_trace(command.task_id)
        if not points:
            return [f"No thermal trace for task {command.task_id}."]
        temperatures = [point.temperature for point in points]
        lines = [
            f"Thermal trace for task {command.task_id}: points={len(points)} "
            f"min={min(temperatures):.1f}°C max={max(temperatures):.1f}°C",
        ]
        lines.extend(
            f"- t={point.elapsed_seconds:.1f}s temperature={point.temperature:.1f}°C"
            for point in points
        )
        return lines


@contextmanager
def _repository(settings: Settings) -> Iterator[SupervisorRepository]:
    repository = SupervisorRepository(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    try:
        repository.init_schema()
        yield repository
    finally:
        repository.close()


def _forecast_lines(forecast: ThermalForecast) -> list[str]:
    lines = [
        f"Forecast: task={forecast.task_id} verdict={forecast.verdict.value} "
        f"zone={forecast.zone.value}",
        f"Temperature: start={forecast.start_temperature:.1f}°C "
        f"peak={forecast.peak_temperature:.1f}°C at {forecast.peak_minutes:.1f}min "
        f"end={forecast.end_temperature:.1f}°C trajectory={forecast.trajectory.value}",
        f"Heat: baseline={forecast.heat.baseline_watts:.1f}W "
        f"effective={forecast.heat.heat_watts:.1f}W variability={forecast.heat.variability} "
        f"hotspots={','.join(forecast.heat.hotspots)}",
        f"Safety margin: {forecast.safety_margin:.1f}°C (profile={forecast.profile_id})",
        f"Reason: {forecast.reason}",
    ]
    if forecast.degraded:
        lines.append("Degraded: temperature telemetry unavailable")
    if forecast.wait_minutes is not None:
        lines.append(f"Wait: {forecast.wait_minutes} min")
    if forecast.segment_plan:
        lines.append(f"Segment plan: {len(forecast.segment_plan)} segments")
        lines.extend(
            f"  #{segment.index} {segment.start_seconds:.0f}s..{segment.end_seconds:.0f}s "
            f"checkpoint={'yes' if segment.needs_checkpoint else 'no'} "
            f"cooldown={segment.cooldown_after_seconds}s"
            for segment in forecast.segment_plan
        )
    return lines


def _profile_lines(profile: DeviceThermalProfile) -> list[str]:
    return [
        f"  name={profile.name}",
        f"  thermal_mass={profile.thermal_mass} cooling_rate={profile.cooling_rate}°C/min "
        f"cooling_effectiveness={profile.cooling_effectiveness} "
        f"thermal_efficiency={profile.thermal_efficiency}",
        f"  thresholds: optimal<={profile.optimal_max:.0f} safe<={profile.safe_max:.0f} "
        f"warning<={profile.warning_max:.0f} critical={profile.critical:.0f}",
    ]
