"""Runtime configuration for thermal prediction, supervision and checkpoints."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(slots=True)
class PredictorSettings:
    """Pre-flight thermal forecast settings.

    The trajectory fractions, time factors and segmentation step are heuristics
    awaiting recalibration against measured device traces.
    """

    cache_ttl_seconds: float = 300.0
    nominal_temperature: float = 30.0
    default_power_watts: float = 50.0
    default_duration_seconds: int = 3_600
    linear_cap_minutes: float = 30.0
    asymptotic_peak_fraction: float = 0.6
    exponential_peak_fraction: float = 0.7
    asymptotic_time_factor: float = 10.0
    exponential_time_factor: float = 20.0
    physical_ceiling: float = 120.0
    segment_overage_step: float = 10.0
    segment_cooldown_seconds: int = 300
    max_wait_minutes: int = 60


@dataclass(slots=True)
class SupervisorSettings:
    """Runtime abort monitor thresholds."""

    interval_seconds: float = 5.0
    alert_threshold: float = 75.0
    abort_threshold: float = 85.0
    trend_margin: float = 5.0
    trend_window: int = 6
    trend_min_readings: int = 3
    trend_slope_per_tick: float = 1.0
    enable_thermal_abort: bool = True
    enable_power_abort: bool = True
    battery_floor_percent: float = 10.0
    power_alert_percent: float = 90.0
    power_sustained_ticks: int = 3
    sensor_cache_seconds: float = 0.5


@dataclass(slots=True)
class CheckpointSettings:
    """Checkpoint persistence settings."""

    write_retries: int = 1


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".thermal_scheduler.db")
    device_id: str = "default"
    user_id: str = "default_user"
    sqlite_busy_timeout_ms: int = 5_000
    predictor: PredictorSettings = field(default_factory=PredictorSettings)
    supervisor: SupervisorSettings = field(default_factory=SupervisorSettings)
    checkpoints: CheckpointSettings = field(default_factory=CheckpointSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path
            or Path(os.getenv("THERMAL_SCHEDULER_DB_PATH", ".thermal_scheduler.db")),
            device_id=os.getenv("THERMAL_SCHEDULER_DEVICE_ID", "default"),
            user_id=os.getenv("THERMAL_SCHEDULER_USER_ID", "default_user"),
            sqlite_busy_timeout_ms=int(
                os.getenv("THERMAL_SCHEDULER_SQLITE_BUSY_TIMEOUT_MS", "5000"),
            ),
            predictor=PredictorSettings(
                cache_ttl_seconds=float(
                    os.getenv("THERMAL_SCHEDULER_FORECAST_CACHE_TTL_SECONDS", "300"),
                ),
                nominal_temperature=float(
                    os.getenv("THERMAL_SCHEDULER_NOMINAL_TEMPERATURE", "30.0"),
                ),
                default_power_watts=float(
                    os.getenv("THERMAL_SCHEDULER_DEFAULT_POWER_WATTS", "50.0"),
                ),
                default_duration_seconds=int(
                    os.getenv("THERMAL_SCHEDULER_DEFAULT_DURATION_SECONDS", "3600"),
                ),
                linear_cap_minutes=float(
                    os.getenv("THERMAL_SCHEDULER_LINEAR_CAP_MINUTES", "30.0"),
                ),
                asymptotic_peak_fraction=float(
                    os.getenv("THERMAL_SCHEDULER_ASYMPTOTIC_PEAK_FRACTION", "0.6"),
                ),
                exponential_peak_fraction=float(
                    os.getenv("THERMAL_SCHEDULER_EXPONENTIAL_PEAK_FRACTION", "0.7"),
                ),
                asymptotic_time_factor=float(
                    os.getenv("THERMAL_SCHEDULER_ASYMPTOTIC_TIME_FACTOR", "10.0"),
                ),
                exponential_time_factor=float(
                    os.getenv("THERMAL_SCHEDULER_EXPONENTIAL_TIME_FACTOR", "20.0"),
                ),
                physical_ceiling=float(
                    os.getenv("THERMAL_SCHEDULER_PHYSICAL_CEILING", "120.0"),
                ),
                segment_overage_step=float(
                    os.getenv("THERMAL_SCHEDULER_SEGMENT_OVERAGE_STEP", "10.0"),
                ),
                segment_cooldown_seconds=int(
                    os.getenv("THERMAL_SCHEDULER_SEGMENT_COOLDOWN_SECONDS", "300"),
                ),
                max_wait_minutes=int(os.getenv("THERMAL_SCHEDULER_MAX_WAIT_MINUTES", "60")),
            ),
            supervisor=SupervisorSettings(
                interval_seconds=float(
                    os.getenv("THERMAL_SCHEDULER_MONITOR_INTERVAL_SECONDS", "5.0"),
                ),
                alert_threshold=float(
                    os.getenv("THERMAL_SCHEDULER_ALERT_THRESHOLD", "75.0"),
                ),
                abort_threshold=float(
                    os.getenv("THERMAL_SCHEDULER_ABORT_THRESHOLD", "85.0"),
                ),
                trend_margin=float(os.getenv("THERMAL_SCHEDULER_TREND_MARGIN", "5.0")),
                trend_window=int(os.getenv("THERMAL_SCHEDULER_TREND_WINDOW", "6")),
                trend_min_readings=int(
                    os.getenv("THERMAL_SCHEDULER_TREND_MIN_READINGS", "3"),
                ),
                trend_slope_per_tick=float(
                    os.getenv("THERMAL_SCHEDULER_TREND_SLOPE_PER_TICK", "1.0"),
                ),
                enable_thermal_abort=_env_bool(
                    "THERMAL_SCHEDULER_ENABLE_THERMAL_ABORT",
                    default=True,
                ),
                enable_power_abort=_env_bool(
                    "THERMAL_SCHEDULER_ENABLE_POWER_ABORT",
                    default=True,
                ),
                battery_floor_percent=float(
                    os.getenv("THERMAL_SCHEDULER_BATTERY_FLOOR_PERCENT", "10.0"),
                ),
                power_alert_percent=float(
                    os.getenv("THERMAL_SCHEDULER_POWER_ALERT_PERCENT", "90.0"),
                ),
                power_sustained_ticks=int(
                    os.getenv("THERMAL_SCHEDULER_POWER_SUSTAINED_TICKS", "3"),
                ),
                sensor_cache_seconds=float(
                    os.getenv("THERMAL_SCHEDULER_SENSOR_CACHE_SECONDS", "0.5"),
                ),
            ),
            checkpoints=CheckpointSettings(
                write_retries=int(os.getenv("THERMAL_SCHEDULER_CHECKPOINT_WRITE_RETRIES", "1")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if thresholds are inconsistent."""

        supervisor = self.supervisor
        if supervisor.interval_seconds <= 0:
            raise ValueError("THERMAL_SCHEDULER_MONITOR_INTERVAL_SECONDS must be > 0.")
        if supervisor.alert_threshold >= supervisor.abort_threshold:
            raise ValueError(
                "THERMAL_SCHEDULER_ALERT_THRESHOLD must be below "
                f"THERMAL_SCHEDULER_ABORT_THRESHOLD ({supervisor.alert_threshold} >= "
                f"{supervisor.abort_threshold}).",
            )
        if supervisor.trend_min_readings < 2:
            raise ValueError("THERMAL_SCHEDULER_TREND_MIN_READINGS must be >= 2.")
        if supervisor.trend_window < supervisor.trend_min_readings:
            raise ValueError(
                "THERMAL_SCHEDULER_TREND_WINDOW must be >= THERMAL_SCHEDULER_TREND_MIN_READINGS.",
            )
        if supervisor.power_sustained_ticks <= 0:
            raise ValueError("THERMAL_SCHEDULER_POWER_SUSTAINED_TICKS must be > 0.")
        if supervisor.sensor_cache_seconds < 0:
            raise ValueError("THERMAL_SCHEDULER_SENSOR_CACHE_SECONDS must be >= 0.")

        predictor = self.predictor
        for name, value in (
            ("THERMAL_SCHEDULER_ASYMPTOTIC_PEAK_FRACTION", predictor.asymptotic_peak_fraction),
            ("THERMAL_SCHEDULER_EXPONENTIAL_PEAK_FRACTION", predictor.exponential_peak_fraction),
        ):
            if not 0 < value <= 1:
                raise ValueError(f"{name} must be within (0, 1], got {value!r}.")
        if predictor.cache_ttl_seconds < 0:
            raise ValueError("THERMAL_SCHEDULER_FORECAST_CACHE_TTL_SECONDS must be >= 0.")
        if predictor.segment_overage_step <= 0:
            raise ValueError("THERMAL_SCHEDULER_SEGMENT_OVERAGE_STEP must be > 0.")
        if predictor.default_duration_seconds <= 0:
            raise ValueError("THERMAL_SCHEDULER_DEFAULT_DURATION_SECONDS must be > 0.")

        if self.checkpoints.write_retries < 0:
            raise ValueError("THERMAL_SCHEDULER_CHECKPOINT_WRITE_RETRIES must be >= 0.")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
