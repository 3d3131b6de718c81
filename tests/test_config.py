from __future__ import annotations

from pathlib import Path

import allure
import pytest

from thermal_scheduler.config import (
    CheckpointSettings,
    PredictorSettings,
    Settings,
    SupervisorSettings,
)

pytestmark = [
    allure.epic("Thermal Scheduling"),
    allure.feature("Configuration"),
]


def test_defaults_are_valid() -> None:
    settings = Settings()
    settings.validate()

    assert settings.supervisor.interval_seconds == 5.0
    assert settings.supervisor.alert_threshold == 75.0
    assert settings.supervisor.abort_threshold == 85.0
    assert settings.predictor.cache_ttl_seconds == 300.0
    assert settings.checkpoints.write_retries == 1


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("THERMAL_SCHEDULER_MONITOR_INTERVAL_SECONDS", "2.5")
    monkeypatch.setenv("THERMAL_SCHEDULER_ALERT_THRESHOLD", "70")
    monkeypatch.setenv("THERMAL_SCHEDULER_ABORT_THRESHOLD", "80")
    monkeypatch.setenv("THERMAL_SCHEDULER_FORECAST_CACHE_TTL_SECONDS", "60")
    monkeypatch.setenv("THERMAL_SCHEDULER_CHECKPOINT_WRITE_RETRIES", "3")
    monkeypatch.setenv("THERMAL_SCHEDULER_ENABLE_POWER_ABORT", "off")
    monkeypatch.setenv("THERMAL_SCHEDULER_DEVICE_ID", "laptop")

    settings = Settings.from_env(db_path=tmp_path / "env.db")
    settings.validate()

    assert settings.db_path == tmp_path / "env.db"
    assert settings.device_id == "laptop"
    assert settings.supervisor.interval_seconds == 2.5
    assert settings.supervisor.alert_threshold == 70.0
    assert settings.supervisor.abort_threshold == 80.0
    assert settings.supervisor.enable_power_abort is False
    assert settings.supervisor.enable_thermal_abort is True
    assert settings.predictor.cache_ttl_seconds == 60.0
    assert settings.checkpoints.write_retries == 3


def test_from_env_rejects_invalid_boolean(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("THERMAL_SCHEDULER_ENABLE_THERMAL_ABORT", "maybe")

    with pytest.raises(ValueError, match="Invalid boolean value"):
        Settings.from_env()


def test_validate_rejects_alert_at_or_above_abort() -> None:
    settings = Settings(supervisor=SupervisorSettings(alert_threshold=85.0, abort_threshold=85.0))

    with pytest.raises(ValueError, match="THERMAL_SCHEDULER_ALERT_THRESHOLD must be below"):
        settings.validate()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (
            Settings(supervisor=SupervisorSettings(interval_seconds=0)),
            "MONITOR_INTERVAL_SECONDS",
        ),
        (
            Settings(supervisor=SupervisorSettings(trend_window=2, trend_min_readings=3)),
            "TREND_WINDOW",
        ),
        (
            Settings(predictor=PredictorSettings(asymptotic_peak_fraction=1.2)),
            "ASYMPTOTIC_PEAK_FRACTION",
        ),
        (
            Settings(predictor=PredictorSettings(exponential_peak_fraction=0.0)),
            "EXPONENTIAL_PEAK_FRACTION",
        ),
        (
            Settings(checkpoints=CheckpointSettings(write_retries=-1)),
            "CHECKPOINT_WRITE_RETRIES",
        ),
    ],
)
def test_validate_rejects_inconsistent_values(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate()
