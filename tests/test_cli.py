from __future__ import annotations

from pathlib import Path

import allure
from click.testing import CliRunner

from thermal_scheduler.main import thermal_scheduler
from thermal_scheduler.supervisor.models import (
    AbortReason,
    CheckpointPayload,
    DecisionVerdict,
    DecisionWrite,
)
from thermal_scheduler.supervisor.repository import SupervisorRepository

pytestmark = [
    allure.epic("Thermal Scheduling"),
    allure.feature("Operator CLI"),
]


def _seed(db_path: Path) -> None:
    repository = SupervisorRepository(db_path)
    repository.init_schema()
    try:
        repository.add_decision(
            DecisionWrite(
                task_id="encode",
                user_id="alice",
                verdict=DecisionVerdict.DEFER,
                reason="Thermal: device-damage risk",
                checks={"thermal": {"verdict": "reject"}},
                retry_after_minutes=12,
            ),
        )
        repository.add_decision(
            DecisionWrite(
                task_id="backup",
                user_id="alice",
                verdict=DecisionVerdict.ACCEPT,
                reason="All checks passed",
            ),
        )
        repository.add_abort_episode(
            task_id="encode",
            reason=AbortReason.THERMAL_CRITICAL,
            temperature=86.0,
            peak_temperature=86.0,
            elapsed_seconds=1_200,
            thermal_alerts=2,
            power_alerts=0,
            checkpoint_saved=True,
            suspended=True,
        )
        repository.add_resumption_request(task_id="encode", abort_reason=AbortReason.THERMAL_CRITICAL)
        repository.append_checkpoint(
            task_id="encode",
            payload=CheckpointPayload(progress=75.0, state={"frame": 750}),
        )
        repository.add_trace_point(task_id="encode", temperature=78.0, elapsed_seconds=5.0)
        repository.add_trace_point(task_id="encode", temperature=86.0, elapsed_seconds=10.0)
    finally:
        repository.close()


def test_forecast_prints_segment_plan(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("THERMAL_SCHEDULER_DEVICE_ID", raising=False)
    runner = CliRunner()

    result = runner.invoke(
        thermal_scheduler,
        [
            "forecast",
            "--db-path",
            str(tmp_path / "cli.db"),
            "--category",
            "video-encoding",
            "--power-watts",
            "400",
            "--duration-seconds",
            "7200",
            "--segmentable",
            "--temperature",
            "65",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "verdict=segment" in result.output
    assert "Segment plan: 2 segments" in result.output
    assert "profile=default" in result.output


def test_forecast_without_temperature_is_degraded(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        thermal_scheduler,
        ["forecast", "--db-path", str(tmp_path / "cli.db"), "--category", "download"],
    )

    assert result.exit_code == 0, result.output
    assert "verdict=proceed" in result.output
    assert "Degraded: temperature telemetry unavailable" in result.output


def test_profile_set_and_show(tmp_path: Path) -> None:
    db_path = str(tmp_path / "cli.db")
    runner = CliRunner()

    missing = runner.invoke(thermal_scheduler, ["profile", "show", "--db-path", db_path])
    saved = runner.invoke(
        thermal_scheduler,
        [
            "profile",
            "set",
            "--db-path",
            db_path,
            "--device-id",
            "laptop",
            "--name",
            "Work Laptop",
            "--thermal-mass",
            "0.8",
            "--critical",
            "90",
        ],
    )
    shown = runner.invoke(
        thermal_scheduler,
        ["profile", "show", "--db-path", db_path, "--device-id", "laptop"],
    )
    forecast = runner.invoke(
        thermal_scheduler,
        [
            "forecast",
            "--db-path",
            db_path,
            "--category",
            "download",
            "--temperature",
            "40",
            "--device-id",
            "laptop",
        ],
    )

    assert missing.exit_code == 0, missing.output
    assert "generic fallback" in missing.output
    assert saved.exit_code == 0, saved.output
    assert "Profile saved: device_id=laptop" in saved.output
    assert shown.exit_code == 0, shown.output
    assert "name=Work Laptop" in shown.output
    assert "critical=90" in shown.output
    assert "profile=laptop" in forecast.output


def test_profile_set_rejects_inconsistent_thresholds(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        thermal_scheduler,
        [
            "profile",
            "set",
            "--db-path",
            str(tmp_path / "cli.db"),
            "--device-id",
            "bad",
            "--safe-max",
            "75",
        ],
    )

    assert result.exit_code != 0
    assert "strictly" in result.output


def test_log_commands_read_seeded_records(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    _seed(db_path)
    runner = CliRunner()

    decisions = runner.invoke(thermal_scheduler, ["decisions", "--db-path", str(db_path)])
    filtered = runner.invoke(
        thermal_scheduler,
        ["decisions", "--db-path", str(db_path), "--task-id", "backup"],
    )
    stats = runner.invoke(
        thermal_scheduler,
        ["decisions", "stats", "--db-path", str(db_path), "--hours", "24"],
    )
    episodes = runner.invoke(thermal_scheduler, ["episodes", "--db-path", str(db_path)])
    checkpoints = runner.invoke(
        thermal_scheduler,
        ["checkpoints", "--db-path", str(db_path), "--task-id", "encode"],
    )
    trace = runner.invoke(
        thermal_scheduler,
        ["trace", "--db-path", str(db_path), "--task-id", "encode"],
    )

    for result in (decisions, filtered, stats, episodes, checkpoints, trace):
        assert result.exit_code == 0, result.output
    assert "verdict=defer" in decisions.output
    assert "retry_after=12m" in decisions.output
    assert "task=encode" not in filtered.output
    assert "task=backup" in filtered.output
    assert "Decisions: total=2 accept=1 defer=1 sleep=0 idle=0" in stats.output
    assert "Abort episodes: total=1 thermal_critical=1" in stats.output
    assert "Pending resumptions: 1" in stats.output
    assert "reason=thermal_critical" in episodes.output
    assert "seq=1 progress=75.0%" in checkpoints.output
    assert "points=2 min=78.0°C max=86.0°C" in trace.output


def test_log_commands_on_empty_database(tmp_path: Path) -> None:
    db_path = str(tmp_path / "empty.db")
    runner = CliRunner()

    decisions = runner.invoke(thermal_scheduler, ["decisions", "--db-path", db_path])
    episodes = runner.invoke(thermal_scheduler, ["episodes", "--db-path", db_path])
    checkpoints = runner.invoke(
        thermal_scheduler,
        ["checkpoints", "--db-path", db_path, "--task-id", "none"],
    )

    assert "No scheduling decisions recorded." in decisions.output
    assert "No abort episodes recorded." in episodes.output
    assert "No checkpoints for task none." in checkpoints.output
