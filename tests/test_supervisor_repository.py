from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import allure
from sqlalchemy import text

from thermal_scheduler.storage.common import utc_now
from thermal_scheduler.supervisor.models import (
    AbortReason,
    DecisionVerdict,
    DecisionWrite,
    DeviceThermalProfile,
)
from thermal_scheduler.supervisor.repository import SupervisorRepository

pytestmark = [
    allure.epic("Thermal Scheduling"),
    allure.feature("Persistent Logs"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    repository = SupervisorRepository(tmp_path / "migrations.db")
    repository.init_schema()
    repository.init_schema()

    with repository.engine.connect() as connection:
        version = connection.execute(
            text("SELECT version_num FROM alembic_version LIMIT 1"),
        ).scalar_one()
        tables = connection.execute(
            text(
                """
                SELECT name
                FROM sqlite_master
                WHERE type = 'table'
                  AND name IN ('device_profiles', 'task_checkpoints', 'abort_episodes',
                               'scheduling_decisions', 'thermal_trace', 'resumption_requests')
                ORDER BY name
                """,
            ),
        ).scalars().all()
    assert version == "20261018_0001"
    assert tables == [
        "abort_episodes",
        "device_profiles",
        "resumption_requests",
        "scheduling_decisions",
        "task_checkpoints",
        "thermal_trace",
    ]
    repository.close()


def test_profile_upsert_replaces_existing_values(repository: SupervisorRepository) -> None:
    repository.upsert_profile(DeviceThermalProfile(device_id="laptop", name="Old"))
    updated = repository.upsert_profile(
        DeviceThermalProfile(device_id="laptop", name="New", thermal_mass=2.5, critical=90.0),
    )
    repository.upsert_profile(DeviceThermalProfile(device_id="desktop", name="Tower"))

    assert updated.name == "New"
    assert repository.get_profile("laptop") == updated
    assert repository.get_profile("phone") is None
    assert [item.device_id for item in repository.list_profiles()] == ["desktop", "laptop"]


def test_decisions_are_listed_newest_first_and_counted(
    repository: SupervisorRepository,
) -> None:
    for index, verdict in enumerate(
        (DecisionVerdict.ACCEPT, DecisionVerdict.DEFER, DecisionVerdict.ACCEPT),
    ):
        repository.add_decision(
            DecisionWrite(
                task_id=f"task-{index}",
                user_id="alice",
                verdict=verdict,
                reason=f"reason {index}",
                checks={"queue": {"occupancy": index}},
            ),
        )

    decisions = repository.list_decisions()
    assert [item.task_id for item in decisions] == ["task-2", "task-1", "task-0"]
    assert decisions[0].checks == {"queue": {"occupancy": 2}}
    assert repository.list_decisions(task_id="task-1")[0].verdict is DecisionVerdict.DEFER

    counts = repository.count_decisions_by_verdict(since=utc_now() - timedelta(hours=1))
    assert counts == {DecisionVerdict.ACCEPT: 2, DecisionVerdict.DEFER: 1}
    assert repository.count_decisions_by_verdict(since=utc_now() + timedelta(hours=1)) == {}


def test_episodes_trace_and_resumption_requests_round_trip(
    repository: SupervisorRepository,
) -> None:
    episode = repository.add_abort_episode(
        task_id="encode",
        reason=AbortReason.THERMAL_TREND,
        temperature=81.5,
        peak_temperature=82.0,
        elapsed_seconds=600,
        thermal_alerts=3,
        power_alerts=0,
        checkpoint_saved=True,
        suspended=True,
    )
    for elapsed, temperature in ((5.0, 70.0), (10.0, 74.5)):
        repository.add_trace_point(task_id="encode", temperature=temperature, elapsed_seconds=elapsed)
    repository.add_resumption_request(task_id="encode", abort_reason=AbortReason.THERMAL_TREND)

    assert repository.list_abort_episodes(task_id="encode") == [episode]
    assert repository.list_abort_episodes(task_id="other") == []
    assert [point.temperature for point in repository.list_trace("encode")] == [70.0, 74.5]
    requests = repository.list_resumption_requests()
    assert [(item.task_id, item.status) for item in requests] == [("encode", "pending")]
    assert repository.list_resumption_requests(status="done") == []
