"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from fakes import FakeUtcClock
from thermal_scheduler.supervisor.checkpoints import CheckpointStore
from thermal_scheduler.supervisor.repository import SupervisorRepository


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[SupervisorRepository]:
    repo = SupervisorRepository(tmp_path / "supervisor.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def checkpoint_store(repository: SupervisorRepository) -> CheckpointStore:
    return CheckpointStore(repository)


@pytest.fixture()
def utc_clock(monkeypatch: pytest.MonkeyPatch) -> FakeUtcClock:
    clock = FakeUtcClock()
    monkeypatch.setattr("thermal_scheduler.supervisor.repository.utc_now", clock)
    return clock
