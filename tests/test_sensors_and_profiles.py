from __future__ import annotations

import allure
import pytest

from fakes import FakeClock, SequenceTemperatureSource
from thermal_scheduler.supervisor.contracts import InvalidProfileError, SensorUnavailable
from thermal_scheduler.supervisor.models import DeviceThermalProfile
from thermal_scheduler.supervisor.profiles import (
    GENERIC_PROFILE,
    RepositoryProfileStore,
    resolve_profile,
)
from thermal_scheduler.supervisor.repository import SupervisorRepository
from thermal_scheduler.supervisor.sensors import CachedTemperatureSource

pytestmark = [
    allure.epic("Thermal Scheduling"),
    allure.feature("Device Telemetry"),
]


def test_cached_source_shares_reading_within_window() -> None:
    clock = FakeClock()
    inner = SequenceTemperatureSource([50.0, 55.0, 60.0])
    cached = CachedTemperatureSource(inner, cache_seconds=0.5, clock=clock)

    first = cached.read()
    clock.advance(0.4)
    second = cached.read()
    clock.advance(0.2)
    third = cached.read()
    cached.invalidate()
    fourth = cached.read()

    assert [first.temperature, second.temperature] == [50.0, 50.0]
    assert third.temperature == 55.0
    assert fourth.temperature == 60.0
    assert inner.reads == 3


def test_cached_source_never_caches_failures() -> None:
    inner = SequenceTemperatureSource([None, 48.0])
    cached = CachedTemperatureSource(inner, clock=FakeClock())

    with pytest.raises(SensorUnavailable):
        cached.read()
    assert cached.read().temperature == 48.0


@pytest.mark.parametrize(
    "overrides",
    [
        {"thermal_mass": 0.0},
        {"cooling_rate": -1.0},
        {"cooling_effectiveness": 1.5},
        {"safe_max": 75.0},
        {"critical": 70.0},
    ],
)
def test_inconsistent_profiles_are_rejected(overrides: dict[str, float]) -> None:
    with pytest.raises(InvalidProfileError):
        DeviceThermalProfile(device_id="bad", **overrides)


def test_resolve_profile_prefers_stored_and_falls_back_to_generic(
    repository: SupervisorRepository,
) -> None:
    store = RepositoryProfileStore(repository)
    stored = store.save(DeviceThermalProfile(device_id="laptop", name="Laptop", critical=85.0))

    assert resolve_profile(store, "laptop") == stored
    fallback = resolve_profile(store, "phone")
    assert fallback.device_id == "phone"
    assert fallback.critical == GENERIC_PROFILE.critical
    assert resolve_profile(None, "desk").name == GENERIC_PROFILE.name


def test_resolve_profile_survives_failing_store() -> None:
    class BrokenStore:
        def get(self, device_id: str) -> DeviceThermalProfile | None:
            raise RuntimeError(f"cannot load {device_id}")

    profile = resolve_profile(BrokenStore(), "laptop")

    assert profile.device_id == "laptop"
    assert profile.safe_max == GENERIC_PROFILE.safe_max
