"""Capability interfaces consumed by the supervisor.

Sensors, the OS sleep trigger, the job queue and the policy/energy subsystems
live outside this package. Each is reached through one of the protocols below
so that runners, tests and platform adapters can be swapped without touching
the supervisor.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Protocol, runtime_checkable

from thermal_scheduler.supervisor.errors import (
    CheckpointError,
    CheckpointWriteError,
    DuplicateCheckpointError,
    InvalidProfileError,
    SensorUnavailable,
    ThermalSchedulerError,
)
from thermal_scheduler.supervisor.models import (
    CheckpointPayload,
    DeviceThermalProfile,
    EnergyResult,
    PolicyResult,
    PowerReading,
    Task,
    TemperatureReading,
)

__all__ = [
    "CheckpointError",
    "CheckpointProducer",
    "CheckpointWriteError",
    "Checkpointable",
    "DeviceProfileStore",
    "DeviceSleep",
    "DuplicateCheckpointError",
    "EnergyCheck",
    "InvalidProfileError",
    "PolicyCheck",
    "PowerStatus",
    "QueueOccupancy",
    "SensorUnavailable",
    "Suspendable",
    "SuspendAction",
    "TemperatureSource",
    "ThermalSchedulerError",
    "call_producer",
    "call_suspend",
]


class TemperatureSource(Protocol):
    """Returns the current device temperature or raises SensorUnavailable."""

    def read(self) -> TemperatureReading: ...


class PowerStatus(Protocol):
    """Returns the current battery/supply state or raises SensorUnavailable."""

    def read(self) -> PowerReading: ...


class PolicyCheck(Protocol):
    """Delegation hours / idle cooldown lookup for a user."""

    def __call__(self, user_id: str) -> PolicyResult: ...


class EnergyCheck(Protocol):
    """Grid cleanliness lookup for a task."""

    def __call__(self, task: Task) -> EnergyResult: ...


class QueueOccupancy(Protocol):
    """Number of other queued tasks, or None when unknown."""

    def __call__(self) -> int | None: ...


class DeviceSleep(Protocol):
    """OS-level sleep/wake trigger."""

    def suspend(self, reason: str) -> None: ...

    def schedule_wake(self, at: datetime) -> None: ...


class DeviceProfileStore(Protocol):
    def get(self, device_id: str) -> DeviceThermalProfile | None: ...


@runtime_checkable
class Checkpointable(Protocol):
    """Task runner able to snapshot its own progress."""

    def checkpoint(self) -> CheckpointPayload: ...


@runtime_checkable
class Suspendable(Protocol):
    """Task runner able to pause itself cooperatively."""

    def suspend(self) -> None: ...


CheckpointProducer = Checkpointable | Callable[[], CheckpointPayload]
SuspendAction = Suspendable | Callable[[], None]


def call_producer(producer: CheckpointProducer) -> CheckpointPayload:
    """Invoke a checkpoint producer regardless of its flavour."""

    if isinstance(producer, Checkpointable):
        return producer.checkpoint()
    return producer()


def call_suspend(action: SuspendAction) -> None:
    """Invoke a suspend action regardless of its flavour."""

    if isinstance(action, Suspendable):
        action.suspend()
        return
    action()
