"""Error types raised by the supervisor components."""

from __future__ import annotations


class ThermalSchedulerError(Exception):
    """Base class for thermal scheduler failures."""


class SensorUnavailable(ThermalSchedulerError):
    """A temperature or power capability could not produce a reading."""


class InvalidProfileError(ThermalSchedulerError, ValueError):
    """Device thermal profile values are physically inconsistent."""


class CheckpointError(ThermalSchedulerError):
    """Checkpoint persistence failure."""


class DuplicateCheckpointError(CheckpointError):
    """A checkpoint with the same or a later sequence already exists for the task."""

    def __init__(self, task_id: str, sequence: int, current: int) -> None:
        super().__init__(
            f"Checkpoint sequence {sequence} rejected for task {task_id}: "
            f"latest stored sequence is {current}.",
        )
        self.task_id = task_id
        self.sequence = sequence
        self.current = current


class CheckpointWriteError(CheckpointError):
    """Checkpoint row could not be written after retries."""
