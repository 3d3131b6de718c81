"""Domain models for thermal prediction, checkpoints, monitoring and decisions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from thermal_scheduler.supervisor.errors import InvalidProfileError


class TaskUrgency(str, Enum):
    """Urgency tier declared by the queue."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class ForecastVerdict(str, Enum):
    """Pre-flight recommendation for one pending task."""

    PROCEED = "proceed"
    SEGMENT = "segment"
    WAIT = "wait"
    REJECT = "reject"


class ThermalZone(str, Enum):
    """Zone the forecast peak falls into."""

    OPTIMAL = "optimal"
    ACCEPTABLE = "acceptable"
    WARNING = "warning"
    CRITICAL = "critical"


class Trajectory(str, Enum):
    LINEAR = "linear"
    ASYMPTOTIC = "asymptotic"
    EXPONENTIAL = "exponential"


class CheckpointReason(str, Enum):
    PERIODIC = "periodic"
    EMERGENCY = "emergency"
    MANUAL = "manual"


class AbortReason(str, Enum):
    """Trigger recorded on an abort episode."""

    THERMAL_CRITICAL = "thermal_critical"
    THERMAL_TREND = "thermal_trend"
    POWER_BATTERY = "power_battery"
    POWER_DRAW = "power_draw"
    MANUAL = "manual"

    @property
    def is_thermal(self) -> bool:
        return self in {AbortReason.THERMAL_CRITICAL, AbortReason.THERMAL_TREND}


class MonitorState(str, Enum):
    """Lifecycle of one monitored task."""

    RUNNING = "running"
    ALERT_RAISED = "alert_raised"
    ABORTED = "aborted"
    STOPPED = "stopped"


class DecisionVerdict(str, Enum):
    """Scheduling verdict persisted to the decision log."""

    ACCEPT = "accept"
    DEFER = "defer"
    SLEEP = "sleep"
    IDLE = "idle"


@dataclass(slots=True, frozen=True)
class SegmentPlanEntry:
    """One sub-run of a segmented task."""

    index: int
    start_seconds: float
    end_seconds: float
    needs_checkpoint: bool
    cooldown_after_seconds: int

    @property
    def duration_seconds(self) -> float:
        return self.end_seconds - self.start_seconds


@dataclass(slots=True)
class Task:
    """Pending unit of work as described by the external queue."""

    task_id: str
    category: str
    power_watts: float | None = None
    duration_seconds: int | None = None
    segmentable: bool = False
    urgency: TaskUrgency = TaskUrgency.NORMAL
    segment_plan: tuple[SegmentPlanEntry, ...] = ()


@dataclass(slots=True, frozen=True)
class DeviceThermalProfile:
    """Static descriptor of a device's thermal physics."""

    device_id: str
    name: str = "Generic Device"
    thermal_mass: float = 1.0
    cooling_rate: float = 1.5
    cooling_effectiveness: float = 0.8
    thermal_efficiency: float = 0.8
    optimal_max: float = 45.0
    safe_max: float = 60.0
    warning_max: float = 70.0
    critical: float = 80.0

    def __post_init__(self) -> None:
        if self.thermal_mass <= 0:
            raise InvalidProfileError(f"thermal_mass must be > 0, got {self.thermal_mass!r}")
        if self.cooling_rate <= 0:
            raise InvalidProfileError(f"cooling_rate must be > 0, got {self.cooling_rate!r}")
        for name in ("cooling_effectiveness", "thermal_efficiency"):
            value = getattr(self, name)
            if not 0 < value <= 1:
                raise InvalidProfileError(f"{name} must be within (0, 1], got {value!r}")
        thresholds = (self.optimal_max, self.safe_max, self.warning_max, self.critical)
        if any(lower >= upper for lower, upper in zip(thresholds, thresholds[1:], strict=False)):
            raise InvalidProfileError(
                "Thresholds must be strictly increasing "
                f"(optimal={self.optimal_max}, safe={self.safe_max}, "
                f"warning={self.warning_max}, critical={self.critical})",
            )


@dataclass(slots=True, frozen=True)
class TemperatureReading:
    """One sensor sample."""

    temperature: float
    status: str | None = None


@dataclass(slots=True, frozen=True)
class PowerReading:
    """Battery / supply sample."""

    on_battery: bool
    battery_percent: float | None = None
    draw_percent: float | None = None


@dataclass(slots=True, frozen=True)
class HeatEstimate:
    """Heat a task is expected to dump into the device."""

    baseline_watts: float
    heat_watts: float
    variability: str
    hotspots: tuple[str, ...]


@dataclass(slots=True, frozen=True)
class TrajectoryEstimate:
    start_temperature: float
    peak_temperature: float
    peak_minutes: float
    end_temperature: float
    trajectory: Trajectory


@dataclass(slots=True, frozen=True)
class ThermalForecast:
    """Forecast and verdict for one pending task."""

    task_id: str
    profile_id: str
    start_temperature: float
    peak_temperature: float
    peak_minutes: float
    end_temperature: float
    trajectory: Trajectory
    verdict: ForecastVerdict
    zone: ThermalZone
    safety_margin: float
    reason: str
    heat: HeatEstimate
    created_at: datetime
    wait_minutes: int | None = None
    segment_plan: tuple[SegmentPlanEntry, ...] = ()
    degraded: bool = False

    @property
    def safe_to_run(self) -> bool:
        return self.verdict in {ForecastVerdict.PROCEED, ForecastVerdict.SEGMENT}

    def to_details(self) -> dict[str, object]:
        """Serialize forecast diagnostics for the decision log."""

        details: dict[str, object] = {
            "verdict": self.verdict.value,
            "zone": self.zone.value,
            "peak_temperature": round(self.peak_temperature, 2),
            "peak_minutes": round(self.peak_minutes, 2),
            "start_temperature": round(self.start_temperature, 2),
            "trajectory": self.trajectory.value,
            "safety_margin": round(self.safety_margin, 2),
            "profile_id": self.profile_id,
            "reason": self.reason,
            "degraded": self.degraded,
        }
        if self.wait_minutes is not None:
            details["wait_minutes"] = self.wait_minutes
        if self.segment_plan:
            details["segments"] = len(self.segment_plan)
        return details


@dataclass(slots=True)
class CheckpointPayload:
    """Progress snapshot handed over by a task runner."""

    progress: float | None
    state: Any = None
    output: Any = None
    reason: CheckpointReason = CheckpointReason.PERIODIC
    detail: str | None = None


@dataclass(slots=True)
class Checkpoint:
    """Persisted progress snapshot."""

    checkpoint_id: str
    task_id: str
    sequence: int
    progress: float | None
    state: Any
    output: Any
    reason: CheckpointReason
    detail: str | None
    warning: str | None
    created_at: datetime


@dataclass(slots=True)
class ResumeInstructions:
    """Everything a runner needs to continue from the latest checkpoint."""

    task_id: str
    checkpoint_id: str
    skip_to_sequence: int
    resume_from_percent: float
    state: Any
    output: Any
    reason: CheckpointReason
    progress_known: bool
    warning: str | None = None
    lost_percent: float = 0.0

    @property
    def remaining_percent(self) -> float:
        return 100.0 - self.resume_from_percent

    @property
    def wasted_percent(self) -> float:
        """Share of the task repeated when resuming instead of restarting.

        Only progress made after the snapshot that the resume point carries
        is repeated; a fresh emergency snapshot loses nothing.
        """

        return self.lost_percent

    @property
    def restart_penalty_percent(self) -> float:
        """Share of the task a full restart would repeat."""

        return self.resume_from_percent


@dataclass(slots=True)
class CompletionEstimate:
    progress_percent: float
    remaining_seconds: float
    last_checkpoint_at: datetime | None


@dataclass(slots=True)
class CheckpointStats:
    """Aggregate view over a task's checkpoint log."""

    total: int
    progress_min: float | None = None
    progress_max: float | None = None
    reasons: dict[str, int] = field(default_factory=dict)
    first_at: datetime | None = None
    last_at: datetime | None = None


@dataclass(slots=True)
class BatchSaveResult:
    task_id: str
    success: bool
    checkpoint: Checkpoint | None = None
    error: str | None = None


@dataclass(slots=True)
class AbortEpisode:
    """Immutable record of one emergency suspension."""

    episode_id: str
    task_id: str
    reason: AbortReason
    temperature: float | None
    peak_temperature: float
    elapsed_seconds: int
    thermal_alerts: int
    power_alerts: int
    checkpoint_saved: bool
    suspended: bool
    created_at: datetime


@dataclass(slots=True)
class AbortOutcome:
    """What the abort sequence managed to do."""

    task_id: str
    reason: AbortReason
    episode_id: str | None
    checkpoint_saved: bool
    suspended: bool
    sleep_requested: bool


@dataclass(slots=True)
class MonitoringHandle:
    monitor_id: str
    task_id: str
    started_at: datetime
    initial_temperature: float


@dataclass(slots=True)
class MonitorStats:
    """Read-only snapshot of one monitoring session."""

    task_id: str
    state: MonitorState
    start_temperature: float
    peak_temperature: float
    min_temperature: float | None
    max_temperature: float | None
    thermal_alerts: int
    power_alerts: int
    elapsed_seconds: float
    aborted: bool


@dataclass(slots=True)
class MonitoredTaskSummary:
    task_id: str
    state: MonitorState
    peak_temperature: float
    alerts: int


@dataclass(slots=True)
class ThermalTracePoint:
    task_id: str
    temperature: float
    elapsed_seconds: float
    created_at: datetime


@dataclass(slots=True)
class ResumptionRequest:
    request_id: int
    task_id: str
    abort_reason: str
    status: str
    created_at: datetime


@dataclass(slots=True, frozen=True)
class PolicyResult:
    """Delegation-hours / idle-cooldown verdict from the policy subsystem."""

    allowed: bool
    reason: str = ""
    next_window: datetime | None = None


@dataclass(slots=True, frozen=True)
class EnergyResult:
    """Grid cleanliness verdict from the energy subsystem."""

    clean: bool
    reason: str = ""
    next_clean_window: datetime | None = None


@dataclass(slots=True)
class DecisionWrite:
    """Input payload for appending one scheduling decision."""

    task_id: str
    user_id: str
    verdict: DecisionVerdict
    reason: str
    checks: dict[str, dict[str, Any]] = field(default_factory=dict)
    retry_after_minutes: int | None = None
    next_window: datetime | None = None


@dataclass(slots=True)
class Decision:
    """Scheduling verdict with its audit trail."""

    decision_id: str
    task_id: str
    user_id: str
    verdict: DecisionVerdict
    reason: str
    checks: dict[str, dict[str, Any]]
    retry_after_minutes: int | None
    next_window: datetime | None
    created_at: datetime
