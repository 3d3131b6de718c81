"""Operator-facing aggregates over the decision and abort logs."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime

from thermal_scheduler.supervisor.models import DecisionVerdict
from thermal_scheduler.supervisor.repository import RESUMPTION_PENDING, SupervisorRepository

EPISODE_SCAN_LIMIT = 1_000


@dataclass(slots=True)
class SupervisorMetricsSnapshot:
    """Aggregated supervisor metrics used by the stats command."""

    decision_counts: dict[str, int]
    episode_reason_counts: dict[str, int]
    episodes_total: int
    checkpoint_saved_rate: float | None
    suspended_rate: float | None
    mean_peak_temperature: float | None
    max_peak_temperature: float | None
    pending_resumptions: int

    @property
    def decisions_total(self) -> int:
        return sum(self.decision_counts.values())


def build_supervisor_metrics(
    *,
    repository: SupervisorRepository,
    since: datetime,
) -> SupervisorMetricsSnapshot:
    counts = repository.count_decisions_by_verdict(since=since)
    decision_counts = {verdict.value: counts.get(verdict, 0) for verdict in DecisionVerdict}

    episodes = [
        episode
        for episode in repository.list_abort_episodes(limit=EPISODE_SCAN_LIMIT)
        if episode.created_at >= since
    ]
    reasons = Counter(episode.reason.value for episode in episodes)
    peaks = [episode.peak_temperature for episode in episodes]
    pending = repository.list_resumption_requests(status=RESUMPTION_PENDING)

    return SupervisorMetricsSnapshot(
        decision_counts=decision_counts,
        episode_reason_counts=dict(sorted(reasons.items())),
        episodes_total=len(episodes),
        checkpoint_saved_rate=_safe_ratio(
            numerator=sum(1 for episode in episodes if episode.checkpoint_saved),
            denominator=len(episodes),
        ),
        suspended_rate=_safe_ratio(
            numerator=sum(1 for episode in episodes if episode.suspended),
            denominator=len(episodes),
        ),
        mean_peak_temperature=sum(peaks) / len(peaks) if peaks else None,
        max_peak_temperature=max(peaks) if peaks else None,
        pending_resumptions=len(pending),
    )


def render_stats_lines(*, snapshot: SupervisorMetricsSnapshot, hours: int) -> list[str]:
    """Render decision and abort health lines for CLI output."""

    return [
        f"Thermal scheduler health (window={hours}h)",
        f"Decisions: total={snapshot.decisions_total} {_fmt_key_value(snapshot.decision_counts)}",
        (
            f"Abort episodes: total={snapshot.episodes_total} "
            + (_fmt_key_value(snapshot.episode_reason_counts) or "none")
        ),
        (
            "Abort handling: "
            f"checkpoint_saved_rate={_fmt_ratio(snapshot.checkpoint_saved_rate)} "
            f"suspended_rate={_fmt_ratio(snapshot.suspended_rate)}"
        ),
        (
            "Abort peaks: "
            f"mean={_fmt_temperature(snapshot.mean_peak_temperature)} "
            f"max={_fmt_temperature(snapshot.max_peak_temperature)}"
        ),
        f"Pending resumptions: {snapshot.pending_resumptions}",
    ]


def _safe_ratio(*, numerator: int, denominator: int) -> float | None:
    if denominator <= 0:
        return None
    return numerator / denominator


def _fmt_ratio(value: float | None) -> str:
    if value is None:
        return "n/a"
    return f"{value * 100:.1f}%"


def _fmt_temperature(value: float | None) -> str:
    if value is None:
        return "n/a"
    return f"{value:.1f}°C"


def _fmt_key_value(values: dict[str, int]) -> str:
    return " ".join(f"{key}={value}" for key, value in values.items())
