"""Flow metrics for the pipeline -- throughput, cycle time, dwell, bottlenecks, risk.

Every function here is a pure reduction over a project snapshot plus an
injected ``now``. Nothing is cached between calls, and empty input yields
zeroed results rather than errors.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timedelta

from stageflow.admission import is_wip_violation
from stageflow.clock import parse_iso
from stageflow.config import PipelineConfig
from stageflow.errors import ValidationError
from stageflow.models import Project, StageHistoryEntry
from stageflow.risk import RISK_LEVELS, calendar_days_until, risk_level
from stageflow.types.analytics import (
    Bottleneck,
    CycleTimeBucket,
    PipelineAnalytics,
    PipelineStats,
    RiskBucket,
    StageMetric,
    ThroughputBucket,
)

WINDOWS: dict[str, int] = {"7d": 7, "30d": 30, "90d": 90}

_SECONDS_PER_DAY = 86400

# Lookbacks for the headline stats.
STATS_CYCLE_DAYS = 90
STATS_THROUGHPUT_DAYS = 30
DUE_SOON_DAYS = 7


def parse_window(window: str | int) -> int:
    """Normalize an analytics window (``"7d"``/``"30d"``/``"90d"`` or 7/30/90) to days."""
    if isinstance(window, int) and not isinstance(window, bool):
        if window in WINDOWS.values():
            return window
    elif isinstance(window, str) and window in WINDOWS:
        return WINDOWS[window]
    msg = f"Invalid analytics window {window!r}. Valid windows: {', '.join(WINDOWS)}"
    raise ValidationError(msg)


def _whole_days(delta: timedelta) -> int:
    return math.floor(delta.total_seconds() / _SECONDS_PER_DAY)


def _week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def _completions(projects: Iterable[Project], *, now: datetime, days: int) -> list[tuple[Project, datetime]]:
    """Projects completed within the trailing ``days`` window, with their parsed completion time."""
    cutoff = now - timedelta(days=days)
    found: list[tuple[Project, datetime]] = []
    for p in projects:
        completed = parse_iso(p.completed_at)
        if completed is not None and cutoff < completed <= now:
            found.append((p, completed))
    return found


# ---------------------------------------------------------------------------
# Individual reductions
# ---------------------------------------------------------------------------


def throughput(projects: Iterable[Project], *, now: datetime, days: int) -> list[ThroughputBucket]:
    """Completions per calendar week (weeks start Monday).

    Every week overlapping the window is reported, zero-filled, as long as
    at least one completion falls inside it. No completions gives ``[]``.
    """
    completed = _completions(projects, now=now, days=days)
    if not completed:
        return []
    counts = Counter(_week_start(dt.date()) for _, dt in completed)
    week = _week_start((now - timedelta(days=days)).date())
    last = _week_start(now.date())
    buckets: list[ThroughputBucket] = []
    while week <= last:
        buckets.append({"week": week.isoformat(), "count": counts.get(week, 0)})
        week += timedelta(days=7)
    return buckets


def cycle_time_histogram(projects: Iterable[Project], *, now: datetime, days: int) -> list[CycleTimeBucket]:
    """Histogram of whole days from creation to completion, ascending by day.

    Returns every observed bucket; display layers slice the first 20.
    """
    counts: Counter[int] = Counter()
    for p, completed in _completions(projects, now=now, days=days):
        created = parse_iso(p.created_at)
        if created is None:
            continue
        counts[_whole_days(completed - created)] += 1
    return [{"days": d, "count": counts[d]} for d in sorted(counts)]


def stage_metrics(projects: Iterable[Project], *, config: PipelineConfig, now: datetime) -> list[StageMetric]:
    """Occupancy and mean whole days since last activity, per non-terminal stage in catalog order."""
    dwell: dict[str, list[int]] = {}
    counts: Counter[str] = Counter()
    for p in projects:
        if p.status == config.terminal:
            continue
        counts[p.status] += 1
        last = parse_iso(p.last_activity_at)
        if last is not None:
            dwell.setdefault(p.status, []).append(_whole_days(now - last))

    metrics: list[StageMetric] = []
    for stage in config.stages:
        if stage.id == config.terminal:
            continue
        samples = dwell.get(stage.id, [])
        metrics.append(
            {
                "stage": stage.id,
                "label": stage.label,
                "current_count": counts.get(stage.id, 0),
                "avg_duration_days": round(sum(samples) / len(samples), 1) if samples else 0.0,
            }
        )
    return metrics


def bottlenecks(metrics: Sequence[StageMetric], *, config: PipelineConfig) -> list[Bottleneck]:
    """Stage metrics ranked by dwell, longest first, flagged for WIP violations.

    The sort is stable, so equal dwell keeps catalog order.
    """
    ranked: list[Bottleneck] = []
    for m in metrics:
        limit = config.limit_for(m["stage"])
        ranked.append(
            {
                "stage": m["stage"],
                "label": m["label"],
                "current_count": m["current_count"],
                "avg_duration_days": m["avg_duration_days"],
                "wip_limit": limit,
                "wip_violation": is_wip_violation(limit, m["current_count"]),
            }
        )
    ranked.sort(key=lambda b: b["avg_duration_days"], reverse=True)
    return ranked


def risk_distribution(projects: Iterable[Project], *, config: PipelineConfig, now: datetime) -> list[RiskBucket]:
    """Count and summed value per risk level over non-terminal projects. All five levels always present."""
    buckets: dict[str, RiskBucket] = {level: {"level": level, "count": 0, "value_cents": 0} for level in RISK_LEVELS}
    for p in projects:
        if p.status == config.terminal:
            continue
        level = risk_level(p.due_date, p.status, now=now, resolved=config.resolved_stages)
        buckets[level]["count"] += 1
        buckets[level]["value_cents"] += p.value_cents
    return [buckets[level] for level in RISK_LEVELS]


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


def aggregate(
    projects: Iterable[Project],
    *,
    config: PipelineConfig,
    now: datetime,
    window: str | int = "30d",
) -> PipelineAnalytics:
    """Compute the full analytics bundle for one trailing window.

    Args:
        projects: Snapshot of every project, in any order.
        config: Pipeline configuration for catalog order, terminal and WIP limits.
        now: Reference time for windows, dwell and risk.
        window: ``"7d"``, ``"30d"`` or ``"90d"``.
    """
    days = parse_window(window)
    snapshot = list(projects)
    metrics = stage_metrics(snapshot, config=config, now=now)
    return {
        "period_days": days,
        "throughput": throughput(snapshot, now=now, days=days),
        "cycle_time": cycle_time_histogram(snapshot, now=now, days=days),
        "stage_metrics": metrics,
        "bottlenecks": bottlenecks(metrics, config=config),
        "risk_distribution": risk_distribution(snapshot, config=config, now=now),
    }


def pipeline_stats(projects: Iterable[Project], *, config: PipelineConfig, now: datetime) -> PipelineStats:
    """Headline numbers for the pipeline overview."""
    snapshot = list(projects)
    total_value = 0
    at_risk_value = 0
    overdue = 0
    due_soon = 0
    active = 0
    for p in snapshot:
        total_value += p.value_cents
        if p.status != config.terminal:
            active += 1
        if p.status in config.resolved_stages:
            continue
        remaining = calendar_days_until(p.due_date, now)
        if remaining is None:
            continue
        if remaining < 0:
            overdue += 1
            at_risk_value += p.value_cents
        elif remaining <= DUE_SOON_DAYS:
            due_soon += 1

    cycle_samples: list[int] = []
    for p, completed in _completions(snapshot, now=now, days=STATS_CYCLE_DAYS):
        created = parse_iso(p.created_at)
        if created is not None:
            cycle_samples.append(_whole_days(completed - created))

    recent = _completions(snapshot, now=now, days=STATS_THROUGHPUT_DAYS)
    per_week = 0.0
    if recent:
        earliest = min(dt for _, dt in recent)
        weeks = max(_whole_days(now - earliest) // 7, 1)
        per_week = round(len(recent) / weeks, 1)

    return {
        "total_projects": len(snapshot),
        "active_projects": active,
        "total_value_cents": total_value,
        "at_risk_value_cents": at_risk_value,
        "overdue_count": overdue,
        "due_soon_count": due_soon,
        "avg_cycle_time_days": round(sum(cycle_samples) / len(cycle_samples), 1) if cycle_samples else 0.0,
        "throughput_per_week": per_week,
    }


def stage_durations(history: Iterable[StageHistoryEntry], *, now: datetime) -> dict[str, float]:
    """Hours a single project spent in each stage, from its ordered history.

    The most recent stage is counted up to ``now``. Entries with unparseable
    timestamps are skipped.
    """
    timeline: list[tuple[datetime, str]] = []
    for entry in history:
        ts = parse_iso(entry.created_at)
        if ts is not None:
            timeline.append((ts, entry.to_stage))
    timeline.sort(key=lambda t: t[0])

    hours: dict[str, float] = {}
    for i, (entered, stage) in enumerate(timeline):
        left = timeline[i + 1][0] if i + 1 < len(timeline) else now
        span = max((left - entered).total_seconds(), 0.0) / 3600
        hours[stage] = hours.get(stage, 0.0) + span
    return {stage: round(h, 2) for stage, h in hours.items()}
