"""TypedDicts for analytics and stats results."""

from __future__ import annotations

from typing import TypedDict


class ThroughputBucket(TypedDict):
    week: str
    count: int


class CycleTimeBucket(TypedDict):
    days: int
    count: int


class StageMetric(TypedDict):
    stage: str
    label: str
    current_count: int
    avg_duration_days: float


class Bottleneck(StageMetric):
    wip_limit: int | None
    wip_violation: bool


class RiskBucket(TypedDict):
    level: str
    count: int
    value_cents: int


class PipelineAnalytics(TypedDict):
    period_days: int
    throughput: list[ThroughputBucket]
    cycle_time: list[CycleTimeBucket]
    stage_metrics: list[StageMetric]
    bottlenecks: list[Bottleneck]
    risk_distribution: list[RiskBucket]


class PipelineStats(TypedDict):
    total_projects: int
    active_projects: int
    total_value_cents: int
    at_risk_value_cents: int
    overdue_count: int
    due_soon_count: int
    avg_cycle_time_days: float
    throughput_per_week: float
