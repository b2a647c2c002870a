"""Risk scoring: an urgency tier derived from a due date and the current stage."""

from __future__ import annotations

import math
from collections.abc import Collection
from datetime import date, datetime
from typing import Literal

from stageflow.clock import parse_iso
from stageflow.stages_data import DEFAULT_RESOLVED

RiskLevel = Literal["none", "low", "medium", "high", "critical"]

# Ordered from least to most urgent; analytics reports every level in this order.
RISK_LEVELS: tuple[RiskLevel, ...] = ("none", "low", "medium", "high", "critical")

RESOLVED_STAGES: frozenset[str] = frozenset(DEFAULT_RESOLVED)

_SECONDS_PER_DAY = 86400


def days_until(due_date: str | datetime | date | None, now: datetime) -> int | None:
    """Whole days from ``now`` to ``due_date``, rounded up. None if undated or unparseable."""
    due = parse_iso(due_date)
    if due is None:
        return None
    return math.ceil((due - now).total_seconds() / _SECONDS_PER_DAY)


def calendar_days_until(due_date: str | datetime | date | None, now: datetime) -> int | None:
    """Calendar days from today to the due day. Negative means overdue; 0 means due today.

    Overdue and due-soon checks in the sweep and in the pipeline stats both go
    through this, so a project due today is never counted as overdue.
    """
    due = parse_iso(due_date)
    if due is None:
        return None
    return (due.date() - now.date()).days


def risk_level(
    due_date: str | datetime | date | None,
    stage: str,
    *,
    now: datetime,
    resolved: Collection[str] = RESOLVED_STAGES,
) -> RiskLevel:
    """Classify how urgent a project is.

    Resolved stages always score ``"none"`` regardless of date. Otherwise the
    ceiling of days remaining maps to: negative -> critical, <=1 -> high,
    <=3 -> medium, <=7 -> low, else none.
    """
    if stage in resolved:
        return "none"
    diff = days_until(due_date, now)
    if diff is None:
        return "none"
    if diff < 0:
        return "critical"
    if diff <= 1:
        return "high"
    if diff <= 3:
        return "medium"
    if diff <= 7:
        return "low"
    return "none"


def is_at_risk(level: RiskLevel) -> bool:
    return level in ("high", "critical")
