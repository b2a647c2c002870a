"""Clock injection and ISO timestamp helpers.

Every time-dependent function in stageflow takes ``now`` (or a ``Clock``)
explicitly so tests can pin time. Timestamps are stored as ISO-8601 strings.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.isoformat()


def parse_iso(ts: str | datetime | date | None) -> datetime | None:
    """Parse an ISO timestamp or date, handling timezone-aware and naive formats.

    Naive values are treated as UTC. Bare dates (``2026-03-01``) become
    midnight UTC. Returns None if the value cannot be parsed (instead of
    ``utc_now()``, which would silently corrupt metric calculations).
    """
    if ts is None:
        return None
    if isinstance(ts, datetime):
        dt = ts
    elif isinstance(ts, date):
        dt = datetime(ts.year, ts.month, ts.day)
    else:
        try:
            dt = datetime.fromisoformat(ts)
        except (ValueError, TypeError):
            return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


class FixedClock:
    """A settable clock for tests and replays."""

    def __init__(self, now: datetime) -> None:
        self.now = now if now.tzinfo is not None else now.replace(tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now
