"""Tests for deadline risk scoring."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from stageflow.risk import RISK_LEVELS, days_until, is_at_risk, risk_level
from stageflow.stages_data import DEFAULT_STAGES

NOW = datetime(2026, 3, 4, 12, 0, tzinfo=UTC)


def _due(**delta: float) -> str:
    return (NOW + timedelta(**delta)).isoformat()


class TestRiskLevel:
    @pytest.mark.parametrize("stage", [s["id"] for s in DEFAULT_STAGES])
    def test_undated_is_none(self, stage: str) -> None:
        assert risk_level(None, stage, now=NOW) == "none"

    def test_yesterday_in_draft_is_critical(self) -> None:
        assert risk_level(_due(days=-1), "draft", now=NOW) == "critical"

    def test_yesterday_when_paid_is_none(self) -> None:
        assert risk_level(_due(days=-1), "payout_approved", now=NOW) == "none"

    @pytest.mark.parametrize("stage", ["approved", "payout_ready", "withdrawal_requested"])
    def test_resolved_stages_are_none(self, stage: str) -> None:
        assert risk_level(_due(days=-30), stage, now=NOW) == "none"

    @pytest.mark.parametrize(
        ("delta_days", "expected"),
        [
            (-0.1, "high"),  # ceil(-0.1) == 0: due earlier today
            (-1.5, "critical"),
            (0.5, "high"),
            (1, "high"),
            (1.5, "medium"),
            (3, "medium"),
            (3.01, "low"),
            (7, "low"),
            (7.5, "none"),
            (30, "none"),
        ],
    )
    def test_tiers(self, delta_days: float, expected: str) -> None:
        assert risk_level(_due(days=delta_days), "in_progress", now=NOW) == expected

    def test_bare_date_is_midnight_utc(self) -> None:
        # 2026-03-03T00:00Z is 1.5 days before NOW
        assert risk_level("2026-03-03", "draft", now=NOW) == "critical"
        # 2026-03-05T00:00Z is 12 hours after NOW
        assert risk_level("2026-03-05", "draft", now=NOW) == "high"

    def test_custom_resolved_set(self) -> None:
        assert risk_level(_due(days=-1), "approved", now=NOW, resolved=frozenset()) == "critical"

    def test_unparseable_due_date_is_none(self) -> None:
        assert risk_level("not a date", "draft", now=NOW) == "none"


class TestHelpers:
    def test_days_until_rounds_up(self) -> None:
        assert days_until(_due(hours=1), NOW) == 1
        assert days_until(_due(days=-2), NOW) == -2
        assert days_until(None, NOW) is None

    def test_is_at_risk(self) -> None:
        assert [level for level in RISK_LEVELS if is_at_risk(level)] == ["high", "critical"]
