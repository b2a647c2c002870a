"""Tests for automation triggers: parsing, validation and evaluation."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from stageflow.errors import ValidationError
from stageflow.models import Project
from stageflow.stages_data import DEFAULT_STAGES
from stageflow.triggers import (
    AddTagAction,
    ChangeStatusAction,
    DailySweepEvent,
    SendNotificationAction,
    SlackNotifyAction,
    StageEnterEvent,
    StageExitEvent,
    Trigger,
    apply_trigger_patch,
    evaluate,
    parse_action,
    parse_trigger,
    stage_notification_intent,
)

NOW = datetime(2026, 3, 4, 12, 0, tzinfo=UTC)
STAGE_IDS = [s["id"] for s in DEFAULT_STAGES]


def _project(pid: str = "p1", status: str = "in_progress", **fields: Any) -> Project:
    return Project(id=pid, title="t", creator_id="c", status=status, **fields)


def _trigger(trigger_type: str, **fields: Any) -> Trigger:
    raw: dict[str, Any] = {
        "id": f"trg-{trigger_type}",
        "name": f"{trigger_type} rule",
        "trigger_type": trigger_type,
        "actions": [{"type": "send_notification", "template": "nudge"}],
    }
    raw.update(fields)
    return parse_trigger(raw, stage_ids=STAGE_IDS)


class TestParseAction:
    def test_each_action_type(self) -> None:
        assert parse_action({"type": "send_notification", "template": "t"}) == SendNotificationAction("t", "creator")
        assert parse_action({"type": "slack_notify", "channel": "#ops"}) == SlackNotifyAction("#ops", "")
        assert parse_action({"type": "add_tag", "tag": "vip"}) == AddTagAction("vip")
        assert parse_action({"type": "change_status", "new_status": "approved"}) == ChangeStatusAction("approved")

    def test_send_email_alias(self) -> None:
        action = parse_action({"type": "send_email", "template": "welcome"})
        assert isinstance(action, SendNotificationAction)
        assert action.to_dict()["type"] == "send_notification"

    def test_unknown_type(self) -> None:
        with pytest.raises(ValidationError, match="Unknown action type"):
            parse_action({"type": "launch_rocket"})

    def test_missing_parameter(self) -> None:
        with pytest.raises(ValidationError, match="user_id"):
            parse_action({"type": "assign_to"})


class TestParseTrigger:
    def test_round_trip(self) -> None:
        trigger = _trigger("stage_enter", trigger_stage="submitted")
        assert parse_trigger(trigger.to_dict(), stage_ids=STAGE_IDS) == trigger

    def test_name_required(self) -> None:
        with pytest.raises(ValidationError, match="name"):
            _trigger("overdue", name="  ")

    def test_actions_required(self) -> None:
        with pytest.raises(ValidationError, match="actions"):
            _trigger("overdue", actions=[])

    def test_unknown_type(self) -> None:
        with pytest.raises(ValidationError, match="trigger_type"):
            _trigger("hourly")

    def test_stage_trigger_needs_known_stage(self) -> None:
        with pytest.raises(ValidationError, match="trigger_stage"):
            _trigger("stage_exit")
        with pytest.raises(ValidationError, match="not in the catalog"):
            _trigger("stage_exit", trigger_stage="limbo")

    def test_due_soon_needs_days(self) -> None:
        with pytest.raises(ValidationError, match="trigger_days"):
            _trigger("due_soon")

    def test_value_threshold_needs_value(self) -> None:
        with pytest.raises(ValidationError, match="trigger_value_cents"):
            _trigger("value_threshold")

    def test_negative_days(self) -> None:
        with pytest.raises(ValidationError):
            _trigger("due_soon", trigger_days=-1)

    def test_change_status_target_checked(self) -> None:
        with pytest.raises(ValidationError, match="change_status"):
            _trigger("overdue", actions=[{"type": "change_status", "new_status": "limbo"}])

    def test_patch_is_partial(self) -> None:
        trigger = _trigger("due_soon", trigger_days=3)
        patched = apply_trigger_patch(trigger, {"enabled": False}, stage_ids=STAGE_IDS)
        assert patched.enabled is False
        assert patched.trigger_days == 3
        assert patched.actions == trigger.actions

    def test_patch_cannot_change_id(self) -> None:
        with pytest.raises(ValidationError, match="id"):
            apply_trigger_patch(_trigger("overdue"), {"id": "other"}, stage_ids=STAGE_IDS)


class TestEvaluateStageEvents:
    def test_enter_matches_stage(self) -> None:
        trigger = _trigger("stage_enter", trigger_stage="submitted")
        intents = evaluate([trigger], StageEnterEvent(project=_project(), stage="submitted"))
        assert len(intents) == 1
        assert intents[0].project_id == "p1"
        assert intents[0].dedupe_key == "trg-stage_enter:p1:0:enter:submitted"

    def test_enter_ignores_other_stage_and_exit(self) -> None:
        trigger = _trigger("stage_enter", trigger_stage="submitted")
        assert evaluate([trigger], StageEnterEvent(project=_project(), stage="approved")) == []
        assert evaluate([trigger], StageExitEvent(project=_project(), stage="submitted")) == []

    def test_exit(self) -> None:
        trigger = _trigger("stage_exit", trigger_stage="draft")
        intents = evaluate([trigger], StageExitEvent(project=_project(), stage="draft"))
        assert [i.dedupe_key for i in intents] == ["trg-stage_exit:p1:0:exit:draft"]

    def test_each_transition_gets_its_own_key(self) -> None:
        trigger = _trigger("stage_enter", trigger_stage="submitted")
        first = evaluate([trigger], StageEnterEvent(project=_project(), stage="submitted", transition_id=7))
        again = evaluate([trigger], StageEnterEvent(project=_project(), stage="submitted", transition_id=9))
        assert first[0].dedupe_key == "trg-stage_enter:p1:0:enter:submitted:7"
        assert again[0].dedupe_key == "trg-stage_enter:p1:0:enter:submitted:9"

    def test_one_intent_per_action_in_order(self) -> None:
        trigger = _trigger(
            "stage_enter",
            trigger_stage="approved",
            actions=[{"type": "add_tag", "tag": "approved"}, {"type": "slack_notify", "channel": "#wins"}],
        )
        intents = evaluate([trigger], StageEnterEvent(project=_project(), stage="approved"))
        assert [i.action.type for i in intents] == ["add_tag", "slack_notify"]


class TestEvaluateSweep:
    def _sweep(self, trigger: Trigger, *projects: Project) -> list[str]:
        return [i.project_id for i in evaluate([trigger], DailySweepEvent(projects=projects, now=NOW))]

    def test_overdue(self) -> None:
        late = _project("late", due_date="2026-03-03")
        fine = _project("fine", due_date="2026-03-05")
        undated = _project("undated")
        assert self._sweep(_trigger("overdue"), late, fine, undated) == ["late"]

    def test_due_today_is_not_overdue(self) -> None:
        today = _project("today", due_date="2026-03-04")
        this_morning = _project("morning", due_date=(NOW - timedelta(hours=6)).isoformat())
        assert self._sweep(_trigger("overdue"), today, this_morning) == []
        assert self._sweep(_trigger("due_soon", trigger_days=0), today, this_morning) == ["today", "morning"]

    def test_disabled_overdue_never_fires(self) -> None:
        late = _project("late", due_date=(NOW - timedelta(days=3)).isoformat())
        assert self._sweep(_trigger("overdue", enabled=False), late) == []

    def test_due_soon_window(self) -> None:
        trigger = _trigger("due_soon", trigger_days=2)
        inside = _project("inside", due_date="2026-03-06")
        late_evening = _project("evening", due_date="2026-03-06T23:30:00+00:00")
        outside = _project("outside", due_date="2026-03-07")
        past = _project("past", due_date="2026-03-03")
        assert self._sweep(trigger, inside, late_evening, outside, past) == ["inside", "evening"]

    def test_value_threshold_inclusive(self) -> None:
        trigger = _trigger("value_threshold", trigger_value_cents=10_000)
        assert self._sweep(trigger, _project("big", value_cents=10_000), _project("small", value_cents=9_999)) == ["big"]

    def test_resolved_projects_skipped(self) -> None:
        paid = _project("paid", status="payout_approved", due_date=(NOW - timedelta(days=3)).isoformat())
        assert self._sweep(_trigger("overdue"), paid) == []

    def test_stage_triggers_ignore_sweep(self) -> None:
        trigger = _trigger("stage_enter", trigger_stage="draft")
        assert self._sweep(trigger, _project(status="draft")) == []

    def test_same_day_sweeps_share_dedupe_keys(self) -> None:
        trigger = _trigger("overdue")
        late = _project("late", due_date="2026-03-01")
        first = evaluate([trigger], DailySweepEvent(projects=[late], now=NOW))
        again = evaluate([trigger], DailySweepEvent(projects=[late], now=NOW + timedelta(hours=6)))
        tomorrow = evaluate([trigger], DailySweepEvent(projects=[late], now=NOW + timedelta(days=1)))
        assert [i.dedupe_key for i in first] == [i.dedupe_key for i in again] == ["trg-overdue:late:0:2026-03-04"]
        assert tomorrow[0].dedupe_key.endswith("2026-03-05")


def test_stage_notification_intent() -> None:
    intent = stage_notification_intent("submitted", "p1")
    assert intent.action == SendNotificationAction(template="stage_submitted", recipient="creator")
    assert intent.to_dict()["trigger_id"] == "auto_notify:submitted"
    first, again = stage_notification_intent("submitted", "p1", 3), stage_notification_intent("submitted", "p1", 4)
    assert first.dedupe_key != again.dedupe_key
