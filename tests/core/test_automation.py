"""Tests for automation after moves and for the daily sweep."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import pytest

from stageflow.clock import FixedClock
from stageflow.core import PipelineDB
from stageflow.dispatch import RecordingDispatcher
from stageflow.engine import MAX_TRIGGER_DEPTH, PipelineEngine
from stageflow.models import Project
from stageflow.triggers import ActionIntent, StageEnterEvent

Seed = Callable[..., Project]


def _add(engine: PipelineEngine, name: str, trigger_type: str, actions: list[dict[str, Any]], **fields: Any) -> str:
    return engine.create_trigger({"name": name, "trigger_type": trigger_type, "actions": actions, **fields}).id


class _ExplodingDispatcher:
    def send_notification(self, template: str, recipient: str, *, project_id: str) -> None:
        raise RuntimeError("mail server down")

    def slack_notify(self, channel: str, message: str, *, project_id: str) -> None:
        raise RuntimeError("slack down")

    def assign_to(self, user_id: str, *, project_id: str) -> None:
        raise RuntimeError("directory down")

    def add_tag(self, tag: str, *, project_id: str) -> None:
        raise RuntimeError("tags down")


class TestStageAutomation:
    def test_auto_notify_stage(self, engine: PipelineEngine, seed: Seed, dispatcher: RecordingDispatcher) -> None:
        p = seed("in_progress")
        engine.apply_transition(p.id, "submitted")
        assert dispatcher.calls == [("send_notification", p.id, ("stage_submitted", "creator"))]

    def test_quiet_stage_dispatches_nothing(self, engine: PipelineEngine, seed: Seed, dispatcher: RecordingDispatcher) -> None:
        p = seed("draft")
        engine.apply_transition(p.id, "in_progress")
        assert dispatcher.calls == []

    def test_exit_then_enter(self, engine: PipelineEngine, seed: Seed, dispatcher: RecordingDispatcher) -> None:
        _add(engine, "Entered approval", "stage_enter", [{"type": "add_tag", "tag": "approved"}], trigger_stage="approved")
        _add(engine, "Left review", "stage_exit", [{"type": "assign_to", "user_id": "finance"}], trigger_stage="submitted")
        p = seed("submitted")
        engine.apply_transition(p.id, "approved")
        assert dispatcher.calls == [
            ("assign_to", p.id, ("finance",)),
            ("add_tag", p.id, ("approved",)),
        ]

    def test_disabled_trigger_silent(self, engine: PipelineEngine, seed: Seed, dispatcher: RecordingDispatcher) -> None:
        _add(
            engine, "Off", "stage_enter", [{"type": "add_tag", "tag": "x"}], trigger_stage="in_progress", enabled=False
        )
        engine.apply_transition(seed("draft").id, "in_progress")
        assert dispatcher.calls == []

    def test_change_status_applied_as_move(self, engine: PipelineEngine, seed: Seed, db: PipelineDB) -> None:
        _add(
            engine,
            "Fast track",
            "stage_enter",
            [{"type": "change_status", "new_status": "payout_ready"}],
            trigger_stage="approved",
        )
        p = seed("submitted")
        returned = engine.apply_transition(p.id, "approved", actor="reviewer")
        assert returned.status == "approved"
        assert db.fetch_project(p.id).status == "payout_ready"
        last = engine.get_history(p.id)[-1]
        assert (last.from_stage, last.to_stage) == ("approved", "payout_ready")
        assert last.actor == "automation:Fast track"
        assert last.note == "Automated by trigger 'Fast track'"

    def test_illegal_automated_move_logged_not_raised(
        self, engine: PipelineEngine, seed: Seed, db: PipelineDB, caplog: pytest.LogCaptureFixture
    ) -> None:
        _add(engine, "Bounce", "stage_enter", [{"type": "change_status", "new_status": "draft"}], trigger_stage="approved")
        p = seed("submitted")
        with caplog.at_level(logging.WARNING, logger="stageflow.engine"):
            engine.apply_transition(p.id, "approved")
        assert db.fetch_project(p.id).status == "approved"
        assert "rejected" in caplog.text

    def test_automated_moves_respect_wip(self, engine: PipelineEngine, seed: Seed, db: PipelineDB) -> None:
        engine.update_pipeline_config({"wip_limits": {"payout_ready": 1}})
        seed("payout_ready")
        _add(engine, "Fast track", "stage_enter", [{"type": "change_status", "new_status": "payout_ready"}], trigger_stage="approved")
        p = seed("submitted")
        engine.apply_transition(p.id, "approved")
        assert db.fetch_project(p.id).status == "approved"

    def test_chain_stops_at_depth_limit(self, engine: PipelineEngine, seed: Seed) -> None:
        _add(engine, "Back", "stage_enter", [{"type": "change_status", "new_status": "draft"}], trigger_stage="in_progress")
        _add(engine, "Forth", "stage_enter", [{"type": "change_status", "new_status": "in_progress"}], trigger_stage="draft")
        p = seed("draft")
        engine.apply_transition(p.id, "in_progress")
        history = engine.get_history(p.id)
        assert len(history) == 1 + MAX_TRIGGER_DEPTH
        assert [h.actor.startswith("automation:") for h in history] == [False] + [True] * MAX_TRIGGER_DEPTH

    def test_dispatcher_failure_does_not_fail_move(
        self, db: PipelineDB, clock: FixedClock, seed: Seed, caplog: pytest.LogCaptureFixture
    ) -> None:
        engine = PipelineEngine(db, clock=clock, dispatcher=_ExplodingDispatcher())
        p = seed("in_progress")
        with caplog.at_level(logging.ERROR, logger="stageflow.engine"):
            moved = engine.apply_transition(p.id, "submitted")
        assert moved.status == "submitted"
        assert db.fetch_project(p.id).status == "submitted"
        assert "Dispatcher failed" in caplog.text

    def test_reentering_a_stage_gets_fresh_dedupe_keys(
        self, engine: PipelineEngine, seed: Seed, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        _add(engine, "Resubmitted", "stage_enter", [{"type": "add_tag", "tag": "review"}], trigger_stage="submitted")
        seen: list[ActionIntent] = []

        def _record(intent: ActionIntent, dispatcher: object) -> bool:
            seen.append(intent)
            return True

        monkeypatch.setattr("stageflow.engine.dispatch_intent", _record)
        p = seed("in_progress")
        engine.apply_transition(p.id, "submitted")
        first = [i.dedupe_key for i in seen]
        seen.clear()
        engine.apply_transition(p.id, "revision_requested")
        engine.apply_transition(p.id, "submitted")
        second = [i.dedupe_key for i in seen]
        # configured trigger plus the built-in auto_notify on submitted
        assert len(first) == len(second) == 2
        assert set(first).isdisjoint(second)

    def test_evaluate_triggers_does_not_dispatch(
        self, engine: PipelineEngine, seed: Seed, dispatcher: RecordingDispatcher
    ) -> None:
        _add(engine, "Tag", "stage_enter", [{"type": "add_tag", "tag": "x"}], trigger_stage="draft")
        intents = engine.evaluate_triggers(StageEnterEvent(project=seed("draft"), stage="draft"))
        assert [i.action.type for i in intents] == ["add_tag"]
        assert dispatcher.calls == []


class TestDailySweep:
    def test_overdue_open_projects_only(self, engine: PipelineEngine, seed: Seed, dispatcher: RecordingDispatcher) -> None:
        _add(engine, "Late", "overdue", [{"type": "send_notification", "template": "late"}])
        late = seed("in_progress", due_date="2026-03-01")
        seed("approved", due_date="2026-03-01")
        seed("draft", due_date="2026-03-20")
        seed("draft")
        intents = engine.run_daily_sweep()
        assert [i.project_id for i in intents] == [late.id]
        assert dispatcher.calls == [("send_notification", late.id, ("late", "creator"))]

    def test_same_day_reruns_share_dedupe_keys(self, engine: PipelineEngine, seed: Seed, clock: FixedClock) -> None:
        trigger_id = _add(engine, "Late", "overdue", [{"type": "send_notification", "template": "late"}])
        late = seed("draft", due_date="2026-03-01")
        first = [i.dedupe_key for i in engine.run_daily_sweep()]
        clock.advance(hours=6)
        second = [i.dedupe_key for i in engine.run_daily_sweep()]
        assert first == second == [f"{trigger_id}:{late.id}:0:2026-03-04"]

    def test_disabled_overdue_never_fires(self, engine: PipelineEngine, seed: Seed, dispatcher: RecordingDispatcher) -> None:
        _add(engine, "Late", "overdue", [{"type": "send_notification", "template": "late"}], enabled=False)
        seed("draft", due_date="2026-02-01")
        assert engine.run_daily_sweep() == []
        assert dispatcher.calls == []

    def test_due_today_agrees_with_stats_and_risk(self, engine: PipelineEngine, seed: Seed) -> None:
        _add(engine, "Late", "overdue", [{"type": "send_notification", "template": "late"}])
        _add(engine, "Today", "due_soon", [{"type": "add_tag", "tag": "today"}], trigger_days=0)
        today = seed("in_progress", due_date="2026-03-04")
        yesterday = seed("in_progress", due_date="2026-03-03")
        fired = {(i.trigger_name, i.project_id) for i in engine.run_daily_sweep()}
        assert fired == {("Late", yesterday.id), ("Today", today.id)}
        stats = engine.get_stats()
        assert stats["overdue_count"] == 1
        assert stats["due_soon_count"] == 1
        assert engine.get_project(today.id).risk_level == "high"
        assert engine.get_project(yesterday.id).risk_level == "critical"

    def test_due_soon(self, engine: PipelineEngine, seed: Seed) -> None:
        _add(engine, "Soon", "due_soon", [{"type": "slack_notify", "channel": "#ops"}], trigger_days=3)
        soon = seed("draft", due_date="2026-03-06")
        seed("draft", due_date="2026-03-09")
        assert [i.project_id for i in engine.run_daily_sweep()] == [soon.id]

    def test_value_threshold_can_move(self, engine: PipelineEngine, seed: Seed, db: PipelineDB, dispatcher: RecordingDispatcher) -> None:
        _add(
            engine,
            "Big deal",
            "value_threshold",
            [{"type": "change_status", "new_status": "submitted"}],
            trigger_value_cents=50_000,
        )
        big = seed("in_progress", value_cents=75_000)
        small = seed("in_progress", value_cents=1_000)
        engine.run_daily_sweep()
        assert db.fetch_project(big.id).status == "submitted"
        assert db.fetch_project(small.id).status == "in_progress"
        assert dispatcher.calls == [("send_notification", big.id, ("stage_submitted", "creator"))]
