"""PipelineEngine -- the single entry point callers use to change or read the pipeline.

The engine owns no state between calls. Each operation loads one
``PipelineConfig`` snapshot from the store and threads it through the pure
validator, admission, risk and analytics functions.

Transition path::

    fetch -> validate (stages) -> count + admit (admission) -> CAS write + history
          -> commit -> exit/enter events -> evaluate (triggers) -> dispatch

Everything before the commit runs inside ``store.transaction()``; a failure
at any step leaves no partial write. Automation runs after the commit and can
never fail the move that caused it.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from stageflow.admission import can_admit, check_admission
from stageflow.analytics import aggregate, pipeline_stats, stage_durations
from stageflow.clock import Clock, to_iso, utc_now
from stageflow.config import PipelineConfig, config_from_dict, merge_config_patch
from stageflow.dispatch import ActionDispatcher, LoggingDispatcher, dispatch_intent
from stageflow.errors import (
    InvalidTransitionError,
    PipelineError,
    ValidationError,
)
from stageflow.models import Project, SavedFilter, StageHistoryEntry
from stageflow.stages import is_valid_transition, rejection_reason, valid_targets
from stageflow.storage import PipelineStore
from stageflow.triggers import (
    ActionIntent,
    ChangeStatusAction,
    DailySweepEvent,
    StageEnterEvent,
    StageExitEvent,
    Trigger,
    TriggerEvent,
    apply_trigger_patch,
    evaluate,
    parse_trigger,
    stage_notification_intent,
)
from stageflow.types.analytics import PipelineAnalytics, PipelineStats
from stageflow.types.api import BulkError, BulkResultDict, TransitionsResponse
from stageflow.types.core import PaginatedProjects, ProjectFilters
from stageflow.validation import parse_due_date, parse_filters, parse_tags, parse_title, parse_value_cents

logger = logging.getLogger(__name__)

# Automated moves may trigger further automated moves; stop after this many hops.
MAX_TRIGGER_DEPTH = 3


@dataclass
class BulkResult:
    """Per-item outcome of a bulk move. Never raised; partial failure is data."""

    updated: list[Project] = field(default_factory=list)
    errors: list[BulkError] = field(default_factory=list)

    @property
    def updated_count(self) -> int:
        return len(self.updated)

    def to_dict(self) -> BulkResultDict:
        return {
            "updated_count": self.updated_count,
            "updated": [p.to_dict() for p in self.updated],
            "errors": list(self.errors),
        }


def _validate_id_list(value: object, name: str) -> list[str]:
    if not isinstance(value, list | tuple) or not all(isinstance(i, str) for i in value):
        msg = f"{name} must be a list of strings"
        raise ValidationError(msg)
    return list(value)


class PipelineEngine:
    """Transition coordinator and read model over a ``PipelineStore``."""

    def __init__(
        self,
        store: PipelineStore,
        *,
        clock: Clock = utc_now,
        dispatcher: ActionDispatcher | None = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.dispatcher: ActionDispatcher = dispatcher if dispatcher is not None else LoggingDispatcher()

    # -- Configuration -------------------------------------------------------

    def get_pipeline_config(self) -> PipelineConfig:
        return self.store.fetch_config()

    def update_pipeline_config(
        self,
        patch: Mapping[str, Any],
        *,
        replace: bool = False,
        actor: str = "",
    ) -> PipelineConfig:
        """Merge-patch (or with ``replace=True``, overwrite) the pipeline configuration.

        Raises:
            ValidationError: If the result is inconsistent, or would drop a
                stage that still holds projects.
        """
        with self.store.transaction():
            current = self.store.fetch_config()
            updated = config_from_dict(patch) if replace else merge_config_patch(current, patch)
            occupied = self.store.stage_counts()
            orphaned = sorted(s for s, n in occupied.items() if n and not updated.has_stage(s))
            if orphaned:
                msg = f"Cannot remove stages that still hold projects: {', '.join(orphaned)}"
                raise ValidationError(msg)
            self.store.save_config(updated, now=to_iso(self.clock()))

        for trigger in self.store.fetch_triggers():
            if trigger.trigger_stage is not None and not updated.has_stage(trigger.trigger_stage):
                logger.warning(
                    "Trigger %s references removed stage %s and will never fire",
                    trigger.name,
                    trigger.trigger_stage,
                    extra={"trigger_id": trigger.id},
                )
        logger.info("Pipeline config %s", "replaced" if replace else "updated", extra={"actor": actor})
        return updated

    # -- Pure checks against the current config ------------------------------

    def is_valid_transition(self, from_stage: str, to_stage: str, *, acting_as_admin: bool = False) -> bool:
        config = self.store.fetch_config()
        return is_valid_transition(config.graph, from_stage, to_stage, acting_as_admin=acting_as_admin)

    def can_admit(self, stage: str, current_count: int | None = None) -> bool:
        """Admission check for ``stage``. Counts current occupancy when no count is given."""
        config = self.store.fetch_config()
        if current_count is None:
            current_count = self.store.count_in_stage(stage)
        return can_admit(config.limit_for(stage), current_count)

    # -- Projects ------------------------------------------------------------

    def get_project(self, project_id: str) -> Project:
        config = self.store.fetch_config()
        return self.store.fetch_project(project_id).refresh_risk(now=self.clock(), resolved=config.resolved_stages)

    def get_valid_targets(self, project_id: str, *, acting_as_admin: bool = False) -> list[str]:
        config = self.store.fetch_config()
        project = self.store.fetch_project(project_id)
        return valid_targets(config.graph, project.status, acting_as_admin=acting_as_admin, order=config.stage_ids)

    def get_transitions(self, project_id: str, *, acting_as_admin: bool = False) -> TransitionsResponse:
        """Current stage, whether it is locked, and the legal next stages for this caller."""
        config = self.store.fetch_config()
        project = self.store.fetch_project(project_id)
        return {
            "project_id": project.id,
            "status": project.status,
            "valid_targets": valid_targets(
                config.graph, project.status, acting_as_admin=acting_as_admin, order=config.stage_ids
            ),
            "locked": project.status in config.graph.locked,
        }

    def list_projects(
        self,
        filters: Mapping[str, Any] | None = None,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> PaginatedProjects:
        """Filtered, risk-annotated projects, due date ascending (undated last), then newest first.

        With ``filters=None`` the configured default filter applies.
        ``risk_levels`` is evaluated here, after risk is computed; every
        other predicate is pushed to the store.
        """
        if limit < 0:
            limit = 100
        if offset < 0:
            offset = 0
        config = self.store.fetch_config()
        raw = dict(filters) if filters is not None else dict(config.default_filters or {})
        parsed = parse_filters(raw, stage_ids=config.stage_ids)
        now = self.clock()

        projects = [
            p.refresh_risk(now=now, resolved=config.resolved_stages) for p in self.store.fetch_projects_snapshot(parsed)
        ]
        if risk_levels := parsed.get("risk_levels"):
            projects = [p for p in projects if p.risk_level in risk_levels]

        page = projects[offset : offset + limit]
        return {
            "results": [p.to_dict() for p in page],
            "total": len(projects),
            "limit": limit,
            "offset": offset,
            "has_more": offset + len(page) < len(projects),
        }

    def create_project(
        self,
        title: str,
        *,
        creator_id: str,
        value_cents: int = 0,
        due_date: str | None = None,
        tags: Sequence[str] = (),
        status: str | None = None,
        actor: str = "",
    ) -> Project:
        """Create a project in ``status`` (default: the first catalog stage).

        Without an explicit ``due_date`` the stage's ``default_due_days``
        offset, if any, sets one. Creation is admission-checked like a move.
        """
        config = self.store.fetch_config()
        title = parse_title(title)
        if not isinstance(creator_id, str) or not creator_id.strip():
            msg = "creator_id is required"
            raise ValidationError(msg)
        value_cents = parse_value_cents(value_cents)
        tag_list = parse_tags(list(tags))
        stage_id = status or config.initial_stage
        stage = config.get_stage(stage_id)
        if stage is None:
            msg = f"Unknown stage '{stage_id}'. Valid stages: {', '.join(config.stage_ids)}"
            raise ValidationError(msg)

        now = self.clock()
        ts = to_iso(now)
        due = parse_due_date(due_date)
        if due is None and stage.default_due_days is not None:
            due = (now + timedelta(days=stage.default_due_days)).date().isoformat()

        with self.store.transaction():
            check_admission(config, stage_id, self.store.count_in_stage(stage_id))
            project = Project(
                id=self.store.new_project_id(),
                title=title,
                creator_id=creator_id.strip(),
                status=stage_id,
                due_date=due,
                value_cents=value_cents,
                tags=tag_list,
                last_activity_at=ts,
                created_at=ts,
                updated_at=ts,
            )
            self.store.insert_project(project)
            self.store.append_history(
                StageHistoryEntry(project_id=project.id, to_stage=stage_id, actor=actor, note="Created", created_at=ts)
            )
        logger.info("Project %s created in %s", project.id, stage_id, extra={"project_id": project.id, "actor": actor})
        return project.refresh_risk(now=now, resolved=config.resolved_stages)

    def update_due_date(self, project_id: str, due_date: str | None, *, actor: str = "") -> Project:
        """Set or (with None) clear a project's due date."""
        due = parse_due_date(due_date)
        with self.store.transaction():
            self.store.write_due_date(project_id, due, updated_at=to_iso(self.clock()))
        logger.info("Project %s due date set to %s", project_id, due, extra={"project_id": project_id, "actor": actor})
        return self.get_project(project_id)

    def record_activity(self, project_id: str) -> Project:
        with self.store.transaction():
            self.store.touch_activity(project_id, activity_at=to_iso(self.clock()))
        return self.get_project(project_id)

    def get_history(self, project_id: str) -> list[StageHistoryEntry]:
        self.store.fetch_project(project_id)
        return self.store.fetch_history(project_id)

    def get_recent_history(self, *, limit: int = 50) -> list[StageHistoryEntry]:
        return self.store.fetch_recent_history(limit=limit)

    def get_stage_durations(self, project_id: str) -> dict[str, float]:
        """Hours spent per stage for one project, the current stage counted up to now."""
        return stage_durations(self.get_history(project_id), now=self.clock())

    # -- Transitions ---------------------------------------------------------

    def apply_transition(
        self,
        project_id: str,
        target_stage: str,
        *,
        actor: str = "",
        note: str = "",
        acting_as_admin: bool = False,
    ) -> Project:
        """Move one project to ``target_stage`` atomically.

        Returns the refreshed project with risk recomputed.

        Raises:
            NotFoundError: The project does not exist.
            InvalidTransitionError: The move is not legal for this caller.
            AdmissionDeniedError: ``target_stage`` is at its WIP limit.
            ConcurrentModificationError: The project moved underneath us.
        """
        return self._transition(
            project_id, target_stage, actor=actor, note=note, acting_as_admin=acting_as_admin, depth=0
        )

    def _transition(
        self,
        project_id: str,
        target_stage: str,
        *,
        actor: str,
        note: str,
        acting_as_admin: bool,
        depth: int,
    ) -> Project:
        t0 = time.monotonic()
        now = self.clock()
        ts = to_iso(now)

        with self.store.transaction():
            config = self.store.fetch_config()
            project = self.store.fetch_project(project_id)
            prior = project.status

            if not is_valid_transition(config.graph, prior, target_stage, acting_as_admin=acting_as_admin):
                reason = (
                    rejection_reason(config.graph, prior, target_stage, acting_as_admin=acting_as_admin)
                    if config.has_stage(target_stage)
                    else f"'{target_stage}' is not a stage in the catalog"
                )
                raise InvalidTransitionError(
                    prior,
                    target_stage,
                    project_id=project_id,
                    valid_targets=valid_targets(
                        config.graph, prior, acting_as_admin=acting_as_admin, order=config.stage_ids
                    ),
                    reason=reason,
                )

            check_admission(config, target_stage, self.store.count_in_stage(target_stage))

            self.store.write_project_stage(
                project_id,
                target_stage,
                prior,
                activity_at=ts,
                approved_at=ts if target_stage == config.approval_stage else None,
                completed_at=ts if target_stage == config.terminal else None,
            )
            entry = self.store.append_history(
                StageHistoryEntry(
                    project_id=project_id,
                    from_stage=prior,
                    to_stage=target_stage,
                    actor=actor,
                    note=note,
                    created_at=ts,
                )
            )

        logger.info(
            "Project %s moved %s -> %s",
            project_id,
            prior,
            target_stage,
            extra={
                "project_id": project_id,
                "actor": actor,
                "stage": target_stage,
                "duration_ms": round((time.monotonic() - t0) * 1000, 1),
            },
        )
        updated = self.store.fetch_project(project_id).refresh_risk(now=now, resolved=config.resolved_stages)
        self._run_stage_automation(updated, prior, target_stage, config, transition_id=entry.id, depth=depth)
        return updated

    def apply_bulk(
        self,
        project_ids: Sequence[str],
        target_stage: str,
        *,
        actor: str = "",
        note: str = "Bulk update",
        acting_as_admin: bool = False,
    ) -> BulkResult:
        """Move several projects independently. Each item is atomic; the batch is not."""
        ids = _validate_id_list(project_ids, "project_ids")
        result = BulkResult()
        for project_id in ids:
            try:
                result.updated.append(
                    self.apply_transition(
                        project_id, target_stage, actor=actor, note=note, acting_as_admin=acting_as_admin
                    )
                )
            except InvalidTransitionError as e:
                result.errors.append(
                    {"id": project_id, "error": str(e), "code": e.code, "valid_targets": list(e.valid_targets)}
                )
            except PipelineError as e:
                result.errors.append({"id": project_id, "error": str(e), "code": e.code})
            except Exception as e:
                logger.error(
                    "Bulk move of %s to %s failed",
                    project_id,
                    target_stage,
                    extra={"project_id": project_id, "actor": actor, "stage": target_stage, "error": type(e).__name__},
                    exc_info=True,
                )
                result.errors.append({"id": project_id, "error": str(e), "code": "ERROR"})
        logger.info(
            "Bulk move to %s: %d updated, %d failed",
            target_stage,
            result.updated_count,
            len(result.errors),
            extra={"actor": actor, "stage": target_stage},
        )
        return result

    # -- Automation ----------------------------------------------------------

    def evaluate_triggers(self, event: TriggerEvent) -> list[ActionIntent]:
        """Evaluate the stored triggers against ``event`` without dispatching anything."""
        config = self.store.fetch_config()
        return evaluate(self.store.fetch_triggers(), event, resolved=config.resolved_stages)

    def run_daily_sweep(self) -> list[ActionIntent]:
        """Evaluate overdue, due-soon and value-threshold triggers over open projects, then dispatch.

        Re-running on the same day emits intents with the same ``dedupe_key``s.
        """
        config = self.store.fetch_config()
        now = self.clock()
        open_projects = [p for p in self.store.fetch_projects_snapshot() if p.status not in config.resolved_stages]
        intents = evaluate(
            self.store.fetch_triggers(),
            DailySweepEvent(projects=open_projects, now=now),
            resolved=config.resolved_stages,
        )
        self._dispatch(intents, depth=0)
        logger.info("Daily sweep: %d open projects, %d intents", len(open_projects), len(intents))
        return intents

    def _run_stage_automation(
        self,
        project: Project,
        prior: str,
        target: str,
        config: PipelineConfig,
        *,
        transition_id: int | None,
        depth: int,
    ) -> None:
        triggers = self.store.fetch_triggers()
        resolved = config.resolved_stages
        exit_event = StageExitEvent(project=project, stage=prior, transition_id=transition_id)
        enter_event = StageEnterEvent(project=project, stage=target, transition_id=transition_id)
        intents = evaluate(triggers, exit_event, resolved=resolved)
        intents += evaluate(triggers, enter_event, resolved=resolved)
        stage = config.get_stage(target)
        if stage is not None and stage.auto_notify:
            intents.append(stage_notification_intent(target, project.id, transition_id))
        self._dispatch(intents, depth=depth)

    def _dispatch(self, intents: Sequence[ActionIntent], *, depth: int) -> None:
        for intent in intents:
            logger.info(
                "Trigger %s fired: %s",
                intent.trigger_name,
                intent.action.type,
                extra={"trigger_id": intent.trigger_id, "project_id": intent.project_id},
            )
            if isinstance(intent.action, ChangeStatusAction):
                self._apply_automated_move(intent, intent.action, depth=depth)
                continue
            try:
                dispatch_intent(intent, self.dispatcher)
            except Exception:
                # The move that produced this intent is already committed.
                logger.error(
                    "Dispatcher failed for %s",
                    intent.dedupe_key,
                    extra={"trigger_id": intent.trigger_id, "project_id": intent.project_id},
                    exc_info=True,
                )

    def _apply_automated_move(self, intent: ActionIntent, action: ChangeStatusAction, *, depth: int) -> None:
        if depth + 1 > MAX_TRIGGER_DEPTH:
            logger.warning(
                "Automation depth %d reached; not moving %s to %s",
                MAX_TRIGGER_DEPTH,
                intent.project_id,
                action.new_status,
                extra={"trigger_id": intent.trigger_id, "project_id": intent.project_id},
            )
            return
        try:
            self._transition(
                intent.project_id,
                action.new_status,
                actor=f"automation:{intent.trigger_name}",
                note=f"Automated by trigger '{intent.trigger_name}'",
                acting_as_admin=False,
                depth=depth + 1,
            )
        except PipelineError as e:
            logger.warning(
                "Automated move of %s to %s rejected: %s",
                intent.project_id,
                action.new_status,
                e,
                extra={"trigger_id": intent.trigger_id, "project_id": intent.project_id, "error": e.code},
            )

    # -- Trigger administration ----------------------------------------------

    def list_triggers(self) -> list[Trigger]:
        return self.store.fetch_triggers()

    def get_trigger(self, trigger_id: str) -> Trigger:
        return self.store.fetch_trigger(trigger_id)

    def create_trigger(self, raw: Mapping[str, Any]) -> Trigger:
        if not isinstance(raw, Mapping):
            msg = f"Trigger must be an object, got {type(raw).__name__}"
            raise ValidationError(msg)
        config = self.store.fetch_config()
        ts = to_iso(self.clock())
        with self.store.transaction():
            trigger = parse_trigger(
                {**raw, "id": self.store.new_trigger_id(), "created_at": ts, "updated_at": ts},
                stage_ids=config.stage_ids,
            )
            self.store.insert_trigger(trigger)
        logger.info("Trigger %s created (%s)", trigger.name, trigger.trigger_type, extra={"trigger_id": trigger.id})
        return trigger

    def update_trigger(self, trigger_id: str, patch: Mapping[str, Any]) -> Trigger:
        config = self.store.fetch_config()
        with self.store.transaction():
            current = self.store.fetch_trigger(trigger_id)
            updated = apply_trigger_patch(current, patch, stage_ids=config.stage_ids)
            updated = dataclasses.replace(updated, updated_at=to_iso(self.clock()))
            self.store.replace_trigger(updated)
        return updated

    def set_trigger_enabled(self, trigger_id: str, enabled: bool) -> Trigger:
        return self.update_trigger(trigger_id, {"enabled": enabled})

    def delete_trigger(self, trigger_id: str) -> None:
        with self.store.transaction():
            self.store.delete_trigger(trigger_id)
        logger.info("Trigger %s deleted", trigger_id, extra={"trigger_id": trigger_id})

    # -- Saved filters -------------------------------------------------------

    def list_saved_filters(self, user_id: str | None = None) -> list[SavedFilter]:
        return self.store.fetch_saved_filters(user_id)

    def create_saved_filter(
        self,
        name: str,
        filters: Mapping[str, Any],
        *,
        user_id: str | None = None,
        is_default: bool = False,
    ) -> SavedFilter:
        if not isinstance(name, str) or not name.strip():
            msg = "Saved filter name cannot be empty"
            raise ValidationError(msg)
        config = self.store.fetch_config()
        parsed: ProjectFilters = parse_filters(dict(filters), stage_ids=config.stage_ids)
        with self.store.transaction():
            saved = SavedFilter(
                id=self.store.new_saved_filter_id(),
                name=name.strip(),
                filters=dict(parsed),
                user_id=user_id,
                is_default=is_default,
                created_at=to_iso(self.clock()),
            )
            self.store.insert_saved_filter(saved)
        return saved

    def delete_saved_filter(self, filter_id: str, *, user_id: str | None = None) -> None:
        with self.store.transaction():
            self.store.delete_saved_filter(filter_id, user_id=user_id)

    # -- Analytics -----------------------------------------------------------

    def get_analytics(self, window: str | int = "30d") -> PipelineAnalytics:
        config = self.store.fetch_config()
        return aggregate(self.store.fetch_projects_snapshot(), config=config, now=self.clock(), window=window)

    def get_stats(self) -> PipelineStats:
        config = self.store.fetch_config()
        return pipeline_stats(self.store.fetch_projects_snapshot(), config=config, now=self.clock())
