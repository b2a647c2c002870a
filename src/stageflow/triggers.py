"""Automation triggers -- the rule model, action variants, and the evaluator.

The evaluator only *decides*: it matches enabled triggers against an event
and returns one ``ActionIntent`` per configured action. Delivery belongs to
the dispatcher (dispatch.py); ``change_status`` intents are re-validated
against the transition graph by the engine before they are applied.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Literal

from stageflow.errors import ValidationError
from stageflow.models import Project
from stageflow.risk import RESOLVED_STAGES, calendar_days_until

logger = logging.getLogger(__name__)

TriggerType = Literal["stage_enter", "stage_exit", "overdue", "due_soon", "value_threshold"]

TRIGGER_TYPES: frozenset[str] = frozenset({"stage_enter", "stage_exit", "overdue", "due_soon", "value_threshold"})
STAGE_TRIGGER_TYPES: frozenset[str] = frozenset({"stage_enter", "stage_exit"})
SWEEP_TRIGGER_TYPES: frozenset[str] = frozenset({"overdue", "due_soon", "value_threshold"})

MAX_ACTIONS = 20
MAX_NAME_LENGTH = 200


# ---------------------------------------------------------------------------
# Actions (closed tagged union)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SendNotificationAction:
    template: str
    recipient: str = "creator"
    type: ClassVar[Literal["send_notification"]] = "send_notification"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "template": self.template, "recipient": self.recipient}


@dataclass(frozen=True)
class SlackNotifyAction:
    channel: str
    message: str = ""
    type: ClassVar[Literal["slack_notify"]] = "slack_notify"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "channel": self.channel, "message": self.message}


@dataclass(frozen=True)
class AssignToAction:
    user_id: str
    type: ClassVar[Literal["assign_to"]] = "assign_to"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "user_id": self.user_id}


@dataclass(frozen=True)
class AddTagAction:
    tag: str
    type: ClassVar[Literal["add_tag"]] = "add_tag"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "tag": self.tag}


@dataclass(frozen=True)
class ChangeStatusAction:
    new_status: str
    type: ClassVar[Literal["change_status"]] = "change_status"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "new_status": self.new_status}


Action = SendNotificationAction | SlackNotifyAction | AssignToAction | AddTagAction | ChangeStatusAction

ACTION_TYPES: frozenset[str] = frozenset({"send_notification", "slack_notify", "assign_to", "add_tag", "change_status"})
# Older clients send "send_email"; it means the same thing.
_ACTION_ALIASES = {"send_email": "send_notification"}


def _require_str(raw: Mapping[str, Any], key: str, action_type: str, *, default: str | None = None) -> str:
    value = raw.get(key, default)
    if not isinstance(value, str) or not value.strip():
        msg = f"Action '{action_type}' requires a non-empty string '{key}'"
        raise ValidationError(msg)
    return value.strip()


def parse_action(raw: Any) -> Action:
    """Parse one action from its JSON form, dispatching on ``type``."""
    if not isinstance(raw, Mapping):
        msg = f"Action must be an object, got {type(raw).__name__}"
        raise ValidationError(msg)
    action_type = raw.get("type")
    action_type = _ACTION_ALIASES.get(action_type, action_type) if isinstance(action_type, str) else action_type
    match action_type:
        case "send_notification":
            return SendNotificationAction(
                template=_require_str(raw, "template", action_type),
                recipient=_require_str(raw, "recipient", action_type, default="creator"),
            )
        case "slack_notify":
            message = raw.get("message", "")
            if not isinstance(message, str):
                msg = "Action 'slack_notify' requires 'message' to be a string"
                raise ValidationError(msg)
            return SlackNotifyAction(channel=_require_str(raw, "channel", action_type), message=message)
        case "assign_to":
            return AssignToAction(user_id=_require_str(raw, "user_id", action_type))
        case "add_tag":
            return AddTagAction(tag=_require_str(raw, "tag", action_type))
        case "change_status":
            return ChangeStatusAction(new_status=_require_str(raw, "new_status", action_type))
        case _:
            msg = f"Unknown action type {action_type!r}. Valid types: {', '.join(sorted(ACTION_TYPES))}"
            raise ValidationError(msg)


# ---------------------------------------------------------------------------
# Trigger record
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Trigger:
    id: str
    name: str
    trigger_type: TriggerType
    enabled: bool = True
    trigger_stage: str | None = None
    trigger_days: int | None = None
    trigger_value_cents: int | None = None
    actions: tuple[Action, ...] = ()
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "enabled": self.enabled,
            "trigger_type": self.trigger_type,
            "trigger_stage": self.trigger_stage,
            "trigger_days": self.trigger_days,
            "trigger_value_cents": self.trigger_value_cents,
            "actions": [a.to_dict() for a in self.actions],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def _optional_non_negative(raw: Mapping[str, Any], key: str) -> int | None:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        msg = f"'{key}' must be a non-negative integer, got {value!r}"
        raise ValidationError(msg)
    return value


def parse_trigger(raw: Any, *, trigger_id: str = "", stage_ids: Iterable[str] | None = None) -> Trigger:
    """Parse and validate a trigger from its JSON form.

    When ``stage_ids`` is given the trigger is also checked against that
    catalog (see ``validate_trigger``).

    Raises:
        ValidationError: On any malformed field.
    """
    if not isinstance(raw, Mapping):
        msg = f"Trigger must be an object, got {type(raw).__name__}"
        raise ValidationError(msg)

    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        msg = "Trigger 'name' is required"
        raise ValidationError(msg)
    if len(name) > MAX_NAME_LENGTH:
        msg = f"Trigger name exceeds {MAX_NAME_LENGTH} characters"
        raise ValidationError(msg)

    trigger_type = raw.get("trigger_type")
    if trigger_type not in TRIGGER_TYPES:
        msg = f"Unknown trigger_type {trigger_type!r}. Valid types: {', '.join(sorted(TRIGGER_TYPES))}"
        raise ValidationError(msg)

    enabled = raw.get("enabled", True)
    if not isinstance(enabled, bool):
        msg = "'enabled' must be a boolean"
        raise ValidationError(msg)

    trigger_stage = raw.get("trigger_stage")
    if trigger_stage is not None and not isinstance(trigger_stage, str):
        msg = "'trigger_stage' must be a stage id"
        raise ValidationError(msg)

    raw_actions = raw.get("actions", [])
    if not isinstance(raw_actions, list) or not raw_actions:
        msg = "Trigger needs a non-empty list of 'actions'"
        raise ValidationError(msg)
    if len(raw_actions) > MAX_ACTIONS:
        msg = f"Trigger has {len(raw_actions)} actions (max {MAX_ACTIONS})"
        raise ValidationError(msg)

    trigger = Trigger(
        id=str(raw.get("id") or trigger_id),
        name=name.strip(),
        trigger_type=trigger_type,
        enabled=enabled,
        trigger_stage=trigger_stage,
        trigger_days=_optional_non_negative(raw, "trigger_days"),
        trigger_value_cents=_optional_non_negative(raw, "trigger_value_cents"),
        actions=tuple(parse_action(a) for a in raw_actions),
        created_at=str(raw.get("created_at") or ""),
        updated_at=str(raw.get("updated_at") or ""),
    )
    if stage_ids is not None:
        validate_trigger(trigger, stage_ids)
    return trigger


def validate_trigger(trigger: Trigger, stage_ids: Iterable[str]) -> None:
    """Check the parameters a trigger type needs and its stage references against a catalog."""
    known = set(stage_ids)
    if trigger.trigger_type in STAGE_TRIGGER_TYPES:
        if not trigger.trigger_stage:
            msg = f"Trigger type '{trigger.trigger_type}' requires 'trigger_stage'"
            raise ValidationError(msg)
        if trigger.trigger_stage not in known:
            msg = f"trigger_stage '{trigger.trigger_stage}' is not in the catalog"
            raise ValidationError(msg)
    if trigger.trigger_type == "due_soon" and trigger.trigger_days is None:
        msg = "Trigger type 'due_soon' requires 'trigger_days'"
        raise ValidationError(msg)
    if trigger.trigger_type == "value_threshold" and trigger.trigger_value_cents is None:
        msg = "Trigger type 'value_threshold' requires 'trigger_value_cents'"
        raise ValidationError(msg)
    for action in trigger.actions:
        if isinstance(action, ChangeStatusAction) and action.new_status not in known:
            msg = f"change_status target '{action.new_status}' is not in the catalog"
            raise ValidationError(msg)


def apply_trigger_patch(trigger: Trigger, patch: Mapping[str, Any], *, stage_ids: Iterable[str]) -> Trigger:
    """Partial update: keys present in ``patch`` replace the trigger's values."""
    if not isinstance(patch, Mapping):
        msg = f"Trigger patch must be an object, got {type(patch).__name__}"
        raise ValidationError(msg)
    frozen_keys = {"id", "created_at", "updated_at"} & set(patch)
    if frozen_keys:
        msg = f"Cannot change trigger fields: {', '.join(sorted(frozen_keys))}"
        raise ValidationError(msg)
    merged = trigger.to_dict()
    merged.update(patch)
    return parse_trigger(merged, stage_ids=stage_ids)


# ---------------------------------------------------------------------------
# Events and intents
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class StageEnterEvent:
    project: Project
    stage: str
    transition_id: int | None = None


@dataclass(frozen=True, eq=False)
class StageExitEvent:
    project: Project
    stage: str
    transition_id: int | None = None


@dataclass(frozen=True, eq=False)
class DailySweepEvent:
    projects: Sequence[Project]
    now: datetime


TriggerEvent = StageEnterEvent | StageExitEvent | DailySweepEvent


def _stage_occasion(kind: str, stage: str, transition_id: int | None) -> str:
    # One key per accepted transition; re-entering a stage yields a new key.
    if transition_id is None:
        return f"{kind}:{stage}"
    return f"{kind}:{stage}:{transition_id}"


@dataclass(frozen=True)
class ActionIntent:
    """A request for a side effect. Consumers deduplicate on ``dedupe_key``."""

    trigger_id: str
    trigger_name: str
    trigger_type: str
    project_id: str
    action: Action
    dedupe_key: str = field(default="")

    def to_dict(self) -> dict[str, Any]:
        return {
            "trigger_id": self.trigger_id,
            "trigger_name": self.trigger_name,
            "trigger_type": self.trigger_type,
            "project_id": self.project_id,
            "action": self.action.to_dict(),
            "dedupe_key": self.dedupe_key,
        }


def _intents_for(trigger: Trigger, project_id: str, occasion: str) -> list[ActionIntent]:
    return [
        ActionIntent(
            trigger_id=trigger.id,
            trigger_name=trigger.name,
            trigger_type=trigger.trigger_type,
            project_id=project_id,
            action=action,
            dedupe_key=f"{trigger.id}:{project_id}:{index}:{occasion}",
        )
        for index, action in enumerate(trigger.actions)
    ]


def _sweep_matches(trigger: Trigger, project: Project, now: datetime) -> bool:
    if trigger.trigger_type == "value_threshold":
        return trigger.trigger_value_cents is not None and project.value_cents >= trigger.trigger_value_cents
    remaining = calendar_days_until(project.due_date, now)
    if remaining is None:
        return False
    if trigger.trigger_type == "overdue":
        return remaining < 0
    if trigger.trigger_type == "due_soon":
        if trigger.trigger_days is None:
            return False
        return 0 <= remaining <= trigger.trigger_days
    return False


def evaluate(
    triggers: Iterable[Trigger],
    event: TriggerEvent,
    *,
    resolved: Collection[str] = RESOLVED_STAGES,
) -> list[ActionIntent]:
    """Match triggers against one event and return the action intents they emit.

    Disabled triggers never fire. Sweep triggers only consider open projects,
    i.e. those whose stage is not in ``resolved``. Output is ordered by
    trigger, then project, then action.
    """
    intents: list[ActionIntent] = []
    for trigger in triggers:
        if not trigger.enabled:
            continue
        match event:
            case StageEnterEvent(project=project, stage=stage, transition_id=tid):
                if trigger.trigger_type == "stage_enter" and trigger.trigger_stage == stage:
                    intents.extend(_intents_for(trigger, project.id, _stage_occasion("enter", stage, tid)))
            case StageExitEvent(project=project, stage=stage, transition_id=tid):
                if trigger.trigger_type == "stage_exit" and trigger.trigger_stage == stage:
                    intents.extend(_intents_for(trigger, project.id, _stage_occasion("exit", stage, tid)))
            case DailySweepEvent(projects=projects, now=now):
                if trigger.trigger_type not in SWEEP_TRIGGER_TYPES:
                    continue
                sweep_day = now.date().isoformat()
                for project in projects:
                    if project.status in resolved:
                        continue
                    if _sweep_matches(trigger, project, now):
                        intents.extend(_intents_for(trigger, project.id, sweep_day))
    if intents:
        logger.debug("Evaluated %s: %d intents", type(event).__name__, len(intents))
    return intents


def stage_notification_intent(stage: str, project_id: str, transition_id: int | None = None) -> ActionIntent:
    """The built-in notification for stages flagged ``auto_notify``."""
    return ActionIntent(
        trigger_id=f"auto_notify:{stage}",
        trigger_name=f"Auto-notify on {stage}",
        trigger_type="stage_enter",
        project_id=project_id,
        action=SendNotificationAction(template=f"stage_{stage}", recipient="creator"),
        dedupe_key=f"auto_notify:{stage}:{project_id}:{_stage_occasion('enter', stage, transition_id)}",
    )
