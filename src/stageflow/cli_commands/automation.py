"""CLI commands for automation: triggers, sweep, saved filters."""

from __future__ import annotations

import json as json_mod
from typing import Any

import click

from stageflow.cli_common import echo_json, fail, get_db, get_engine
from stageflow.errors import PipelineError
from stageflow.triggers import TRIGGER_TYPES, Trigger


def _trigger_line(t: Trigger) -> str:
    state = "on " if t.enabled else "off"
    condition = t.trigger_type
    if t.trigger_stage:
        condition += f"({t.trigger_stage})"
    elif t.trigger_days is not None:
        condition += f"({t.trigger_days}d)"
    elif t.trigger_value_cents is not None:
        condition += f"(>={t.trigger_value_cents})"
    actions = ", ".join(a.type for a in t.actions)
    return f"[{state}] {t.id:<14} {t.name:<30} {condition:<30} {actions}"


def _parse_json_object(raw: str, what: str) -> dict[str, Any]:
    try:
        value = json_mod.loads(raw)
    except json_mod.JSONDecodeError as e:
        fail(f"Invalid JSON for {what}: {e}")
    if not isinstance(value, dict):
        fail(f"{what} must be a JSON object")
    return value


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------


@click.group()
def triggers() -> None:
    """Manage automation triggers."""


@triggers.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def list_triggers(as_json: bool) -> None:
    """List triggers, newest first."""
    with get_db() as db:
        found = get_engine(db).list_triggers()
        if as_json:
            echo_json([t.to_dict() for t in found])
            return
        if not found:
            click.echo("No triggers.")
            return
        for t in found:
            click.echo(_trigger_line(t))


@triggers.command("add")
@click.argument("name")
@click.option("--type", "trigger_type", type=click.Choice(sorted(TRIGGER_TYPES)), required=True, help="Trigger type")
@click.option("--stage", "trigger_stage", default=None, help="Stage for stage_enter/stage_exit")
@click.option("--days", "trigger_days", default=None, type=int, help="Days for due_soon")
@click.option("--value-cents", "trigger_value_cents", default=None, type=int, help="Threshold for value_threshold")
@click.option("--action", "actions", multiple=True, help='Action as JSON, e.g. \'{"type": "add_tag", "tag": "vip"}\'')
@click.option("--notify", multiple=True, help="Shorthand: send_notification with this template")
@click.option("--move-to", default=None, help="Shorthand: change_status to this stage")
@click.option("--disabled", is_flag=True, help="Create the trigger disabled")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def add_trigger(
    name: str,
    trigger_type: str,
    trigger_stage: str | None,
    trigger_days: int | None,
    trigger_value_cents: int | None,
    actions: tuple[str, ...],
    notify: tuple[str, ...],
    move_to: str | None,
    disabled: bool,
    as_json: bool,
) -> None:
    """Create a trigger NAME."""
    action_list: list[dict[str, Any]] = [_parse_json_object(a, "--action") for a in actions]
    action_list += [{"type": "send_notification", "template": t} for t in notify]
    if move_to:
        action_list.append({"type": "change_status", "new_status": move_to})
    raw = {
        "name": name,
        "trigger_type": trigger_type,
        "trigger_stage": trigger_stage,
        "trigger_days": trigger_days,
        "trigger_value_cents": trigger_value_cents,
        "enabled": not disabled,
        "actions": action_list,
    }
    with get_db() as db:
        try:
            trigger = get_engine(db).create_trigger(raw)
        except PipelineError as e:
            fail(e, as_json=as_json)
        if as_json:
            echo_json(trigger.to_dict())
        else:
            click.echo(f"Created {trigger.id}: {trigger.name}")


def _set_enabled(trigger_id: str, enabled: bool) -> None:
    with get_db() as db:
        try:
            trigger = get_engine(db).set_trigger_enabled(trigger_id, enabled)
        except PipelineError as e:
            fail(e)
        click.echo(f"{trigger.id} {'enabled' if trigger.enabled else 'disabled'}")


@triggers.command("enable")
@click.argument("trigger_id")
def enable_trigger(trigger_id: str) -> None:
    """Enable a trigger."""
    _set_enabled(trigger_id, True)


@triggers.command("disable")
@click.argument("trigger_id")
def disable_trigger(trigger_id: str) -> None:
    """Disable a trigger."""
    _set_enabled(trigger_id, False)


@triggers.command("delete")
@click.argument("trigger_id")
def delete_trigger(trigger_id: str) -> None:
    """Delete a trigger."""
    with get_db() as db:
        try:
            get_engine(db).delete_trigger(trigger_id)
        except PipelineError as e:
            fail(e)
        click.echo(f"Deleted {trigger_id}")


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def sweep(as_json: bool) -> None:
    """Run the daily sweep: overdue, due-soon and value-threshold triggers."""
    with get_db() as db:
        intents = get_engine(db).run_daily_sweep()
        if as_json:
            echo_json([i.to_dict() for i in intents])
            return
        for intent in intents:
            click.echo(f"{intent.project_id:<14} {intent.trigger_name:<30} {intent.action.type}")
        click.echo(f"{len(intents)} action(s) dispatched")


# ---------------------------------------------------------------------------
# Saved filters
# ---------------------------------------------------------------------------


@click.group()
def filters() -> None:
    """Manage saved project filters."""


@filters.command("list")
@click.option("--user", "user_id", default=None, help="Include this user's private filters")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def list_filters(user_id: str | None, as_json: bool) -> None:
    """List shared filters plus the user's own."""
    with get_db() as db:
        found = get_engine(db).list_saved_filters(user_id)
        if as_json:
            echo_json([f.to_dict() for f in found])
            return
        if not found:
            click.echo("No saved filters.")
            return
        for f in found:
            owner = "shared" if f.is_shared else f.user_id
            default = " (default)" if f.is_default else ""
            click.echo(f"{f.id:<14} {f.name}{default} [{owner}] {json_mod.dumps(f.filters, sort_keys=True)}")


@filters.command("save")
@click.argument("name")
@click.argument("filters_json")
@click.option("--user", "user_id", default=None, help="Owner (default: shared)")
@click.option("--default", "is_default", is_flag=True, help="Mark as a default filter")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def save_filter(name: str, filters_json: str, user_id: str | None, is_default: bool, as_json: bool) -> None:
    """Save FILTERS_JSON (a JSON object of list filters) as NAME."""
    raw = _parse_json_object(filters_json, "filters")
    with get_db() as db:
        try:
            saved = get_engine(db).create_saved_filter(name, raw, user_id=user_id, is_default=is_default)
        except PipelineError as e:
            fail(e, as_json=as_json)
        if as_json:
            echo_json(saved.to_dict())
        else:
            click.echo(f"Saved {saved.id}: {saved.name}")


@filters.command("delete")
@click.argument("filter_id")
@click.option("--user", "user_id", default=None, help="Owner of a private filter")
def delete_filter(filter_id: str, user_id: str | None) -> None:
    """Delete a shared filter or one of the user's own."""
    with get_db() as db:
        try:
            get_engine(db).delete_saved_filter(filter_id, user_id=user_id)
        except PipelineError as e:
            fail(e)
        click.echo(f"Deleted {filter_id}")


def register(cli: click.Group) -> None:
    """Register automation commands with the CLI group."""
    cli.add_command(triggers)
    cli.add_command(sweep)
    cli.add_command(filters)
