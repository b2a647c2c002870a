"""CLI commands for projects: create, show, list, move, bulk-move, due, history, transitions."""

from __future__ import annotations

from typing import Any

import click

from stageflow.cli_common import echo_json, fail, get_db, get_engine
from stageflow.errors import InvalidTransitionError, PipelineError
from stageflow.models import Project

_RISK_MARKERS = {"critical": "!!", "high": "! ", "medium": "~ ", "low": ". ", "none": "  "}


def _format_cents(cents: int) -> str:
    return f"${cents / 100:,.2f}"


def _project_line(p: dict[str, Any]) -> str:
    marker = _RISK_MARKERS.get(p["risk_level"], "  ")
    due = (p["due_date"] or "-")[:10]
    return f"{marker} {p['id']:<14} {p['status']:<22} {due:<10}  {_format_cents(p['value_cents']):>12}  {p['title']}"


def _show(project: Project) -> None:
    click.echo(f"{project.id}: {project.title}")
    click.echo(f"  Status:   {project.status}")
    click.echo(f"  Creator:  {project.creator_id}")
    click.echo(f"  Value:    {_format_cents(project.value_cents)}")
    if project.due_date:
        click.echo(f"  Due:      {project.due_date} ({project.days_until_deadline} days)")
    else:
        click.echo("  Due:      -")
    click.echo(f"  Risk:     {project.risk_level}")
    if project.tags:
        click.echo(f"  Tags:     {', '.join(project.tags)}")
    if project.approved_at:
        click.echo(f"  Approved: {project.approved_at}")
    if project.completed_at:
        click.echo(f"  Paid:     {project.completed_at}")


@click.command()
@click.argument("title")
@click.option("--creator", "creator_id", required=True, help="Creator ID")
@click.option("--value-cents", default=0, type=int, help="Project value in cents")
@click.option("--due", "due_date", default=None, help="Due date (YYYY-MM-DD or ISO timestamp)")
@click.option("--tag", "-t", multiple=True, help="Tags (repeatable)")
@click.option("--status", default=None, help="Initial stage (default: first stage)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def create(
    ctx: click.Context,
    title: str,
    creator_id: str,
    value_cents: int,
    due_date: str | None,
    tag: tuple[str, ...],
    status: str | None,
    as_json: bool,
) -> None:
    """Create a new project."""
    with get_db() as db:
        try:
            project = get_engine(db).create_project(
                title,
                creator_id=creator_id,
                value_cents=value_cents,
                due_date=due_date,
                tags=tag,
                status=status,
                actor=ctx.obj["actor"],
            )
        except PipelineError as e:
            fail(e, as_json=as_json)
        if as_json:
            echo_json(project.to_dict())
        else:
            click.echo(f"Created {project.id}: {project.title}")


@click.command()
@click.argument("project_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def show(project_id: str, as_json: bool) -> None:
    """Show project details."""
    with get_db() as db:
        try:
            project = get_engine(db).get_project(project_id)
        except PipelineError as e:
            fail(e, as_json=as_json)
        if as_json:
            echo_json(project.to_dict())
        else:
            _show(project)


@click.command("list")
@click.option("--status", "statuses", multiple=True, help="Filter by stage (repeatable)")
@click.option("--creator", "creator_ids", multiple=True, help="Filter by creator (repeatable)")
@click.option("--tag", "tags", multiple=True, help="Filter by tag, any match (repeatable)")
@click.option("--risk", "risk_levels", multiple=True, help="Filter by risk level (repeatable)")
@click.option("--search", default=None, help="Substring of title or creator")
@click.option("--from", "date_from", default=None, help="Due on or after (YYYY-MM-DD)")
@click.option("--to", "date_to", default=None, help="Due on or before (YYYY-MM-DD)")
@click.option("--min-value", "min_value_cents", default=None, type=int, help="Minimum value in cents")
@click.option("--max-value", "max_value_cents", default=None, type=int, help="Maximum value in cents")
@click.option("--all", "show_all", is_flag=True, help="Ignore the configured default filter")
@click.option("--limit", default=100, type=int, help="Max results (default 100)")
@click.option("--offset", default=0, type=int, help="Skip first N results")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def list_projects(
    statuses: tuple[str, ...],
    creator_ids: tuple[str, ...],
    tags: tuple[str, ...],
    risk_levels: tuple[str, ...],
    search: str | None,
    date_from: str | None,
    date_to: str | None,
    min_value_cents: int | None,
    max_value_cents: int | None,
    show_all: bool,
    limit: int,
    offset: int,
    as_json: bool,
) -> None:
    """List projects, soonest due first."""
    raw: dict[str, Any] = {
        "statuses": list(statuses) or None,
        "creator_ids": list(creator_ids) or None,
        "tags": list(tags) or None,
        "risk_levels": list(risk_levels) or None,
        "search": search,
        "date_from": date_from,
        "date_to": date_to,
        "min_value_cents": min_value_cents,
        "max_value_cents": max_value_cents,
    }
    filters = {k: v for k, v in raw.items() if v is not None}
    with get_db() as db:
        try:
            page = get_engine(db).list_projects(
                filters if (filters or show_all) else None, limit=limit, offset=offset
            )
        except PipelineError as e:
            fail(e, as_json=as_json)
        if as_json:
            echo_json(page)
            return
        if not page["results"]:
            click.echo("No projects found.")
            return
        for p in page["results"]:
            click.echo(_project_line(p))
        click.echo(f"\n{len(page['results'])} of {page['total']} projects")


@click.command()
@click.argument("project_id")
@click.argument("target_stage")
@click.option("--note", default="", help="Note recorded in the stage history")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def move(ctx: click.Context, project_id: str, target_stage: str, note: str, as_json: bool) -> None:
    """Move a project to TARGET_STAGE."""
    with get_db() as db:
        try:
            project = get_engine(db).apply_transition(
                project_id,
                target_stage,
                actor=ctx.obj["actor"],
                note=note,
                acting_as_admin=ctx.obj["admin"],
            )
        except InvalidTransitionError as e:
            if not as_json and e.valid_targets:
                click.echo(f"Valid targets: {', '.join(e.valid_targets)}", err=True)
            fail(e, as_json=as_json)
        except PipelineError as e:
            fail(e, as_json=as_json)
        if as_json:
            echo_json(project.to_dict())
        else:
            click.echo(f"Moved {project.id} to {project.status}")


@click.command("bulk-move")
@click.argument("target_stage")
@click.argument("project_ids", nargs=-1, required=True)
@click.option("--note", default="Bulk update", help="Note recorded in each stage history entry")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def bulk_move(ctx: click.Context, target_stage: str, project_ids: tuple[str, ...], note: str, as_json: bool) -> None:
    """Move several projects to TARGET_STAGE. Each project succeeds or fails on its own."""
    with get_db() as db:
        try:
            result = get_engine(db).apply_bulk(
                list(project_ids),
                target_stage,
                actor=ctx.obj["actor"],
                note=note,
                acting_as_admin=ctx.obj["admin"],
            )
        except PipelineError as e:
            fail(e, as_json=as_json)
        if as_json:
            echo_json(result.to_dict())
            return
        for p in result.updated:
            click.echo(f"Moved {p.id} to {p.status}")
        for err in result.errors:
            click.echo(f"Failed {err['id']}: {err['error']}", err=True)
        click.echo(f"{result.updated_count} updated, {len(result.errors)} failed")


@click.command()
@click.argument("project_id")
@click.argument("due_date", required=False)
@click.option("--clear", is_flag=True, help="Remove the due date")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def due(ctx: click.Context, project_id: str, due_date: str | None, clear: bool, as_json: bool) -> None:
    """Set (or --clear) a project's due date."""
    if due_date is None and not clear:
        fail("Give a DUE_DATE or --clear", as_json=as_json)
    with get_db() as db:
        try:
            project = get_engine(db).update_due_date(
                project_id, None if clear else due_date, actor=ctx.obj["actor"]
            )
        except PipelineError as e:
            fail(e, as_json=as_json)
        if as_json:
            echo_json(project.to_dict())
        else:
            click.echo(f"{project.id} due {project.due_date or '-'} (risk: {project.risk_level})")


@click.command()
@click.argument("project_id", required=False)
@click.option("--limit", default=50, type=int, help="Max entries for the pipeline-wide feed (default 50)")
@click.option("--durations", is_flag=True, help="Show hours spent per stage instead")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def history(project_id: str | None, limit: int, durations: bool, as_json: bool) -> None:
    """Stage history for a project, or recent moves across the pipeline."""
    with get_db() as db:
        engine = get_engine(db)
        try:
            if durations:
                if project_id is None:
                    fail("--durations needs a PROJECT_ID", as_json=as_json)
                hours = engine.get_stage_durations(project_id)
                if as_json:
                    echo_json(hours)
                else:
                    for stage, h in hours.items():
                        click.echo(f"  {stage:<22} {h:>8.2f}h")
                return
            entries = engine.get_history(project_id) if project_id else engine.get_recent_history(limit=limit)
        except PipelineError as e:
            fail(e, as_json=as_json)
        if as_json:
            echo_json([e.to_dict() for e in entries])
            return
        if not entries:
            click.echo("No history.")
            return
        for entry in entries:
            origin = entry.from_stage or "(new)"
            line = f"{entry.created_at}  {entry.project_id}  {origin} -> {entry.to_stage}"
            if entry.actor:
                line += f"  by {entry.actor}"
            if entry.note:
                line += f"  -- {entry.note}"
            click.echo(line)


@click.command()
@click.argument("project_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def transitions(ctx: click.Context, project_id: str, as_json: bool) -> None:
    """Stages a project can legally move to next."""
    with get_db() as db:
        try:
            info = get_engine(db).get_transitions(project_id, acting_as_admin=ctx.obj["admin"])
        except PipelineError as e:
            fail(e, as_json=as_json)
        if as_json:
            echo_json(info)
            return
        locked = " (locked)" if info["locked"] else ""
        click.echo(f"{info['project_id']} is in {info['status']}{locked}")
        if info["valid_targets"]:
            for t in info["valid_targets"]:
                click.echo(f"  -> {t}")
        else:
            click.echo("  (no moves available)")


def register(cli: click.Group) -> None:
    """Register project commands with the CLI group."""
    cli.add_command(create)
    cli.add_command(show)
    cli.add_command(list_projects)
    cli.add_command(move)
    cli.add_command(bulk_move)
    cli.add_command(due)
    cli.add_command(history)
    cli.add_command(transitions)
