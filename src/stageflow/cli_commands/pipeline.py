"""CLI commands for the pipeline as a whole: stages, config, set-wip, analytics, stats."""

from __future__ import annotations

import json as json_mod

import click

from stageflow.analytics import WINDOWS
from stageflow.cli_common import echo_json, fail, get_db, get_engine
from stageflow.errors import PipelineError


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def stages(as_json: bool) -> None:
    """Stage catalog in pipeline order with occupancy and WIP limits."""
    with get_db() as db:
        config = get_engine(db).get_pipeline_config()
        counts = db.stage_counts()
        rows = [
            {
                "id": s.id,
                "label": s.label,
                "count": counts.get(s.id, 0),
                "wip_limit": config.limit_for(s.id),
                "locked": s.id in config.graph.locked,
                "terminal": s.id == config.terminal,
                "targets": [t for t in config.stage_ids if t in config.graph.targets(s.id)],
            }
            for s in config.stages
        ]
        if as_json:
            echo_json(rows)
            return
        for row in rows:
            limit = row["wip_limit"]
            occupancy = f"{row['count']}/{limit}" if limit is not None else str(row["count"])
            flags = ""
            if row["terminal"]:
                flags = " [terminal]"
            elif row["locked"]:
                flags = " [locked]"
            click.echo(f"  {row['id']:<22} {row['label']:<22} {occupancy:>7}{flags}")
            if row["targets"]:
                click.echo(f"      -> {', '.join(row['targets'])}")


@click.command("config")
@click.option("--patch", "patch_json", default=None, help="Merge-patch the pipeline config with a JSON object")
@click.option("--replace", "replace_json", default=None, help="Replace the pipeline config with a JSON object")
@click.pass_context
def config_cmd(ctx: click.Context, patch_json: str | None, replace_json: str | None) -> None:
    """Show the pipeline configuration, or change it with --patch/--replace."""
    if patch_json is not None and replace_json is not None:
        fail("Use --patch or --replace, not both")
    raw = patch_json if patch_json is not None else replace_json
    with get_db() as db:
        engine = get_engine(db)
        try:
            if raw is None:
                config = engine.get_pipeline_config()
            else:
                try:
                    patch = json_mod.loads(raw)
                except json_mod.JSONDecodeError as e:
                    fail(f"Invalid JSON: {e}")
                if not isinstance(patch, dict):
                    fail("Config must be a JSON object")
                config = engine.update_pipeline_config(
                    patch, replace=replace_json is not None, actor=ctx.obj["actor"]
                )
        except PipelineError as e:
            fail(e)
        echo_json(config.to_dict())


@click.command("set-wip")
@click.argument("stage")
@click.argument("limit", required=False, type=int)
@click.option("--clear", is_flag=True, help="Remove the limit for STAGE")
@click.pass_context
def set_wip(ctx: click.Context, stage: str, limit: int | None, clear: bool) -> None:
    """Set (or --clear) the WIP limit for STAGE."""
    if limit is None and not clear:
        fail("Give a LIMIT or --clear")
    with get_db() as db:
        try:
            config = get_engine(db).update_pipeline_config(
                {"wip_limits": {stage: None if clear else limit}}, actor=ctx.obj["actor"]
            )
        except PipelineError as e:
            fail(e)
        current = config.limit_for(stage)
        if current is None:
            click.echo(f"{stage}: no WIP limit")
        else:
            click.echo(f"{stage}: WIP limit {current}")


@click.command()
@click.option(
    "--period",
    type=click.Choice(list(WINDOWS)),
    default="30d",
    help="Trailing window (default 30d)",
)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def analytics(period: str, as_json: bool) -> None:
    """Throughput, cycle time, dwell, bottlenecks and risk for the pipeline."""
    with get_db() as db:
        try:
            result = get_engine(db).get_analytics(period)
        except PipelineError as e:
            fail(e, as_json=as_json)
        if as_json:
            echo_json(result)
            return

        click.echo(f"Pipeline analytics (last {result['period_days']} days)\n")
        click.echo("Throughput (completions per week):")
        if not result["throughput"]:
            click.echo("  (no completions)")
        for bucket in result["throughput"]:
            click.echo(f"  {bucket['week']}  {bucket['count']}")

        click.echo("\nCycle time (days from creation to payout):")
        if not result["cycle_time"]:
            click.echo("  (no completions)")
        for ct in result["cycle_time"][:20]:
            click.echo(f"  {ct['days']:>4}d  {ct['count']}")

        click.echo("\nBottlenecks (avg days since last activity):")
        for b in result["bottlenecks"]:
            limit = f"/{b['wip_limit']}" if b["wip_limit"] is not None else ""
            flag = "  OVER LIMIT" if b["wip_violation"] else ""
            click.echo(f"  {b['stage']:<22} {b['avg_duration_days']:>6.1f}d  {b['current_count']}{limit}{flag}")

        click.echo("\nRisk:")
        for r in result["risk_distribution"]:
            click.echo(f"  {r['level']:<9} {r['count']:>4}  ${r['value_cents'] / 100:,.2f}")


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def stats(as_json: bool) -> None:
    """Headline pipeline numbers."""
    with get_db() as db:
        result = get_engine(db).get_stats()
        if as_json:
            echo_json(result)
            return
        click.echo(f"Projects:      {result['total_projects']} ({result['active_projects']} active)")
        click.echo(f"Total value:   ${result['total_value_cents'] / 100:,.2f}")
        click.echo(f"At-risk value: ${result['at_risk_value_cents'] / 100:,.2f}")
        click.echo(f"Overdue:       {result['overdue_count']}")
        click.echo(f"Due soon:      {result['due_soon_count']}")
        click.echo(f"Avg cycle:     {result['avg_cycle_time_days']}d")
        click.echo(f"Throughput:    {result['throughput_per_week']}/week")


def register(cli: click.Group) -> None:
    """Register pipeline commands with the CLI group."""
    cli.add_command(stages)
    cli.add_command(config_cmd)
    cli.add_command(set_wip)
    cli.add_command(analytics)
    cli.add_command(stats)
