"""CLI for the stageflow creator pipeline.

Convention-based: discovers .stageflow/ by walking up from cwd.

Usage:
    stageflow init                                   # Initialize .stageflow/ in cwd
    stageflow create "Spring campaign" --creator=c1  # Create a project
    stageflow show <id>                              # Show project details and risk
    stageflow list --status=submitted --risk=high    # List projects
    stageflow move <id> approved                     # Move a project to a stage
    stageflow bulk-move approved <id> <id> ...       # Move several projects
    stageflow transitions <id>                       # Legal next stages
    stageflow stages                                 # Stage catalog with WIP counts
    stageflow set-wip submitted 5                    # Set a WIP limit
    stageflow analytics --period=30d                 # Flow metrics
    stageflow triggers list                          # Automation triggers
    stageflow sweep                                  # Run the daily trigger sweep
    stageflow dashboard                              # Serve the JSON API
"""

from __future__ import annotations

import sys

import click

from stageflow import __version__
from stageflow.cli_commands import admin, automation, pipeline, projects
from stageflow.validation import sanitize_actor


@click.group()
@click.version_option(version=__version__, prog_name="stageflow")
@click.option("--actor", default="cli", help="Actor identity for the stage history (default: cli)")
@click.option("--admin", "acting_as_admin", is_flag=True, help="Act as administrator (bypasses locked stages)")
@click.pass_context
def cli(ctx: click.Context, actor: str, acting_as_admin: bool) -> None:
    """Stageflow -- creator project pipeline."""
    ctx.ensure_object(dict)
    cleaned, err = sanitize_actor(actor)
    if err:
        click.echo(f"Error: {err}", err=True)
        sys.exit(1)
    ctx.obj["actor"] = cleaned
    ctx.obj["admin"] = acting_as_admin


admin.register(cli)
projects.register(cli)
pipeline.register(cli)
automation.register(cli)


if __name__ == "__main__":
    cli()
