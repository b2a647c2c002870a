"""CLI commands for admin: init, dashboard."""

from __future__ import annotations

import sys
from pathlib import Path

import click

from stageflow.core import DB_FILENAME, STAGEFLOW_DIR_NAME, PipelineDB, read_config, write_config


@click.command()
@click.option("--prefix", default=None, help="ID prefix for projects (default: directory name)")
def init(prefix: str | None) -> None:
    """Initialize .stageflow/ in the current directory."""
    cwd = Path.cwd()
    stageflow_dir = cwd / STAGEFLOW_DIR_NAME

    if stageflow_dir.exists():
        click.echo(f"{STAGEFLOW_DIR_NAME}/ already exists in {cwd}")
        # Still ensure DB is initialized
        config = read_config(stageflow_dir)
        db = PipelineDB(stageflow_dir / DB_FILENAME, prefix=config.get("prefix", "sf"))
        db.initialize()
        db.close()
        return

    prefix = prefix or cwd.name
    stageflow_dir.mkdir()
    write_config(stageflow_dir, {"prefix": prefix, "version": 1})

    db = PipelineDB(stageflow_dir / DB_FILENAME, prefix=prefix)
    db.initialize()
    db.close()

    click.echo(f"Initialized {STAGEFLOW_DIR_NAME}/ in {cwd}")
    click.echo(f"  Prefix: {prefix}")
    click.echo(f"  Database: {stageflow_dir / DB_FILENAME}")
    click.echo("\nNext: stageflow create \"<title>\" --creator <id>")


@click.command()
@click.option("--port", default=8377, type=int, help="Server port (default 8377)")
@click.option("--host", default="127.0.0.1", help="Bind address (default 127.0.0.1)")
def dashboard(port: int, host: str) -> None:
    """Serve the pipeline JSON API (requires stageflow[dashboard])."""
    try:
        from stageflow.dashboard import main as dashboard_main
    except ImportError:
        click.echo('Dashboard requires extra dependencies. Install with: pip install "stageflow[dashboard]"', err=True)
        sys.exit(1)
    dashboard_main(port=port, host=host)


def register(cli: click.Group) -> None:
    """Register admin commands with the CLI group."""
    cli.add_command(init)
    cli.add_command(dashboard)
