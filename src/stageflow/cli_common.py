"""Shared CLI helpers.

Provides ``get_db()``, ``get_engine()`` and ``fail()`` so every
``cli_commands/*.py`` module can reach the store and report errors the
same way without importing ``cli.py``.
"""

from __future__ import annotations

import json as json_mod
import sys
from typing import NoReturn

import click

from stageflow.core import DB_FILENAME, STAGEFLOW_DIR_NAME, PipelineDB, find_stageflow_root, read_config
from stageflow.engine import PipelineEngine
from stageflow.errors import PipelineError
from stageflow.logging import setup_logging


def get_db() -> PipelineDB:
    """Discover .stageflow/ and return an initialized PipelineDB."""
    try:
        stageflow_dir = find_stageflow_root()
    except FileNotFoundError:
        click.echo(f"No {STAGEFLOW_DIR_NAME}/ found. Run 'stageflow init' first.", err=True)
        sys.exit(1)
    setup_logging(stageflow_dir)
    config = read_config(stageflow_dir)
    db = PipelineDB(stageflow_dir / DB_FILENAME, prefix=config.get("prefix", "sf"))
    db.initialize()
    return db


def get_engine(db: PipelineDB) -> PipelineEngine:
    return PipelineEngine(db)


def fail(error: Exception | str, *, as_json: bool = False) -> NoReturn:
    """Report ``error`` and exit 1. With ``as_json`` the error goes to stdout as an object."""
    code = error.code if isinstance(error, PipelineError) else "ERROR"
    if as_json:
        payload: dict[str, object] = {"error": str(error), "code": code}
        valid = getattr(error, "valid_targets", None)
        if valid is not None:
            payload["valid_targets"] = list(valid)
        click.echo(json_mod.dumps(payload))
    else:
        click.echo(f"Error: {error}", err=True)
    sys.exit(1)


def echo_json(data: object) -> None:
    click.echo(json_mod.dumps(data, indent=2, default=str))
