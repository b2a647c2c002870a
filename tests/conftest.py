"""Shared pytest fixtures for stageflow tests."""

from __future__ import annotations

from collections.abc import Callable, Generator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner

from stageflow.clock import FixedClock, to_iso
from stageflow.core import PipelineDB
from stageflow.dispatch import RecordingDispatcher
from stageflow.engine import PipelineEngine
from stageflow.models import Project

# A Wednesday, so week-bucket tests have a known Monday (2026-03-02).
NOW = datetime(2026, 3, 4, 12, 0, tzinfo=UTC)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def db(tmp_path: Path) -> Generator[PipelineDB, None, None]:
    """Fresh PipelineDB for each test."""
    d = PipelineDB(tmp_path / "stageflow.db", prefix="test")
    d.initialize()
    yield d
    d.close()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def engine(db: PipelineDB, clock: FixedClock, dispatcher: RecordingDispatcher) -> PipelineEngine:
    return PipelineEngine(db, clock=clock, dispatcher=dispatcher)


@pytest.fixture
def seed(db: PipelineDB) -> Callable[..., Project]:
    """Insert a project row directly, bypassing admission and history.

    Timestamps default to ``NOW``; pass ``created_at``/``completed_at`` etc. as
    ISO strings to build analytics snapshots.
    """
    counter = iter(range(1, 10_000))

    def _seed(status: str = "draft", **fields: Any) -> Project:
        n = next(counter)
        ts = to_iso(NOW)
        values: dict[str, Any] = {
            "id": f"test-p{n:03d}",
            "title": f"Project {n}",
            "creator_id": "creator-1",
            "status": status,
            "last_activity_at": ts,
            "created_at": ts,
            "updated_at": ts,
        }
        values.update(fields)
        return db.insert_project(Project(**values))

    return _seed


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()
