"""Fixtures for HTTP API tests (FastAPI)."""

from __future__ import annotations

from collections.abc import AsyncIterator, Generator
from datetime import UTC, datetime
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

import stageflow.dashboard as dash_module
from stageflow.clock import FixedClock
from stageflow.core import PipelineDB
from stageflow.dashboard import create_app
from stageflow.dispatch import RecordingDispatcher
from stageflow.engine import PipelineEngine


@pytest.fixture
def api_engine(tmp_path: Path) -> Generator[PipelineEngine, None, None]:
    """Engine over a DB opened with check_same_thread=False, pinned to 2026-03-04 12:00 UTC."""
    db = PipelineDB(tmp_path / "api.db", prefix="test", check_same_thread=False)
    db.initialize()
    engine = PipelineEngine(
        db,
        clock=FixedClock(datetime(2026, 3, 4, 12, 0, tzinfo=UTC)),
        dispatcher=RecordingDispatcher(),
    )
    yield engine
    db.close()


@pytest.fixture
async def client(api_engine: PipelineEngine) -> AsyncIterator[AsyncClient]:
    dash_module._engine = api_engine
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    dash_module._engine = None
