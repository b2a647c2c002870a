"""Pipeline JSON API served with FastAPI.

Usage:
    stageflow dashboard                # Serves on port 8377
    stageflow dashboard --port 9000    # Custom port

All routes live under ``/api``. The engine is module-level state set by
``main()`` (or by tests) and handed to handlers through ``Depends``.
"""

from __future__ import annotations

import logging
from typing import Any

from stageflow.core import DB_FILENAME, PipelineDB, find_stageflow_root, read_config
from stageflow.engine import PipelineEngine
from stageflow.logging import setup_logging

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8377

# ---------------------------------------------------------------------------
# Module-level state (set by main() or by tests)
# ---------------------------------------------------------------------------

_engine: PipelineEngine | None = None


def _get_engine() -> PipelineEngine:
    """Return the active engine, or fail the request with 500 if none is configured."""
    from fastapi import HTTPException

    if _engine is None:
        raise HTTPException(status_code=500, detail="Pipeline engine not initialized")
    return _engine


def create_app() -> Any:
    """Create the FastAPI application with every pipeline endpoint mounted under ``/api``."""
    from fastapi import FastAPI
    from fastapi.responses import JSONResponse

    from stageflow import __version__
    from stageflow.dashboard_routes import analytics, automation, projects

    # Expose JSONResponse in module globals so PEP 563 deferred annotations resolve
    globals()["JSONResponse"] = JSONResponse

    app = FastAPI(title="Stageflow", docs_url=None, redoc_url=None)

    @app.get("/api/health")
    async def api_health() -> JSONResponse:
        return JSONResponse({"status": "ok", "version": __version__})

    app.include_router(projects.create_router(), prefix="/api")
    app.include_router(analytics.create_router(), prefix="/api")
    app.include_router(automation.create_router(), prefix="/api")
    return app


def main(port: int = DEFAULT_PORT, *, host: str = "127.0.0.1") -> None:
    """Serve the API for the .stageflow/ project found from the cwd."""
    import uvicorn

    global _engine

    stageflow_dir = find_stageflow_root()
    setup_logging(stageflow_dir)
    config = read_config(stageflow_dir)
    db = PipelineDB(
        stageflow_dir / DB_FILENAME,
        prefix=config.get("prefix", "sf"),
        check_same_thread=False,
    )
    db.initialize()
    _engine = PipelineEngine(db)

    app = create_app()
    logger.info("Serving pipeline API on %s:%d", host, port)
    print(f"Stageflow API: http://{host}:{port}/api")
    uvicorn.run(app, host=host, port=port, log_level="warning")
