"""Analytics, stats and pipeline configuration route handlers."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from starlette.requests import Request

from stageflow.dashboard_routes.common import (
    _parse_json_body,
    _pipeline_error_response,
    _validate_actor,
)
from stageflow.engine import PipelineEngine
from stageflow.errors import PipelineError

logger = logging.getLogger(__name__)


def create_router() -> APIRouter:
    """Build the APIRouter for analytics and configuration endpoints."""
    from stageflow.dashboard import _get_engine

    router = APIRouter()

    @router.get("/analytics")
    async def api_analytics(period: str = "30d", engine: PipelineEngine = Depends(_get_engine)) -> JSONResponse:
        """Throughput, cycle time, stage metrics, bottlenecks and risk for ``period`` (7d/30d/90d)."""
        try:
            result = engine.get_analytics(period)
        except PipelineError as e:
            return _pipeline_error_response(e)
        return JSONResponse(result)

    @router.get("/stats")
    async def api_stats(engine: PipelineEngine = Depends(_get_engine)) -> JSONResponse:
        return JSONResponse(engine.get_stats())

    @router.get("/config")
    async def api_config(engine: PipelineEngine = Depends(_get_engine)) -> JSONResponse:
        return JSONResponse(engine.get_pipeline_config().to_dict())

    async def _write_config(request: Request, engine: PipelineEngine, *, replace: bool) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        actor, err = _validate_actor(body.pop("actor", "dashboard"))
        if err:
            return err
        try:
            config = engine.update_pipeline_config(body, replace=replace, actor=actor)
        except PipelineError as e:
            return _pipeline_error_response(e)
        return JSONResponse(config.to_dict())

    @router.patch("/config")
    async def api_patch_config(request: Request, engine: PipelineEngine = Depends(_get_engine)) -> JSONResponse:
        """Merge-patch the pipeline config. ``wip_limits`` merges per stage; null removes a limit."""
        return await _write_config(request, engine, replace=False)

    @router.put("/config")
    async def api_replace_config(request: Request, engine: PipelineEngine = Depends(_get_engine)) -> JSONResponse:
        return await _write_config(request, engine, replace=True)

    return router
