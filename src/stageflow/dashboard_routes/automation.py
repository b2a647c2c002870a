"""Trigger, sweep and saved-filter route handlers."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, Response
from starlette.requests import Request

from stageflow.dashboard_routes.common import (
    _error_response,
    _parse_json_body,
    _pipeline_error_response,
)
from stageflow.engine import PipelineEngine
from stageflow.errors import PipelineError

logger = logging.getLogger(__name__)


def create_router() -> APIRouter:
    """Build the APIRouter for automation and saved-filter endpoints."""
    from stageflow.dashboard import _get_engine

    router = APIRouter()

    # -- Triggers ------------------------------------------------------------

    @router.get("/triggers")
    async def api_triggers(engine: PipelineEngine = Depends(_get_engine)) -> JSONResponse:
        return JSONResponse([t.to_dict() for t in engine.list_triggers()])

    @router.post("/triggers", status_code=201)
    async def api_create_trigger(request: Request, engine: PipelineEngine = Depends(_get_engine)) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        try:
            trigger = engine.create_trigger(body)
        except PipelineError as e:
            return _pipeline_error_response(e)
        return JSONResponse(trigger.to_dict(), status_code=201)

    @router.patch("/triggers/{trigger_id}")
    async def api_update_trigger(
        trigger_id: str, request: Request, engine: PipelineEngine = Depends(_get_engine)
    ) -> JSONResponse:
        """Partial update; only the keys present in the body change."""
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        try:
            trigger = engine.update_trigger(trigger_id, body)
        except PipelineError as e:
            return _pipeline_error_response(e)
        return JSONResponse(trigger.to_dict())

    @router.delete("/triggers/{trigger_id}", response_model=None)
    async def api_delete_trigger(trigger_id: str, engine: PipelineEngine = Depends(_get_engine)) -> Response:
        try:
            engine.delete_trigger(trigger_id)
        except PipelineError as e:
            return _pipeline_error_response(e)
        return Response(status_code=204)

    @router.post("/sweep")
    async def api_sweep(engine: PipelineEngine = Depends(_get_engine)) -> JSONResponse:
        """Run the daily sweep now and return the dispatched intents."""
        intents = engine.run_daily_sweep()
        return JSONResponse({"count": len(intents), "intents": [i.to_dict() for i in intents]})

    # -- Saved filters -------------------------------------------------------

    @router.get("/filters")
    async def api_filters(user_id: str | None = None, engine: PipelineEngine = Depends(_get_engine)) -> JSONResponse:
        return JSONResponse([f.to_dict() for f in engine.list_saved_filters(user_id)])

    @router.post("/filters", status_code=201)
    async def api_create_filter(request: Request, engine: PipelineEngine = Depends(_get_engine)) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        filters = body.get("filters", {})
        if not isinstance(filters, dict):
            return _error_response("filters must be a JSON object", "VALIDATION_ERROR", 400)
        user_id = body.get("user_id")
        if user_id is not None and not isinstance(user_id, str):
            return _error_response("user_id must be a string or null", "VALIDATION_ERROR", 400)
        try:
            saved = engine.create_saved_filter(
                body.get("name", ""),
                filters,
                user_id=user_id,
                is_default=body.get("is_default") is True,
            )
        except PipelineError as e:
            return _pipeline_error_response(e)
        return JSONResponse(saved.to_dict(), status_code=201)

    @router.delete("/filters/{filter_id}", response_model=None)
    async def api_delete_filter(
        filter_id: str, request: Request, engine: PipelineEngine = Depends(_get_engine)
    ) -> Response:
        try:
            engine.delete_saved_filter(filter_id, user_id=request.query_params.get("user_id"))
        except PipelineError as e:
            return _pipeline_error_response(e)
        return Response(status_code=204)

    return router
