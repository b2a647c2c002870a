"""Project, transition and history route handlers."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from starlette.requests import Request

from stageflow.dashboard_routes.common import (
    _error_response,
    _get_bool_param,
    _parse_json_body,
    _parse_pagination,
    _pipeline_error_response,
    _validate_actor,
)
from stageflow.engine import PipelineEngine
from stageflow.errors import PipelineError

logger = logging.getLogger(__name__)

# Query params consumed by the list endpoint itself; everything else is a filter.
_LIST_CONTROL_PARAMS = frozenset({"limit", "offset", "all"})

# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------


def create_router() -> APIRouter:
    """Build the APIRouter for project, transition and history endpoints.

    NOTE: All handlers are async despite doing synchronous SQLite I/O, so
    every request touches the shared connection from the event loop thread.
    """
    from stageflow.dashboard import _get_engine

    router = APIRouter()

    @router.get("/projects")
    async def api_projects(request: Request, engine: PipelineEngine = Depends(_get_engine)) -> JSONResponse:
        """Filtered, paginated projects. No filter params means the configured default filter."""
        params = request.query_params
        page = _parse_pagination(params)
        if isinstance(page, JSONResponse):
            return page
        limit, offset = page
        show_all = _get_bool_param(params, "all", False)
        if isinstance(show_all, JSONResponse):
            return show_all
        raw: dict[str, Any] = {k: v for k, v in params.items() if k not in _LIST_CONTROL_PARAMS}
        try:
            result = engine.list_projects(raw if (raw or show_all) else None, limit=limit, offset=offset)
        except PipelineError as e:
            return _pipeline_error_response(e)
        return JSONResponse(result)

    @router.post("/projects", status_code=201)
    async def api_create_project(request: Request, engine: PipelineEngine = Depends(_get_engine)) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        actor, err = _validate_actor(body.get("actor", "dashboard"))
        if err:
            return err
        tags = body.get("tags") or ()
        if not isinstance(tags, list):
            return _error_response("tags must be a JSON array", "VALIDATION_ERROR", 400)
        try:
            project = engine.create_project(
                body.get("title", ""),
                creator_id=body.get("creator_id", ""),
                value_cents=body.get("value_cents", 0),
                due_date=body.get("due_date"),
                tags=tags,
                status=body.get("status"),
                actor=actor,
            )
        except PipelineError as e:
            return _pipeline_error_response(e)
        return JSONResponse(project.to_dict(), status_code=201)

    @router.post("/projects/bulk-status")
    async def api_bulk_status(request: Request, engine: PipelineEngine = Depends(_get_engine)) -> JSONResponse:
        """Move several projects. Always 200; per-item failures are in ``errors``."""
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        project_ids = body.get("project_ids")
        if not isinstance(project_ids, list):
            return _error_response("project_ids must be a JSON array", "VALIDATION_ERROR", 400)
        if not all(isinstance(i, str) for i in project_ids):
            return _error_response("All project_ids must be strings", "VALIDATION_ERROR", 400)
        status = body.get("status")
        if not isinstance(status, str) or not status:
            return _error_response("status is required", "VALIDATION_ERROR", 400)
        actor, err = _validate_actor(body.get("actor", "dashboard"))
        if err:
            return err
        try:
            result = engine.apply_bulk(
                project_ids,
                status,
                actor=actor,
                note=body.get("note", "Bulk update"),
                acting_as_admin=body.get("acting_as_admin") is True,
            )
        except PipelineError as e:
            return _pipeline_error_response(e)
        return JSONResponse(result.to_dict())

    @router.get("/projects/{project_id}")
    async def api_project_detail(project_id: str, engine: PipelineEngine = Depends(_get_engine)) -> JSONResponse:
        try:
            project = engine.get_project(project_id)
        except PipelineError as e:
            return _pipeline_error_response(e)
        return JSONResponse(project.to_dict())

    @router.patch("/projects/{project_id}/status")
    async def api_update_status(
        project_id: str, request: Request, engine: PipelineEngine = Depends(_get_engine)
    ) -> JSONResponse:
        """Move one project. 400 for an illegal move, 409 for WIP or a concurrent change."""
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        status = body.get("status")
        if not isinstance(status, str) or not status:
            return _error_response("status is required", "VALIDATION_ERROR", 400)
        actor, err = _validate_actor(body.get("actor", "dashboard"))
        if err:
            return err
        note = body.get("note", "")
        if not isinstance(note, str):
            return _error_response("note must be a string", "VALIDATION_ERROR", 400)
        try:
            project = engine.apply_transition(
                project_id,
                status,
                actor=actor,
                note=note,
                acting_as_admin=body.get("acting_as_admin") is True,
            )
        except PipelineError as e:
            return _pipeline_error_response(e)
        return JSONResponse(project.to_dict())

    @router.patch("/projects/{project_id}/due-date")
    async def api_update_due_date(
        project_id: str, request: Request, engine: PipelineEngine = Depends(_get_engine)
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        if "due_date" not in body:
            return _error_response("due_date is required (null clears it)", "VALIDATION_ERROR", 400)
        actor, err = _validate_actor(body.get("actor", "dashboard"))
        if err:
            return err
        try:
            project = engine.update_due_date(project_id, body["due_date"], actor=actor)
        except PipelineError as e:
            return _pipeline_error_response(e)
        return JSONResponse(project.to_dict())

    @router.get("/projects/{project_id}/history")
    async def api_project_history(project_id: str, engine: PipelineEngine = Depends(_get_engine)) -> JSONResponse:
        """Ordered stage history plus hours spent per stage."""
        try:
            entries = engine.get_history(project_id)
            durations = engine.get_stage_durations(project_id)
        except PipelineError as e:
            return _pipeline_error_response(e)
        return JSONResponse({"history": [e.to_dict() for e in entries], "durations_hours": durations})

    @router.get("/projects/{project_id}/transitions")
    async def api_project_transitions(
        project_id: str, request: Request, engine: PipelineEngine = Depends(_get_engine)
    ) -> JSONResponse:
        acting_as_admin = _get_bool_param(request.query_params, "admin", False)
        if isinstance(acting_as_admin, JSONResponse):
            return acting_as_admin
        try:
            info = engine.get_transitions(project_id, acting_as_admin=acting_as_admin)
        except PipelineError as e:
            return _pipeline_error_response(e)
        return JSONResponse(info)

    @router.get("/history")
    async def api_recent_history(request: Request, engine: PipelineEngine = Depends(_get_engine)) -> JSONResponse:
        """Recent moves across the pipeline, newest first."""
        page = _parse_pagination(request.query_params, default_limit=50)
        if isinstance(page, JSONResponse):
            return page
        limit, _offset = page
        return JSONResponse([e.to_dict() for e in engine.get_recent_history(limit=limit)])

    return router
