"""TypedDicts for engine bulk results and dashboard route responses."""

from __future__ import annotations

from typing import Any, NotRequired, TypedDict

from stageflow.types.core import ProjectDict


class BulkError(TypedDict):
    """One failed item of a bulk move."""

    id: str
    error: str
    code: str
    valid_targets: NotRequired[list[str]]


class BulkResultDict(TypedDict):
    updated_count: int
    updated: list[ProjectDict]
    errors: list[BulkError]


class ErrorDetail(TypedDict):
    message: str
    code: str
    details: dict[str, Any] | None


class ErrorEnvelope(TypedDict):
    """Standard error envelope returned by every dashboard error path."""

    error: ErrorDetail


class TransitionsResponse(TypedDict):
    project_id: str
    status: str
    valid_targets: list[str]
    locked: bool


class ActionIntentDict(TypedDict):
    trigger_id: str
    trigger_name: str
    trigger_type: str
    project_id: str
    action: dict[str, Any]
    dedupe_key: str
