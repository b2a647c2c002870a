"""Foundational TypedDicts for dataclass to_dict() returns."""

from __future__ import annotations

from typing import Any, NewType, TypedDict

ISOTimestamp = NewType("ISOTimestamp", str)


class StageflowConfig(TypedDict, total=False):
    """Shape of .stageflow/config.json."""

    prefix: str
    version: int


class ProjectDict(TypedDict):
    id: str
    title: str
    creator_id: str
    status: str
    due_date: str | None
    value_cents: int
    tags: list[str]
    has_unread_messages: bool
    files_count: int
    last_activity_at: ISOTimestamp
    created_at: ISOTimestamp
    updated_at: ISOTimestamp
    approved_at: ISOTimestamp | None
    completed_at: ISOTimestamp | None
    risk_level: str
    is_at_risk: bool
    days_until_deadline: int | None


class PaginatedProjects(TypedDict):
    """Envelope returned by list_projects."""

    results: list[ProjectDict]
    total: int
    limit: int
    offset: int
    has_more: bool


class StageHistoryDict(TypedDict):
    id: int
    project_id: str
    from_stage: str | None
    to_stage: str
    actor: str
    note: str
    created_at: ISOTimestamp


class SavedFilterDict(TypedDict):
    id: str
    user_id: str | None
    name: str
    filters: dict[str, Any]
    is_default: bool
    created_at: ISOTimestamp


class ProjectFilters(TypedDict, total=False):
    """Predicate bag for list_projects. Every key is optional; absent means no constraint."""

    search: str
    statuses: list[str]
    creator_ids: list[str]
    date_from: str
    date_to: str
    min_value_cents: int
    max_value_cents: int
    has_files: bool
    has_unread_messages: bool
    tags: list[str]
    risk_levels: list[str]
