"""Entity records: projects, stage history, and saved filters."""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from stageflow.risk import RESOLVED_STAGES, RiskLevel, days_until, is_at_risk, risk_level
from stageflow.types.core import ProjectDict, SavedFilterDict, StageHistoryDict


@dataclass
class Project:
    id: str
    title: str
    creator_id: str
    status: str
    due_date: str | None = None
    value_cents: int = 0
    tags: list[str] = field(default_factory=list)
    has_unread_messages: bool = False
    files_count: int = 0
    last_activity_at: str = ""
    created_at: str = ""
    updated_at: str = ""
    approved_at: str | None = None
    completed_at: str | None = None
    # Computed (not stored directly)
    risk_level: RiskLevel = "none"
    is_at_risk: bool = False
    days_until_deadline: int | None = None

    def refresh_risk(self, *, now: datetime, resolved: Collection[str] = RESOLVED_STAGES) -> Project:
        """Recompute the derived risk fields in place. Returns self for chaining."""
        self.risk_level = risk_level(self.due_date, self.status, now=now, resolved=resolved)
        self.is_at_risk = is_at_risk(self.risk_level)
        self.days_until_deadline = days_until(self.due_date, now)
        return self

    def to_dict(self) -> ProjectDict:
        return {
            "id": self.id,
            "title": self.title,
            "creator_id": self.creator_id,
            "status": self.status,
            "due_date": self.due_date,
            "value_cents": self.value_cents,
            "tags": list(self.tags),
            "has_unread_messages": self.has_unread_messages,
            "files_count": self.files_count,
            "last_activity_at": self.last_activity_at,  # type: ignore[typeddict-item]
            "created_at": self.created_at,  # type: ignore[typeddict-item]
            "updated_at": self.updated_at,  # type: ignore[typeddict-item]
            "approved_at": self.approved_at,  # type: ignore[typeddict-item]
            "completed_at": self.completed_at,  # type: ignore[typeddict-item]
            "risk_level": self.risk_level,
            "is_at_risk": self.is_at_risk,
            "days_until_deadline": self.days_until_deadline,
        }


@dataclass(frozen=True)
class StageHistoryEntry:
    """Append-only record of one accepted transition. ``from_stage`` is None on creation."""

    project_id: str
    to_stage: str
    from_stage: str | None = None
    actor: str = ""
    note: str = ""
    created_at: str = ""
    id: int | None = None

    def to_dict(self) -> StageHistoryDict:
        return {
            "id": self.id if self.id is not None else 0,
            "project_id": self.project_id,
            "from_stage": self.from_stage,
            "to_stage": self.to_stage,
            "actor": self.actor,
            "note": self.note,
            "created_at": self.created_at,  # type: ignore[typeddict-item]
        }


@dataclass
class SavedFilter:
    id: str
    name: str
    filters: dict[str, Any] = field(default_factory=dict)
    user_id: str | None = None
    is_default: bool = False
    created_at: str = ""

    @property
    def is_shared(self) -> bool:
        return self.user_id is None

    def to_dict(self) -> SavedFilterDict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "filters": self.filters,
            "is_default": self.is_default,
            "created_at": self.created_at,  # type: ignore[typeddict-item]
        }
