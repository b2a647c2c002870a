"""The storage interface the engine consumes.

``PipelineDB`` (core.py) is the shipped SQLite implementation. Any store
must give ``write_project_stage`` compare-and-swap semantics: the write
succeeds only if the project is still in ``expected_prior_stage``, and
raises ``ConcurrentModificationError`` otherwise.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Any, Protocol

from stageflow.config import PipelineConfig
from stageflow.models import Project, SavedFilter, StageHistoryEntry
from stageflow.triggers import Trigger
from stageflow.types.core import ProjectFilters


class PipelineStore(Protocol):
    # -- Projects ------------------------------------------------------------

    def fetch_project(self, project_id: str) -> Project: ...

    def fetch_projects_snapshot(self, filters: ProjectFilters | None = None) -> list[Project]: ...

    def count_in_stage(self, stage: str) -> int: ...

    def stage_counts(self) -> dict[str, int]: ...

    def insert_project(self, project: Project) -> Project: ...

    def new_project_id(self) -> str: ...

    def write_project_stage(
        self,
        project_id: str,
        stage: str,
        expected_prior_stage: str,
        *,
        activity_at: str,
        approved_at: str | None = None,
        completed_at: str | None = None,
    ) -> None: ...

    def write_due_date(self, project_id: str, due_date: str | None, *, updated_at: str) -> None: ...

    def touch_activity(self, project_id: str, *, activity_at: str) -> None: ...

    def transaction(self) -> AbstractContextManager[Any]: ...

    # -- History -------------------------------------------------------------

    def append_history(self, entry: StageHistoryEntry) -> StageHistoryEntry: ...

    def fetch_history(self, project_id: str) -> list[StageHistoryEntry]: ...

    def fetch_recent_history(self, *, limit: int = 50) -> list[StageHistoryEntry]: ...

    # -- Config --------------------------------------------------------------

    def fetch_config(self) -> PipelineConfig: ...

    def save_config(self, config: PipelineConfig, *, now: str) -> None: ...

    # -- Triggers ------------------------------------------------------------

    def fetch_triggers(self) -> list[Trigger]: ...

    def fetch_trigger(self, trigger_id: str) -> Trigger: ...

    def insert_trigger(self, trigger: Trigger) -> Trigger: ...

    def replace_trigger(self, trigger: Trigger) -> Trigger: ...

    def delete_trigger(self, trigger_id: str) -> None: ...

    def new_trigger_id(self) -> str: ...

    # -- Saved filters -------------------------------------------------------

    def fetch_saved_filters(self, user_id: str | None = None) -> list[SavedFilter]: ...

    def insert_saved_filter(self, saved: SavedFilter) -> SavedFilter: ...

    def delete_saved_filter(self, filter_id: str, *, user_id: str | None = None) -> None: ...

    def new_saved_filter_id(self) -> str: ...
