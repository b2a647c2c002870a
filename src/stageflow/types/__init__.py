# IMPORT CONSTRAINT: types/ modules must only import from typing, stdlib, and each other.
# NEVER import from core.py, engine.py, or any mixin; this prevents circular imports.
"""Typed return-value contracts for the stageflow engine and API layers."""

from __future__ import annotations

from stageflow.types.analytics import (
    Bottleneck,
    CycleTimeBucket,
    PipelineAnalytics,
    PipelineStats,
    RiskBucket,
    StageMetric,
    ThroughputBucket,
)
from stageflow.types.core import (
    ISOTimestamp,
    PaginatedProjects,
    ProjectDict,
    ProjectFilters,
    SavedFilterDict,
    StageflowConfig,
    StageHistoryDict,
)

__all__ = [
    "Bottleneck",
    "CycleTimeBucket",
    "ISOTimestamp",
    "PaginatedProjects",
    "PipelineAnalytics",
    "PipelineStats",
    "ProjectDict",
    "ProjectFilters",
    "RiskBucket",
    "SavedFilterDict",
    "StageHistoryDict",
    "StageMetric",
    "StageflowConfig",
    "ThroughputBucket",
]
