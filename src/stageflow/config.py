"""Pipeline configuration: the stage catalog, graph, and WIP limits as one snapshot.

A ``PipelineConfig`` is loaded once per engine operation and passed explicitly
into every pure function. Nothing in stageflow reads configuration from
module-level state.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from stageflow.errors import ValidationError
from stageflow.stages import (
    StageDefinition,
    TransitionGraph,
    check_graph_quality,
    parse_graph,
    parse_stages,
    validate_graph,
)
from stageflow.stages_data import DEFAULT_PIPELINE

logger = logging.getLogger(__name__)

# Keys an administrator may send in a config patch.
CONFIG_KEYS = frozenset(
    {"stages", "transitions", "locked", "terminal", "approval_stage", "resolved", "wip_limits", "default_filters"}
)


@dataclass(frozen=True)
class PipelineConfig:
    """Singleton per tenant. Immutable once built."""

    stages: tuple[StageDefinition, ...]
    graph: TransitionGraph
    wip_limits: Mapping[str, int]
    resolved_stages: frozenset[str]
    approval_stage: str | None = None
    default_filters: dict[str, Any] | None = None

    @property
    def stage_ids(self) -> list[str]:
        return [s.id for s in self.stages]

    @property
    def terminal(self) -> str:
        return self.graph.terminal

    @property
    def initial_stage(self) -> str:
        return self.stages[0].id

    def get_stage(self, stage_id: str) -> StageDefinition | None:
        for s in self.stages:
            if s.id == stage_id:
                return s
        return None

    def has_stage(self, stage_id: str) -> bool:
        return self.get_stage(stage_id) is not None

    def limit_for(self, stage_id: str) -> int | None:
        """WIP limit for a stage: explicit limit map first, then the stage's own."""
        if stage_id in self.wip_limits:
            return self.wip_limits[stage_id]
        stage = self.get_stage(stage_id)
        return stage.wip_limit if stage is not None else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "stages": [s.to_dict() for s in self.stages],
            "transitions": {s: sorted(self.graph.targets(s)) for s in self.stage_ids},
            "locked": [s for s in self.stage_ids if s in self.graph.locked],
            "terminal": self.graph.terminal,
            "approval_stage": self.approval_stage,
            "resolved": [s for s in self.stage_ids if s in self.resolved_stages],
            "wip_limits": dict(self.wip_limits),
            "default_filters": copy.deepcopy(self.default_filters),
        }


def _parse_wip_limits(raw: Any, stage_ids: set[str]) -> dict[str, int]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        msg = f"'wip_limits' must be an object, got {type(raw).__name__}"
        raise ValidationError(msg)
    limits: dict[str, int] = {}
    for stage, limit in raw.items():
        if stage not in stage_ids:
            msg = f"WIP limit set for unknown stage '{stage}'"
            raise ValidationError(msg)
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
            msg = f"WIP limit for '{stage}' must be a non-negative integer, got {limit!r}"
            raise ValidationError(msg)
        limits[stage] = limit
    return limits


def config_from_dict(raw: Mapping[str, Any]) -> PipelineConfig:
    """Build and validate a PipelineConfig from its JSON form.

    Missing keys fall back to the built-in pipeline.

    Raises:
        ValidationError: If any part is malformed or the graph is inconsistent.
    """
    if not isinstance(raw, Mapping):
        msg = f"Pipeline config must be an object, got {type(raw).__name__}"
        raise ValidationError(msg)
    unknown = set(raw) - CONFIG_KEYS
    if unknown:
        msg = f"Unknown pipeline config keys: {', '.join(sorted(unknown))}"
        raise ValidationError(msg)

    def pick(key: str) -> Any:
        return raw[key] if key in raw else copy.deepcopy(DEFAULT_PIPELINE[key])

    stages = parse_stages(pick("stages"))
    stage_ids = {s.id for s in stages}
    graph = parse_graph(pick("transitions"), pick("locked"), pick("terminal"))

    errors = validate_graph(stage_ids, graph)
    if errors:
        msg = "Invalid transition graph: " + "; ".join(errors)
        raise ValidationError(msg)
    for warning in check_graph_quality(stages, graph):
        logger.warning("Pipeline config quality: %s", warning)

    approval_stage = pick("approval_stage")
    if approval_stage is not None and approval_stage not in stage_ids:
        msg = f"approval_stage '{approval_stage}' is not in the catalog"
        raise ValidationError(msg)

    resolved = pick("resolved")
    if not isinstance(resolved, list) or not all(isinstance(s, str) for s in resolved):
        msg = "'resolved' must be a list of stage ids"
        raise ValidationError(msg)
    unknown_resolved = set(resolved) - stage_ids
    if unknown_resolved:
        msg = f"Resolved stages not in the catalog: {', '.join(sorted(unknown_resolved))}"
        raise ValidationError(msg)

    default_filters = pick("default_filters")
    if default_filters is not None and not isinstance(default_filters, dict):
        msg = "'default_filters' must be an object or null"
        raise ValidationError(msg)

    return PipelineConfig(
        stages=stages,
        graph=graph,
        wip_limits=_parse_wip_limits(pick("wip_limits"), stage_ids),
        resolved_stages=frozenset(resolved) | {graph.terminal},
        approval_stage=approval_stage,
        default_filters=default_filters,
    )


def default_config() -> PipelineConfig:
    return config_from_dict({})


def merge_config_patch(current: PipelineConfig, patch: Mapping[str, Any]) -> PipelineConfig:
    """Apply an administrative merge-patch to a config.

    Every key except ``wip_limits`` replaces the current value. ``wip_limits``
    is merged per stage; a ``None`` value removes that stage's limit.
    Limits for stages dropped from the catalog are discarded.
    """
    if not isinstance(patch, Mapping):
        msg = f"Config patch must be an object, got {type(patch).__name__}"
        raise ValidationError(msg)
    unknown = set(patch) - CONFIG_KEYS
    if unknown:
        msg = f"Unknown pipeline config keys: {', '.join(sorted(unknown))}"
        raise ValidationError(msg)

    merged = current.to_dict()
    for key, value in patch.items():
        if key == "wip_limits":
            if value is None:
                merged["wip_limits"] = {}
                continue
            if not isinstance(value, dict):
                msg = f"'wip_limits' must be an object, got {type(value).__name__}"
                raise ValidationError(msg)
            limits = dict(merged["wip_limits"])
            for stage, limit in value.items():
                if limit is None:
                    limits.pop(stage, None)
                else:
                    limits[stage] = limit
            merged["wip_limits"] = limits
        else:
            merged[key] = value

    if "stages" in patch:
        new_ids = {s.get("id") for s in merged["stages"] if isinstance(s, dict)}
        merged["wip_limits"] = {k: v for k, v in merged["wip_limits"].items() if k in new_ids}
        if "resolved" not in patch:
            merged["resolved"] = [s for s in merged["resolved"] if s in new_ids]
    return config_from_dict(merged)
