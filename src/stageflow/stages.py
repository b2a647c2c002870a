# src/stageflow/stages.py
"""Stage catalog and transition graph -- parsing, validation, and the transition check.

Stages and the graph are plain configuration records, never a class per
stage: deciding whether a move is legal is a single lookup in
``TransitionGraph.edges``. Every function here is pure and takes the graph
explicitly, so callers can use it concurrently without synchronization.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from stageflow.errors import ValidationError

logger = logging.getLogger(__name__)

# Stage ids are used as SQL parameters, JSON keys and CLI arguments.
_ID_PATTERN = re.compile(r"^[a-z][a-z0-9_]{0,63}$")

MAX_STAGES = 50


# ---------------------------------------------------------------------------
# Frozen records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StageDefinition:
    """One named step of the delivery pipeline with its display metadata."""

    id: str
    label: str
    color: str = "gray"
    wip_limit: int | None = None
    auto_notify: bool = False
    default_due_days: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not _ID_PATTERN.match(self.id):
            msg = f"Invalid stage id '{self.id}': must match ^[a-z][a-z0-9_]{{0,63}}$"
            raise ValidationError(msg)
        for name in ("wip_limit", "default_due_days"):
            value = getattr(self, name)
            if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
                msg = f"Stage '{self.id}': {name} must be a non-negative integer, got {value!r}"
                raise ValidationError(msg)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "label": self.label, "color": self.color}
        if self.wip_limit is not None:
            data["wip_limit"] = self.wip_limit
        if self.auto_notify:
            data["auto_notify"] = True
        if self.default_due_days is not None:
            data["default_due_days"] = self.default_due_days
        return data


@dataclass(frozen=True)
class TransitionGraph:
    """Directed graph of legal stage moves plus the locked and terminal stages."""

    edges: Mapping[str, frozenset[str]]
    locked: frozenset[str]
    terminal: str

    def targets(self, from_stage: str) -> frozenset[str]:
        return self.edges.get(from_stage, frozenset())

    def to_dict(self) -> dict[str, Any]:
        return {
            "transitions": {k: sorted(v) for k, v in self.edges.items()},
            "locked": sorted(self.locked),
            "terminal": self.terminal,
        }


# ---------------------------------------------------------------------------
# Transition validation
# ---------------------------------------------------------------------------


def is_valid_transition(
    graph: TransitionGraph,
    from_stage: str,
    to_stage: str,
    *,
    acting_as_admin: bool = False,
) -> bool:
    """Decide whether moving ``from_stage -> to_stage`` is legal for this caller.

    Rules, in order:
      1. A move to the same stage is rejected, never silently accepted.
      2. Nobody but an administrator moves a project out of a locked stage.
      3. Otherwise the move is legal iff it is an edge of the graph.
    """
    if from_stage == to_stage:
        return False
    if from_stage in graph.locked and not acting_as_admin:
        return False
    return to_stage in graph.targets(from_stage)


def valid_targets(
    graph: TransitionGraph,
    from_stage: str,
    *,
    acting_as_admin: bool = False,
    order: Iterable[str] | None = None,
) -> list[str]:
    """All stages reachable in one legal move, in catalog ``order`` when given."""
    if from_stage in graph.locked and not acting_as_admin:
        return []
    targets = graph.targets(from_stage) - {from_stage}
    if order is None:
        return sorted(targets)
    return [s for s in order if s in targets]


def rejection_reason(graph: TransitionGraph, from_stage: str, to_stage: str, *, acting_as_admin: bool = False) -> str:
    """Human-readable reason a move failed ``is_valid_transition``."""
    if from_stage == to_stage:
        return "project is already in that stage"
    if from_stage in graph.locked and not acting_as_admin:
        return f"'{from_stage}' is locked; only administrators can move projects out of it"
    return "not a direct edge of the transition graph"


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_stage(raw: Any) -> StageDefinition:
    """Parse a stage from a JSON-compatible dict.

    Raises:
        ValidationError: If the shape or any value is invalid.
    """
    if not isinstance(raw, dict) or "id" not in raw:
        msg = f"Stage must be an object with an 'id', got {raw!r}"
        raise ValidationError(msg)
    label = raw.get("label", raw["id"])
    if not isinstance(label, str):
        msg = f"Stage '{raw['id']}': label must be a string"
        raise ValidationError(msg)
    return StageDefinition(
        id=raw["id"],
        label=label,
        color=str(raw.get("color", "gray")),
        wip_limit=raw.get("wip_limit"),
        auto_notify=bool(raw.get("auto_notify", False)),
        default_due_days=raw.get("default_due_days"),
    )


def parse_stages(raw: Any) -> tuple[StageDefinition, ...]:
    if not isinstance(raw, list):
        msg = f"'stages' must be a list, got {type(raw).__name__}"
        raise ValidationError(msg)
    if not raw:
        msg = "'stages' must contain at least one stage"
        raise ValidationError(msg)
    if len(raw) > MAX_STAGES:
        msg = f"Pipeline has {len(raw)} stages (max {MAX_STAGES})"
        raise ValidationError(msg)
    stages = tuple(parse_stage(s) for s in raw)
    seen: set[str] = set()
    for s in stages:
        if s.id in seen:
            msg = f"Duplicate stage id '{s.id}'"
            raise ValidationError(msg)
        seen.add(s.id)
    return stages


def parse_graph(transitions: Any, locked: Any, terminal: Any) -> TransitionGraph:
    """Build a TransitionGraph from its JSON form: ``{from: [to, ...]}``."""
    if not isinstance(transitions, dict):
        msg = f"'transitions' must be an object, got {type(transitions).__name__}"
        raise ValidationError(msg)
    edges: dict[str, frozenset[str]] = {}
    for from_stage, targets in transitions.items():
        if not isinstance(targets, list) or not all(isinstance(t, str) for t in targets):
            msg = f"Transitions from '{from_stage}' must be a list of stage ids"
            raise ValidationError(msg)
        edges[from_stage] = frozenset(targets)
    if not isinstance(locked, list) or not all(isinstance(s, str) for s in locked):
        msg = "'locked' must be a list of stage ids"
        raise ValidationError(msg)
    if not isinstance(terminal, str):
        msg = "'terminal' must be a stage id"
        raise ValidationError(msg)
    logger.debug("Parsed transition graph: %d stages with edges, terminal=%s", len(edges), terminal)
    return TransitionGraph(edges=edges, locked=frozenset(locked), terminal=terminal)


def validate_graph(stage_ids: Iterable[str], graph: TransitionGraph) -> list[str]:
    """Check a graph for consistency against a catalog.

    Returns:
        List of error messages. Empty list means valid.
    """
    errors: list[str] = []
    known = set(stage_ids)

    if graph.terminal not in known:
        errors.append(f"terminal stage '{graph.terminal}' is not in the catalog")
    if graph.targets(graph.terminal):
        errors.append(f"terminal stage '{graph.terminal}' must have no outgoing transitions")
    for s in sorted(graph.locked - known):
        errors.append(f"locked stage '{s}' is not in the catalog")
    for from_stage, targets in graph.edges.items():
        if from_stage not in known:
            errors.append(f"transition source '{from_stage}' is not in the catalog")
        for t in sorted(targets - known):
            errors.append(f"transition {from_stage}->{t} targets a stage not in the catalog")
        if from_stage in targets:
            errors.append(f"stage '{from_stage}' has a self-transition")
    return errors


def check_graph_quality(stages: Iterable[StageDefinition], graph: TransitionGraph) -> list[str]:
    """Non-blocking warnings: dead ends and stages nothing can reach."""
    ordered = [s.id for s in stages]
    warnings: list[str] = []
    for s in ordered:
        if s != graph.terminal and not graph.targets(s):
            warnings.append(f"stage '{s}' has no outgoing transitions (dead end)")

    if ordered:
        reachable: set[str] = set()
        queue = [ordered[0]]
        while queue:
            current = queue.pop(0)
            if current in reachable:
                continue
            reachable.add(current)
            queue.extend(t for t in graph.targets(current) if t not in reachable)
        for s in ordered:
            if s not in reachable:
                warnings.append(f"stage '{s}' is unreachable from initial stage '{ordered[0]}'")
    return warnings
