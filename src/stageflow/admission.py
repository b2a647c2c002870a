"""WIP admission control.

The controller never counts projects itself: the coordinator hands it the
target stage's occupancy *before* the move, which keeps every check here a
pure decision.
"""

from __future__ import annotations

import logging

from stageflow.config import PipelineConfig
from stageflow.errors import AdmissionDeniedError, ValidationError

logger = logging.getLogger(__name__)


def _check_count(current_count: int) -> None:
    if isinstance(current_count, bool) or not isinstance(current_count, int) or current_count < 0:
        msg = f"Stage occupancy must be a non-negative integer, got {current_count!r}"
        raise ValidationError(msg)


def can_admit(limit: int | None, current_count: int) -> bool:
    """True iff one more project fits under ``limit``. No limit always admits."""
    _check_count(current_count)
    if limit is None:
        return True
    return current_count < limit


def check_admission(config: PipelineConfig, target_stage: str, current_count: int) -> None:
    """Raise AdmissionDeniedError if ``target_stage`` is full."""
    limit = config.limit_for(target_stage)
    if not can_admit(limit, current_count):
        assert limit is not None
        logger.warning(
            "Admission denied for stage %s (%d/%d)",
            target_stage,
            current_count,
            limit,
            extra={"stage": target_stage},
        )
        raise AdmissionDeniedError(target_stage, current_count, limit)


def is_wip_violation(limit: int | None, current_count: int) -> bool:
    """A stage holding more than its limit. Sitting exactly at capacity is not a violation."""
    _check_count(current_count)
    if limit is None:
        return False
    return current_count > limit
