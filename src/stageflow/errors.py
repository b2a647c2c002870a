"""Error taxonomy for the pipeline engine.

Every error is recoverable by the caller (retry, re-fetch, or surface to a
human). Surfaces translate ``code`` into CLI exit messages and HTTP envelopes.
"""

from __future__ import annotations

from collections.abc import Sequence


class PipelineError(Exception):
    """Base class for all stageflow errors."""

    code = "PIPELINE_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class NotFoundError(PipelineError, KeyError):
    """A project, trigger, saved filter or config record does not exist."""

    code = "NOT_FOUND"

    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind.capitalize()} not found: {identifier}")

    # KeyError.__str__ would repr() the message
    def __str__(self) -> str:
        return self.message


class InvalidTransitionError(PipelineError, ValueError):
    """The requested move is not an edge of the transition graph for this caller."""

    code = "INVALID_TRANSITION"

    def __init__(
        self,
        from_stage: str,
        to_stage: str,
        *,
        project_id: str | None = None,
        valid_targets: Sequence[str] = (),
        reason: str = "",
    ) -> None:
        self.from_stage = from_stage
        self.to_stage = to_stage
        self.project_id = project_id
        self.valid_targets = tuple(valid_targets)
        subject = f"project {project_id}" if project_id else "project"
        targets = ", ".join(self.valid_targets) if self.valid_targets else "none"
        detail = f" ({reason})" if reason else ""
        super().__init__(
            f"Cannot move {subject} from '{from_stage}' to '{to_stage}'{detail}. Valid targets: {targets}"
        )


class AdmissionDeniedError(PipelineError, ValueError):
    """The target stage is at or above its WIP limit."""

    code = "ADMISSION_DENIED"

    def __init__(self, stage: str, current_count: int, limit: int) -> None:
        self.stage = stage
        self.current_count = current_count
        self.limit = limit
        super().__init__(f"Stage '{stage}' is at its WIP limit ({current_count}/{limit})")


class ConcurrentModificationError(PipelineError):
    """The project's stage changed between read and conditional write."""

    code = "CONCURRENT_MODIFICATION"

    def __init__(self, project_id: str, expected_stage: str, actual_stage: str | None) -> None:
        self.project_id = project_id
        self.expected_stage = expected_stage
        self.actual_stage = actual_stage
        super().__init__(
            f"Project {project_id} changed concurrently: expected stage '{expected_stage}', "
            f"found '{actual_stage}'. Re-fetch and retry."
        )


class ValidationError(PipelineError, ValueError):
    """Malformed trigger, config, filter, or project input."""

    code = "VALIDATION_ERROR"
