"""Built-in pipeline definition.

Pure data: the default stage catalog, transition graph, and lock set used
when a tenant has not stored its own pipeline configuration. Logic lives in
stages.py and config.py.

The graph is JSON-compatible so it round-trips through the config table
unchanged. ``revision_requested -> approved`` is a real edge: reviewers may
approve a revision without a second submission.
"""

from __future__ import annotations

from typing import Any

DEFAULT_STAGES: list[dict[str, Any]] = [
    {"id": "draft", "label": "Draft", "color": "gray"},
    {"id": "in_progress", "label": "In Progress", "color": "blue"},
    {"id": "submitted", "label": "Submitted", "color": "purple", "auto_notify": True},
    {"id": "revision_requested", "label": "Revision Requested", "color": "orange"},
    {"id": "approved", "label": "Approved", "color": "green"},
    {"id": "payout_ready", "label": "Payout Ready", "color": "teal"},
    {"id": "withdrawal_requested", "label": "Withdrawal Requested", "color": "yellow"},
    {"id": "payout_approved", "label": "Paid", "color": "emerald"},
]

DEFAULT_TRANSITIONS: dict[str, list[str]] = {
    "draft": ["in_progress"],
    "in_progress": ["submitted", "draft"],
    "submitted": ["approved", "revision_requested", "in_progress"],
    "revision_requested": ["in_progress", "submitted", "approved"],
    "approved": ["payout_ready", "revision_requested"],
    "payout_ready": ["withdrawal_requested"],
    "withdrawal_requested": ["payout_approved", "payout_ready"],
    "payout_approved": [],
}

# Only administrators may move a project out of these stages.
DEFAULT_LOCKED: list[str] = ["withdrawal_requested", "payout_approved"]

DEFAULT_TERMINAL = "payout_approved"
DEFAULT_APPROVAL_STAGE = "approved"

# Projects in these stages always score risk "none".
DEFAULT_RESOLVED: list[str] = ["approved", "payout_ready", "withdrawal_requested", "payout_approved"]

DEFAULT_PIPELINE: dict[str, Any] = {
    "stages": DEFAULT_STAGES,
    "transitions": DEFAULT_TRANSITIONS,
    "locked": DEFAULT_LOCKED,
    "terminal": DEFAULT_TERMINAL,
    "approval_stage": DEFAULT_APPROVAL_STAGE,
    "resolved": DEFAULT_RESOLVED,
    "wip_limits": {},
    "default_filters": None,
}
