"""Shared validation functions for all entry points.

Pure functions -- no FastAPI or Click dependencies.
"""

from __future__ import annotations

import unicodedata
from collections.abc import Iterable
from datetime import date, datetime
from typing import Any

from stageflow.errors import ValidationError
from stageflow.risk import RISK_LEVELS
from stageflow.types.core import ProjectFilters

_MAX_ACTOR_LENGTH = 128
_MAX_TITLE_LENGTH = 500
_MAX_TAG_LENGTH = 64


def sanitize_actor(value: Any) -> tuple[str, str | None]:
    """Validate and clean an actor name.

    Returns (cleaned_actor, None) on success or ("", error_message) on failure.
    Strips whitespace, then checks: non-empty, max length, no control/format chars.
    """
    if not isinstance(value, str):
        return ("", "actor must be a string")
    # Reject "\nbad" rather than silently absorbing the newline via strip().
    for ch in value:
        cat = unicodedata.category(ch)
        if cat.startswith("C"):  # Cc (control) and Cf (format)
            return ("", f"actor must not contain control characters (found U+{ord(ch):04X})")
    cleaned = value.strip()
    if not cleaned:
        return ("", "actor must not be empty")
    if len(cleaned) > _MAX_ACTOR_LENGTH:
        return ("", f"actor must be at most {_MAX_ACTOR_LENGTH} characters")
    return (cleaned, None)


def parse_title(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        msg = "Title cannot be empty"
        raise ValidationError(msg)
    if len(value) > _MAX_TITLE_LENGTH:
        msg = f"Title must be at most {_MAX_TITLE_LENGTH} characters"
        raise ValidationError(msg)
    return value.strip()


def parse_due_date(value: Any) -> str | None:
    """Normalize a due date to ISO form. Accepts ``YYYY-MM-DD`` or a full ISO timestamp.

    ``None`` and ``""`` clear the due date.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str):
        msg = f"Due date must be an ISO date string, got {type(value).__name__}"
        raise ValidationError(msg)
    text = value.strip()
    try:
        if len(text) == 10:
            return date.fromisoformat(text).isoformat()
        return datetime.fromisoformat(text).isoformat()
    except ValueError:
        msg = f"Invalid due date '{value}': expected YYYY-MM-DD or an ISO timestamp"
        raise ValidationError(msg) from None


def parse_value_cents(value: Any) -> int:
    """Monetary values are integer minor units. Floats are refused, not rounded."""
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"value_cents must be an integer number of cents, got {value!r}"
        raise ValidationError(msg)
    if value < 0:
        msg = f"value_cents must be non-negative, got {value}"
        raise ValidationError(msg)
    return value


def parse_tags(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list | tuple) or not all(isinstance(t, str) for t in value):
        msg = "tags must be a list of strings"
        raise ValidationError(msg)
    tags: list[str] = []
    for t in value:
        cleaned = t.strip()
        if not cleaned:
            continue
        if len(cleaned) > _MAX_TAG_LENGTH:
            msg = f"Tag '{cleaned[:20]}...' exceeds {_MAX_TAG_LENGTH} characters"
            raise ValidationError(msg)
        if cleaned not in tags:
            tags.append(cleaned)
    return tags


def _string_list(raw: dict[str, Any], key: str) -> list[str] | None:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, str):
        value = [v for v in value.split(",") if v]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        msg = f"Filter '{key}' must be a list of strings"
        raise ValidationError(msg)
    return value


def _optional_bool(raw: dict[str, Any], key: str) -> bool | None:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    if not isinstance(value, bool):
        msg = f"Filter '{key}' must be a boolean"
        raise ValidationError(msg)
    return value


def _optional_int(raw: dict[str, Any], key: str) -> int | None:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = int(value)
        except ValueError:
            msg = f"Filter '{key}' must be an integer"
            raise ValidationError(msg) from None
    return parse_value_cents(value)


_FILTER_KEYS = frozenset(ProjectFilters.__annotations__)


def parse_filters(raw: Any, *, stage_ids: Iterable[str] | None = None) -> ProjectFilters:
    """Coerce a raw predicate bag into ProjectFilters.

    Comma-separated strings are accepted for list filters and ``"true"``/
    ``"false"`` for flags, so CLI options and query strings pass straight
    through. Unknown keys, unknown statuses and unknown risk levels raise
    ``ValidationError``.
    """
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        msg = f"Filters must be an object, got {type(raw).__name__}"
        raise ValidationError(msg)
    unknown = set(raw) - _FILTER_KEYS
    if unknown:
        msg = f"Unknown filter keys: {', '.join(sorted(unknown))}"
        raise ValidationError(msg)

    filters: ProjectFilters = {}
    search = raw.get("search")
    if search is not None:
        if not isinstance(search, str):
            msg = "Filter 'search' must be a string"
            raise ValidationError(msg)
        if search.strip():
            filters["search"] = search.strip()

    statuses = _string_list(raw, "statuses")
    if statuses is not None:
        if stage_ids is not None:
            bad = sorted(set(statuses) - set(stage_ids))
            if bad:
                msg = f"Unknown statuses in filter: {', '.join(bad)}"
                raise ValidationError(msg)
        filters["statuses"] = statuses

    creator_ids = _string_list(raw, "creator_ids")
    if creator_ids is not None:
        filters["creator_ids"] = creator_ids

    tags = _string_list(raw, "tags")
    if tags is not None:
        filters["tags"] = tags

    risk_levels = _string_list(raw, "risk_levels")
    if risk_levels is not None:
        bad = sorted(set(risk_levels) - set(RISK_LEVELS))
        if bad:
            msg = f"Unknown risk levels in filter: {', '.join(bad)}"
            raise ValidationError(msg)
        filters["risk_levels"] = risk_levels

    for key in ("date_from", "date_to"):
        if raw.get(key):
            parsed = parse_due_date(raw[key])
            if parsed is not None:
                filters[key] = parsed  # type: ignore[literal-required]

    for key in ("min_value_cents", "max_value_cents"):
        number = _optional_int(raw, key)
        if number is not None:
            filters[key] = number  # type: ignore[literal-required]

    for key in ("has_files", "has_unread_messages"):
        flag = _optional_bool(raw, key)
        if flag is not None:
            filters[key] = flag  # type: ignore[literal-required]

    return filters
