"""AutomationMixin -- automation trigger rows and saved filters.

Triggers are stored one row per rule with their actions as a JSON array and
re-parsed through ``parse_trigger`` on read, so a row that no longer parses
is skipped with a warning rather than breaking every transition.
"""

from __future__ import annotations

import json
import logging
import sqlite3

from stageflow.db_base import DBMixinProtocol, _dumps, _loads
from stageflow.errors import NotFoundError, ValidationError
from stageflow.models import SavedFilter
from stageflow.triggers import Trigger, parse_trigger

logger = logging.getLogger(__name__)

_TRIGGER_COLUMNS = (
    "id, name, enabled, trigger_type, trigger_stage, trigger_days, trigger_value_cents, actions, created_at, updated_at"
)


def _build_trigger(row: sqlite3.Row) -> Trigger:
    return parse_trigger(
        {
            "id": row["id"],
            "name": row["name"],
            "enabled": bool(row["enabled"]),
            "trigger_type": row["trigger_type"],
            "trigger_stage": row["trigger_stage"],
            "trigger_days": row["trigger_days"],
            "trigger_value_cents": row["trigger_value_cents"],
            "actions": _loads(row["actions"], []),
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }
    )


def _build_saved_filter(row: sqlite3.Row) -> SavedFilter:
    return SavedFilter(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        filters=_loads(row["filters"], {}),
        is_default=bool(row["is_default"]),
        created_at=row["created_at"],
    )


class AutomationMixin(DBMixinProtocol):
    """Trigger and saved-filter CRUD.

    Inherits ``DBMixinProtocol`` for type-safe access to shared attributes.
    """

    # -- Triggers ------------------------------------------------------------

    def new_trigger_id(self) -> str:
        return self._generate_unique_id("pipeline_triggers", "trg")

    def fetch_triggers(self) -> list[Trigger]:
        """All triggers, newest first."""
        rows = self.conn.execute(
            f"SELECT {_TRIGGER_COLUMNS} FROM pipeline_triggers ORDER BY created_at DESC, id"
        ).fetchall()
        triggers: list[Trigger] = []
        for row in rows:
            try:
                triggers.append(_build_trigger(row))
            except (ValidationError, json.JSONDecodeError) as exc:
                logger.warning("Skipping unreadable trigger %s: %s", row["id"], exc, extra={"trigger_id": row["id"]})
        return triggers

    def fetch_trigger(self, trigger_id: str) -> Trigger:
        row = self.conn.execute(
            f"SELECT {_TRIGGER_COLUMNS} FROM pipeline_triggers WHERE id = ?", (trigger_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError("trigger", trigger_id)
        return _build_trigger(row)

    def insert_trigger(self, trigger: Trigger) -> Trigger:
        self.conn.execute(
            f"INSERT INTO pipeline_triggers ({_TRIGGER_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                trigger.id,
                trigger.name,
                int(trigger.enabled),
                trigger.trigger_type,
                trigger.trigger_stage,
                trigger.trigger_days,
                trigger.trigger_value_cents,
                _dumps([a.to_dict() for a in trigger.actions]),
                trigger.created_at,
                trigger.updated_at,
            ),
        )
        return trigger

    def replace_trigger(self, trigger: Trigger) -> Trigger:
        cursor = self.conn.execute(
            "UPDATE pipeline_triggers SET name = ?, enabled = ?, trigger_type = ?, trigger_stage = ?, "
            "trigger_days = ?, trigger_value_cents = ?, actions = ?, updated_at = ? WHERE id = ?",
            (
                trigger.name,
                int(trigger.enabled),
                trigger.trigger_type,
                trigger.trigger_stage,
                trigger.trigger_days,
                trigger.trigger_value_cents,
                _dumps([a.to_dict() for a in trigger.actions]),
                trigger.updated_at,
                trigger.id,
            ),
        )
        if cursor.rowcount == 0:
            raise NotFoundError("trigger", trigger.id)
        return trigger

    def delete_trigger(self, trigger_id: str) -> None:
        cursor = self.conn.execute("DELETE FROM pipeline_triggers WHERE id = ?", (trigger_id,))
        if cursor.rowcount == 0:
            raise NotFoundError("trigger", trigger_id)

    # -- Saved filters -------------------------------------------------------

    def new_saved_filter_id(self) -> str:
        return self._generate_unique_id("saved_filters", "flt")

    def fetch_saved_filters(self, user_id: str | None = None) -> list[SavedFilter]:
        """Shared filters plus ``user_id``'s own, defaults first, newest first."""
        rows = self.conn.execute(
            "SELECT id, user_id, name, filters, is_default, created_at FROM saved_filters "
            "WHERE user_id IS NULL OR user_id = ? "
            "ORDER BY is_default DESC, created_at DESC, id",
            (user_id,),
        ).fetchall()
        return [_build_saved_filter(r) for r in rows]

    def insert_saved_filter(self, saved: SavedFilter) -> SavedFilter:
        self.conn.execute(
            "INSERT INTO saved_filters (id, user_id, name, filters, is_default, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (saved.id, saved.user_id, saved.name, _dumps(saved.filters), int(saved.is_default), saved.created_at),
        )
        return saved

    def delete_saved_filter(self, filter_id: str, *, user_id: str | None = None) -> None:
        """Delete a shared filter or one owned by ``user_id``. Anyone else's is reported as not found."""
        cursor = self.conn.execute(
            "DELETE FROM saved_filters WHERE id = ? AND (user_id IS NULL OR user_id = ?)",
            (filter_id, user_id),
        )
        if cursor.rowcount == 0:
            raise NotFoundError("saved filter", filter_id)
