"""HistoryMixin -- the append-only stage history log.

All methods access ``self.conn`` via Python's MRO when composed into
``PipelineDB``. History rows are never updated or deleted.
"""

from __future__ import annotations

import sqlite3

from stageflow.db_base import DBMixinProtocol
from stageflow.models import StageHistoryEntry


def _build_history_entry(row: sqlite3.Row) -> StageHistoryEntry:
    return StageHistoryEntry(
        id=row["id"],
        project_id=row["project_id"],
        from_stage=row["from_stage"],
        to_stage=row["to_stage"],
        actor=row["actor"] or "",
        note=row["note"] or "",
        created_at=row["created_at"],
    )


class HistoryMixin(DBMixinProtocol):
    """Stage history append and read.

    Inherits ``DBMixinProtocol`` for type-safe access to shared attributes.
    """

    def append_history(self, entry: StageHistoryEntry) -> StageHistoryEntry:
        cursor = self.conn.execute(
            "INSERT INTO stage_history (project_id, from_stage, to_stage, actor, note, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (entry.project_id, entry.from_stage, entry.to_stage, entry.actor, entry.note, entry.created_at),
        )
        rowid = cursor.lastrowid
        if rowid is None:  # pragma: no cover -- INSERT always sets lastrowid
            msg = "INSERT did not produce a lastrowid"
            raise RuntimeError(msg)
        return StageHistoryEntry(
            id=rowid,
            project_id=entry.project_id,
            from_stage=entry.from_stage,
            to_stage=entry.to_stage,
            actor=entry.actor,
            note=entry.note,
            created_at=entry.created_at,
        )

    def fetch_history(self, project_id: str) -> list[StageHistoryEntry]:
        """Oldest first. Ties on timestamp keep insertion order."""
        rows = self.conn.execute(
            "SELECT id, project_id, from_stage, to_stage, actor, note, created_at "
            "FROM stage_history WHERE project_id = ? ORDER BY created_at ASC, id ASC",
            (project_id,),
        ).fetchall()
        return [_build_history_entry(r) for r in rows]

    def fetch_recent_history(self, *, limit: int = 50) -> list[StageHistoryEntry]:
        """Newest first, across all projects."""
        rows = self.conn.execute(
            "SELECT id, project_id, from_stage, to_stage, actor, note, created_at "
            "FROM stage_history ORDER BY created_at DESC, id DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [_build_history_entry(r) for r in rows]
