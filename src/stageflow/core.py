"""SQLite storage for the pipeline engine.

``PipelineDB`` implements the ``PipelineStore`` protocol over a single
SQLite file. Both the CLI and the HTTP adapter reach it through
``PipelineEngine``; nothing else writes to the database.

Convention-based discovery: each workspace has a `.stageflow/` directory
containing `stageflow.db` (SQLite) and `config.json` (id prefix, version).
"""

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import uuid
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from stageflow.db_automation import AutomationMixin
from stageflow.db_base import _dumps, _loads
from stageflow.db_config import ConfigMixin
from stageflow.db_history import HistoryMixin
from stageflow.errors import ConcurrentModificationError, NotFoundError
from stageflow.models import Project
from stageflow.types.core import ProjectFilters, StageflowConfig

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Convention-based discovery
# ---------------------------------------------------------------------------

STAGEFLOW_DIR_NAME = ".stageflow"
DB_FILENAME = "stageflow.db"
CONFIG_FILENAME = "config.json"


def find_stageflow_root(start: Path | None = None) -> Path:
    """Walk up from start (default cwd) looking for .stageflow/ directory.

    Returns the .stageflow/ directory path (not the workspace root).
    """
    current = (start or Path.cwd()).resolve()
    for parent in [current, *current.parents]:
        candidate = parent / STAGEFLOW_DIR_NAME
        if candidate.is_dir():
            return candidate
    msg = f"No {STAGEFLOW_DIR_NAME}/ directory found in {current} or any parent"
    raise FileNotFoundError(msg)


def read_config(stageflow_dir: Path) -> StageflowConfig:
    """Read .stageflow/config.json. Returns defaults if missing or corrupt."""
    defaults = StageflowConfig(prefix="sf", version=1)
    config_path = stageflow_dir / CONFIG_FILENAME
    if not config_path.exists():
        return defaults
    try:
        result: StageflowConfig = json.loads(config_path.read_text())
        return result
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Failed to read %s, using defaults: %s", config_path, exc)
        return defaults


def write_config(stageflow_dir: Path, config: dict[str, Any] | StageflowConfig) -> None:
    """Write .stageflow/config.json."""
    config_path = stageflow_dir / CONFIG_FILENAME
    config_path.write_text(json.dumps(config, indent=2) + "\n")


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS projects (
    id                  TEXT PRIMARY KEY,
    title               TEXT NOT NULL,
    creator_id          TEXT NOT NULL,
    status              TEXT NOT NULL,
    due_date            TEXT,
    value_cents         INTEGER NOT NULL DEFAULT 0,
    tags                TEXT NOT NULL DEFAULT '[]',
    has_unread_messages INTEGER NOT NULL DEFAULT 0,
    files_count         INTEGER NOT NULL DEFAULT 0,
    last_activity_at    TEXT NOT NULL,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL,
    approved_at         TEXT,
    completed_at        TEXT,

    CHECK (value_cents >= 0),
    CHECK (files_count >= 0)
);

CREATE INDEX IF NOT EXISTS idx_projects_status ON projects(status);
CREATE INDEX IF NOT EXISTS idx_projects_due_date ON projects(due_date);
CREATE INDEX IF NOT EXISTS idx_projects_creator ON projects(creator_id);
CREATE INDEX IF NOT EXISTS idx_projects_completed ON projects(completed_at);

CREATE TABLE IF NOT EXISTS stage_history (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id  TEXT NOT NULL REFERENCES projects(id),
    from_stage  TEXT,
    to_stage    TEXT NOT NULL,
    actor       TEXT DEFAULT '',
    note        TEXT DEFAULT '',
    created_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_history_project ON stage_history(project_id, created_at);

CREATE TABLE IF NOT EXISTS pipeline_config (
    id          INTEGER PRIMARY KEY CHECK (id = 1),
    config      TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS pipeline_triggers (
    id                  TEXT PRIMARY KEY,
    name                TEXT NOT NULL,
    enabled             INTEGER NOT NULL DEFAULT 1,
    trigger_type        TEXT NOT NULL,
    trigger_stage       TEXT,
    trigger_days        INTEGER,
    trigger_value_cents INTEGER,
    actions             TEXT NOT NULL DEFAULT '[]',
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS saved_filters (
    id          TEXT PRIMARY KEY,
    user_id     TEXT,
    name        TEXT NOT NULL,
    filters     TEXT NOT NULL DEFAULT '{}',
    is_default  INTEGER NOT NULL DEFAULT 0,
    created_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_saved_filters_user ON saved_filters(user_id);
"""

CURRENT_SCHEMA_VERSION = 1

_PROJECT_COLUMNS = (
    "id, title, creator_id, status, due_date, value_cents, tags, has_unread_messages, files_count, "
    "last_activity_at, created_at, updated_at, approved_at, completed_at"
)


def _build_project(row: sqlite3.Row) -> Project:
    return Project(
        id=row["id"],
        title=row["title"],
        creator_id=row["creator_id"],
        status=row["status"],
        due_date=row["due_date"],
        value_cents=row["value_cents"],
        tags=_loads(row["tags"], []),
        has_unread_messages=bool(row["has_unread_messages"]),
        files_count=row["files_count"],
        last_activity_at=row["last_activity_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        approved_at=row["approved_at"],
        completed_at=row["completed_at"],
    )


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _filter_clause(filters: ProjectFilters) -> tuple[str, list[Any]]:
    """Translate a predicate bag into a WHERE clause. ``risk_levels`` is left to the engine."""
    conditions: list[str] = []
    params: list[Any] = []

    if search := filters.get("search"):
        pattern = f"%{_escape_like(search.lower())}%"
        conditions.append("(LOWER(title) LIKE ? ESCAPE '\\' OR LOWER(creator_id) LIKE ? ESCAPE '\\')")
        params.extend([pattern, pattern])
    if statuses := filters.get("statuses"):
        conditions.append(f"status IN ({','.join('?' * len(statuses))})")
        params.extend(statuses)
    if creator_ids := filters.get("creator_ids"):
        conditions.append(f"creator_id IN ({','.join('?' * len(creator_ids))})")
        params.extend(creator_ids)
    if date_from := filters.get("date_from"):
        conditions.append("due_date IS NOT NULL AND substr(due_date, 1, 10) >= ?")
        params.append(date_from[:10])
    if date_to := filters.get("date_to"):
        conditions.append("due_date IS NOT NULL AND substr(due_date, 1, 10) <= ?")
        params.append(date_to[:10])
    if "min_value_cents" in filters:
        conditions.append("value_cents >= ?")
        params.append(filters["min_value_cents"])
    if "max_value_cents" in filters:
        conditions.append("value_cents <= ?")
        params.append(filters["max_value_cents"])
    if "has_files" in filters:
        conditions.append("files_count > 0" if filters["has_files"] else "files_count = 0")
    if "has_unread_messages" in filters:
        conditions.append("has_unread_messages = ?")
        params.append(int(filters["has_unread_messages"]))
    if tags := filters.get("tags"):
        conditions.append(
            f"EXISTS (SELECT 1 FROM json_each(projects.tags) WHERE json_each.value IN ({','.join('?' * len(tags))}))"
        )
        params.extend(tags)

    where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
    return where, params


# ---------------------------------------------------------------------------
# PipelineDB -- the store
# ---------------------------------------------------------------------------


class PipelineDB(HistoryMixin, ConfigMixin, AutomationMixin):
    """Direct SQLite operations behind the PipelineStore protocol."""

    def __init__(
        self,
        db_path: str | Path,
        *,
        prefix: str = "sf",
        check_same_thread: bool = True,
    ) -> None:
        self.db_path = Path(db_path)
        self.prefix = prefix
        self._conn: sqlite3.Connection | None = None
        self._check_same_thread = check_same_thread
        self._tx_depth = 0

    @classmethod
    def from_project(cls, project_path: Path | None = None) -> PipelineDB:
        """Create a PipelineDB by discovering .stageflow/ from project_path (or cwd)."""
        stageflow_dir = find_stageflow_root(project_path)
        config = read_config(stageflow_dir)
        db = cls(stageflow_dir / DB_FILENAME, prefix=config.get("prefix", "sf"))
        db.initialize()
        return db

    def __enter__(self) -> PipelineDB:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            # Autocommit: transaction() issues BEGIN IMMEDIATE explicitly.
            self._conn = sqlite3.connect(
                str(self.db_path),
                isolation_level=None,
                check_same_thread=self._check_same_thread,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.execute("PRAGMA busy_timeout=5000")
        return self._conn

    def initialize(self) -> None:
        """Create tables on a fresh database and stamp the schema version."""
        current_version = self.get_schema_version()
        if current_version == 0:
            self.conn.executescript(SCHEMA_SQL)
            self.conn.execute(f"PRAGMA user_version = {CURRENT_SCHEMA_VERSION}")
        elif current_version > CURRENT_SCHEMA_VERSION:
            msg = (
                f"Database schema version {current_version} is newer than this stageflow "
                f"supports ({CURRENT_SCHEMA_VERSION}). Upgrade stageflow."
            )
            raise RuntimeError(msg)

    def get_schema_version(self) -> int:
        """Return the current schema version from PRAGMA user_version."""
        result: int = self.conn.execute("PRAGMA user_version").fetchone()[0]
        return result

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """One write transaction taken with BEGIN IMMEDIATE.

        The write lock is held from the first read, so a stage count read
        inside the block cannot go stale before the write. Nested calls join
        the outer transaction.
        """
        if self._tx_depth:
            self._tx_depth += 1
            try:
                yield self.conn
            finally:
                self._tx_depth -= 1
            return

        self.conn.execute("BEGIN IMMEDIATE")
        self._tx_depth = 1
        try:
            yield self.conn
        except BaseException:
            self.conn.rollback()
            raise
        else:
            self.conn.commit()
        finally:
            self._tx_depth = 0

    def _generate_unique_id(self, table: str, infix: str = "") -> str:
        """Generate a unique ID using O(1) EXISTS checks against the PK index.

        *table* is always a hardcoded literal at the call site (never user input).
        """
        sep = f"-{infix}-" if infix else "-"
        for _ in range(10):
            candidate = f"{self.prefix}{sep}{uuid.uuid4().hex[:10]}"
            if self.conn.execute(f"SELECT 1 FROM {table} WHERE id = ?", (candidate,)).fetchone() is None:
                return candidate
        return f"{self.prefix}{sep}{uuid.uuid4().hex[:16]}"

    # -- Projects ------------------------------------------------------------

    def new_project_id(self) -> str:
        return self._generate_unique_id("projects")

    def fetch_project(self, project_id: str) -> Project:
        row = self.conn.execute(f"SELECT {_PROJECT_COLUMNS} FROM projects WHERE id = ?", (project_id,)).fetchone()
        if row is None:
            raise NotFoundError("project", project_id)
        return _build_project(row)

    def fetch_projects_snapshot(self, filters: ProjectFilters | None = None) -> list[Project]:
        """Every project matching ``filters``: due date ascending (undated last), then newest first."""
        where, params = _filter_clause(filters or {})
        rows = self.conn.execute(
            f"SELECT {_PROJECT_COLUMNS} FROM projects{where} "
            "ORDER BY due_date IS NULL, due_date ASC, created_at DESC, id",
            params,
        ).fetchall()
        return [_build_project(r) for r in rows]

    def count_in_stage(self, stage: str) -> int:
        result: int = self.conn.execute("SELECT COUNT(*) FROM projects WHERE status = ?", (stage,)).fetchone()[0]
        return result

    def stage_counts(self) -> dict[str, int]:
        rows = self.conn.execute("SELECT status, COUNT(*) AS cnt FROM projects GROUP BY status").fetchall()
        return {r["status"]: r["cnt"] for r in rows}

    def insert_project(self, project: Project) -> Project:
        self.conn.execute(
            f"INSERT INTO projects ({_PROJECT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                project.id,
                project.title,
                project.creator_id,
                project.status,
                project.due_date,
                project.value_cents,
                _dumps(project.tags),
                int(project.has_unread_messages),
                project.files_count,
                project.last_activity_at,
                project.created_at,
                project.updated_at,
                project.approved_at,
                project.completed_at,
            ),
        )
        return project

    def write_project_stage(
        self,
        project_id: str,
        stage: str,
        expected_prior_stage: str,
        *,
        activity_at: str,
        approved_at: str | None = None,
        completed_at: str | None = None,
    ) -> None:
        """Compare-and-swap the project's stage.

        The UPDATE only matches while the row is still in
        ``expected_prior_stage``; otherwise nothing is written.

        Raises:
            NotFoundError: The project does not exist.
            ConcurrentModificationError: The stage changed since it was read.
        """
        cursor = self.conn.execute(
            "UPDATE projects SET status = ?, last_activity_at = ?, updated_at = ?, "
            "approved_at = COALESCE(?, approved_at), completed_at = COALESCE(?, completed_at) "
            "WHERE id = ? AND status = ?",
            (stage, activity_at, activity_at, approved_at, completed_at, project_id, expected_prior_stage),
        )
        if cursor.rowcount == 0:
            current = self.conn.execute("SELECT status FROM projects WHERE id = ?", (project_id,)).fetchone()
            if current is None:
                raise NotFoundError("project", project_id)
            raise ConcurrentModificationError(project_id, expected_prior_stage, current["status"])

    def write_due_date(self, project_id: str, due_date: str | None, *, updated_at: str) -> None:
        cursor = self.conn.execute(
            "UPDATE projects SET due_date = ?, updated_at = ? WHERE id = ?",
            (due_date, updated_at, project_id),
        )
        if cursor.rowcount == 0:
            raise NotFoundError("project", project_id)

    def touch_activity(self, project_id: str, *, activity_at: str) -> None:
        cursor = self.conn.execute(
            "UPDATE projects SET last_activity_at = ?, updated_at = ? WHERE id = ?",
            (activity_at, activity_at, project_id),
        )
        if cursor.rowcount == 0:
            raise NotFoundError("project", project_id)
