"""Shared utilities and Protocol for PipelineDB mixins."""

from __future__ import annotations

import json
import sqlite3
from contextlib import AbstractContextManager
from pathlib import Path
from typing import Any, Protocol


def _dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def _loads(text: str | None, default: Any) -> Any:
    if not text:
        return default
    return json.loads(text)


class DBMixinProtocol(Protocol):
    """Shared attributes and methods that DB mixins access via self.

    Mixins inherit this Protocol so mypy can type-check self.conn,
    self.transaction(), etc. without ``type: ignore`` on every call.
    Actual implementations are provided by PipelineDB at composition time.
    """

    db_path: Path
    prefix: str
    _conn: sqlite3.Connection | None

    @property
    def conn(self) -> sqlite3.Connection: ...

    def transaction(self) -> AbstractContextManager[sqlite3.Connection]: ...

    def _generate_unique_id(self, table: str, infix: str = "") -> str: ...
