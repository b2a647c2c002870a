"""ConfigMixin -- the singleton pipeline configuration row.

When no row exists the built-in pipeline is returned; nothing is written
until an administrator saves a configuration.
"""

from __future__ import annotations

import json
import logging

from stageflow.config import PipelineConfig, config_from_dict, default_config
from stageflow.db_base import DBMixinProtocol, _dumps
from stageflow.errors import ValidationError

logger = logging.getLogger(__name__)


class ConfigMixin(DBMixinProtocol):
    """Pipeline configuration persistence.

    Inherits ``DBMixinProtocol`` for type-safe access to shared attributes.
    """

    def fetch_config(self) -> PipelineConfig:
        row = self.conn.execute("SELECT config FROM pipeline_config WHERE id = 1").fetchone()
        if row is None:
            return default_config()
        try:
            raw = json.loads(row["config"])
        except json.JSONDecodeError as exc:
            msg = f"Stored pipeline config is not valid JSON: {exc}"
            raise ValidationError(msg) from exc
        return config_from_dict(raw)

    def save_config(self, config: PipelineConfig, *, now: str) -> None:
        self.conn.execute(
            "INSERT INTO pipeline_config (id, config, updated_at) VALUES (1, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET config = excluded.config, updated_at = excluded.updated_at",
            (_dumps(config.to_dict()), now),
        )
        logger.info("Pipeline config saved (%d stages)", len(config.stages))
