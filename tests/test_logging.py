"""Tests for structured logging."""

from __future__ import annotations

import json
import logging
from collections.abc import Generator
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from stageflow.logging import setup_logging


@pytest.fixture(autouse=True)
def _detach_file_handlers() -> Generator[None, None, None]:
    yield
    logger = logging.getLogger("stageflow")
    for h in logger.handlers[:]:
        if isinstance(h, RotatingFileHandler):
            logger.removeHandler(h)
            h.close()


def _last_record(path: Path) -> dict[str, object]:
    return json.loads(path.read_text().strip().split("\n")[-1])


class TestSetupLogging:
    def test_creates_log_file(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        logger.info("moved", extra={"project_id": "sf-1", "actor": "alice", "stage": "submitted"})
        for handler in logger.handlers:
            handler.flush()
        record = _last_record(tmp_path / "stageflow.log")
        assert record["msg"] == "moved"
        assert record["level"] == "INFO"
        assert record["project_id"] == "sf-1"
        assert record["actor"] == "alice"
        assert record["stage"] == "submitted"

    def test_child_loggers_propagate(self, tmp_path: Path) -> None:
        setup_logging(tmp_path)
        logging.getLogger("stageflow.engine").warning("slow sweep", extra={"duration_ms": 12.5})
        for handler in logging.getLogger("stageflow").handlers:
            handler.flush()
        record = _last_record(tmp_path / "stageflow.log")
        assert record["logger"] == "stageflow.engine"
        assert record["duration_ms"] == 12.5

    def test_exception_text_included(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        try:
            raise RuntimeError("dispatcher down")
        except RuntimeError:
            logger.exception("dispatch failed")
        for handler in logger.handlers:
            handler.flush()
        assert _last_record(tmp_path / "stageflow.log")["exception"] == "dispatcher down"

    def test_idempotent_setup(self, tmp_path: Path) -> None:
        logger1 = setup_logging(tmp_path)
        logger2 = setup_logging(tmp_path)
        assert logger1 is logger2
        assert len([h for h in logger1.handlers if isinstance(h, RotatingFileHandler)]) == 1

    def test_new_directory_replaces_handler(self, tmp_path: Path) -> None:
        first, second = tmp_path / "a", tmp_path / "b"
        first.mkdir()
        second.mkdir()
        setup_logging(first)
        logger = setup_logging(second)
        handlers = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]
        assert len(handlers) == 1
        assert handlers[0].baseFilename == str((second / "stageflow.log").absolute())
