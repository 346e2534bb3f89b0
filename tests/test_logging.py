"""Tests for logging setup and contextual records."""

from __future__ import annotations

import logging
import sys

import orjson
import pytest

from distcron.core.logging import (
    JSONFormatter,
    get_contextual_logger,
    get_logger,
    setup_logging,
)


@pytest.fixture
def restore_distcron_logger():
    logger = logging.getLogger("distcron")
    level, handlers = logger.level, list(logger.handlers)
    yield
    for handler in logger.handlers:
        handler.close()
    logger.handlers = handlers
    logger.setLevel(level)


def test_get_logger_prefixes_name():
    assert get_logger("locks").name == "distcron.locks"
    assert get_logger().name == "distcron"


def test_contextual_logger_adds_job_and_lock_key():
    adapter = get_contextual_logger("scheduler", job="nightly report", lock_key="LOCK_nightly report")

    _, kwargs = adapter.process("msg", {})

    assert kwargs["extra"] == {"job": "nightly report", "lock_key": "LOCK_nightly report"}


def test_contextual_logger_adds_environment():
    adapter = get_contextual_logger("scheduler", job="nightly", environment="prod")

    _, kwargs = adapter.process("msg", {"extra": {"attempt": 2}})

    assert kwargs["extra"] == {"attempt": 2, "job": "nightly", "environment": "prod"}


def test_json_formatter_includes_context_and_exception():
    record = logging.LogRecord("distcron.scheduler", logging.ERROR, __file__, 1, "run %s failed", ("x",), None)
    record.job = "x"
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record.exc_info = sys.exc_info()

    data = orjson.loads(JSONFormatter().format(record))

    assert data["level"] == "ERROR"
    assert data["logger"] == "distcron.scheduler"
    assert data["message"] == "run x failed"
    assert data["job"] == "x"
    assert "RuntimeError: boom" in data["exception"]
    assert "lock_key" not in data


def test_setup_logging_writes_json_lines(tmp_path, restore_distcron_logger):
    log_file = tmp_path / "logs" / "distcron.log"
    setup_logging(level="DEBUG", log_file=log_file, rich_console=False)

    get_contextual_logger("scheduler", job="nightly").info("Started run")
    for handler in logging.getLogger("distcron").handlers:
        handler.flush()

    [line] = log_file.read_text(encoding="utf-8").splitlines()
    data = orjson.loads(line)
    assert data["message"] == "Started run"
    assert data["job"] == "nightly"


def test_setup_logging_replaces_handlers(restore_distcron_logger):
    setup_logging(level="WARNING", rich_console=True)
    setup_logging(level="WARNING", rich_console=False)

    logger = logging.getLogger("distcron")
    assert len(logger.handlers) == 1
    assert logger.level == logging.WARNING
