"""Tests for setup_logging — renderer selection, context binding, noisy loggers."""

from __future__ import annotations

import io
import json
import logging
from collections.abc import Iterator

import pytest
import structlog

from alertops.core.config import LoggingConfig
from alertops.core.logging import setup_logging


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSetupLogging:
    def test_json_records(self) -> None:
        buf = io.StringIO()
        setup_logging(fmt="json", config=LoggingConfig(), stream=buf, instance="node-1")
        structlog.get_logger("alertops.test").info("alert_created", alert_id="a1")

        record = json.loads(buf.getvalue().strip().splitlines()[-1])
        assert record["event"] == "alert_created"
        assert record["alert_id"] == "a1"
        assert record["level"] == "info"
        assert record["logger"] == "alertops.test"
        assert record["instance"] == "node-1"
        assert "timestamp" in record

    def test_level_filters(self) -> None:
        buf = io.StringIO()
        setup_logging(level="WARNING", fmt="json", config=LoggingConfig(), stream=buf)
        log = structlog.get_logger("alertops.test")
        log.info("quiet")
        log.warning("loud")
        out = buf.getvalue()
        assert "quiet" not in out
        assert "loud" in out

    def test_stdlib_records_share_renderer(self) -> None:
        buf = io.StringIO()
        setup_logging(fmt="json", config=LoggingConfig(), stream=buf)
        logging.getLogger("thirdparty").warning("plain stdlib message")
        record = json.loads(buf.getvalue().strip().splitlines()[-1])
        assert record["event"] == "plain stdlib message"

    def test_http_client_loggers_quieted(self) -> None:
        setup_logging(level="DEBUG", config=LoggingConfig(), stream=io.StringIO())
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("aiohttp.access").level == logging.WARNING

    def test_console_format(self) -> None:
        buf = io.StringIO()
        setup_logging(fmt="console", config=LoggingConfig(), stream=buf)
        structlog.get_logger("alertops.test").info("console_event")
        assert "console_event" in buf.getvalue()
