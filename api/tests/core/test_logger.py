"""Unit tests for core.logger module.

Tests the structlog-based logging configuration:
- configure_logging() installs a single stdout handler on the root logger
- Level strings resolve, unknown ones fall back to INFO
- JSON output renders parseable lines
- Noisy third-party loggers are quieted
"""

import json
import logging

import pytest
import structlog

from core.logger import _resolve_level, configure_logging

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _clean_logging():
    """Save and restore root logger and structlog state around each test."""
    root = logging.getLogger()
    original_handlers = root.handlers[:]
    original_level = root.level
    yield
    root.handlers = original_handlers
    root.setLevel(original_level)
    structlog.reset_defaults()


class TestResolveLevel:
    @pytest.mark.parametrize(
        ("level", "expected"),
        [
            ("debug", logging.DEBUG),
            ("WARNING", logging.WARNING),
            (logging.ERROR, logging.ERROR),
            ("nonsense", logging.INFO),
        ],
    )
    def test_levels(self, level, expected):
        assert _resolve_level(level) == expected


class TestConfigureLogging:
    def test_installs_single_handler(self):
        configure_logging("DEBUG")
        root = logging.getLogger()

        assert len(root.handlers) == 1
        assert root.level == logging.DEBUG

    def test_idempotent(self):
        configure_logging()
        configure_logging()
        assert len(logging.getLogger().handlers) == 1

    def test_quiets_third_party(self):
        configure_logging("DEBUG")
        assert logging.getLogger("uvicorn.access").level == logging.WARNING
        assert logging.getLogger("aiosqlite").level == logging.WARNING

    def test_json_output_for_stdlib_records(self):
        configure_logging("INFO", json_output=True)
        formatter = logging.getLogger().handlers[0].formatter
        record = logging.LogRecord(
            name="sqlalchemy.engine",
            level=logging.WARNING,
            pathname="",
            lineno=0,
            msg="pool exhausted",
            args=(),
            exc_info=None,
        )

        parsed = json.loads(formatter.format(record))

        assert parsed["event"] == "pool exhausted"
        assert parsed["level"] == "warning"
        assert parsed["logger"] == "sqlalchemy.engine"
