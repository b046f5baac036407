# tests/test_logging.py
"""Tests for structured logging."""

import json
import logging
import sys

from timekeeper.utils.logging import (
    StructuredFormatter,
    configure_structured_logging,
    get_scan_id,
    set_scan_id,
)


def make_record(message: str = "hello %s", args: tuple = ("world",)) -> logging.LogRecord:
    return logging.LogRecord(
        name="timekeeper.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=args,
        exc_info=None,
    )


class TestStructuredFormatter:
    """Tests for StructuredFormatter."""

    def test_json_fields(self):
        """Test the formatted record is JSON with the expected keys."""
        set_scan_id("")

        data = json.loads(StructuredFormatter().format(make_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "timekeeper.test"
        assert data["message"] == "hello world"
        assert "scan_id" not in data

    def test_includes_scan_id(self):
        """Test the current scan correlation ID is attached."""
        set_scan_id("abc123")

        data = json.loads(StructuredFormatter().format(make_record()))

        assert data["scan_id"] == "abc123"
        assert get_scan_id() == "abc123"

    def test_includes_exception(self):
        """Test exception info is rendered."""
        try:
            raise ValueError("bad value")
        except ValueError:
            record = make_record()
            record.exc_info = sys.exc_info()

        data = json.loads(StructuredFormatter().format(record))

        assert "ValueError: bad value" in data["exception"]


class TestConfigureStructuredLogging:
    """Tests for configure_structured_logging."""

    def test_replaces_previous_handler(self):
        """Test repeated configuration installs a single handler."""
        configure_structured_logging(logging.DEBUG)
        configure_structured_logging("WARNING", json_format=False)

        handlers = [h for h in logging.root.handlers if h.get_name() == "timekeeper"]
        try:
            assert len(handlers) == 1
            assert not isinstance(handlers[0].formatter, StructuredFormatter)
            assert logging.root.level == logging.WARNING
            assert logging.getLogger("apscheduler").level == logging.WARNING
        finally:
            for handler in handlers:
                logging.root.removeHandler(handler)
            logging.root.setLevel(logging.WARNING)


class TestPackageExports:
    """Tests for the timekeeper.utils package surface."""

    def test_exports(self):
        """Test the package re-exports exactly the logging helpers in use."""
        import timekeeper.utils as utils

        assert sorted(utils.__all__) == [
            "configure_structured_logging",
            "get_scan_id",
            "set_scan_id",
        ]
        assert not hasattr(utils, "get_logger")
