"""Tests for Toolgate structured logging."""

import json
import logging

from toolgate.logging import ToolgateFormatter, configure_logging, get_logger


def _record(name="toolgate", level=logging.INFO, msg="Tool executed"):
    return logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )


class TestToolgateFormatter:
    def test_human_readable_format(self):
        output = ToolgateFormatter(json_output=False).format(_record("toolgate.runner"))
        assert "toolgate.runner" in output
        assert "Tool executed" in output
        assert "INFO" in output

    def test_json_format(self):
        formatter = ToolgateFormatter(json_output=True)
        data = json.loads(formatter.format(_record("toolgate.security", logging.WARNING, "Policy denied")))
        assert data["logger"] == "toolgate.security"
        assert data["message"] == "Policy denied"
        assert data["level"] == "WARNING"
        assert "timestamp" in data

    def test_extra_fields_in_human_format(self):
        record = _record()
        record.tool_id = "fs.read"  # type: ignore[attr-defined]
        record.correlation_id = "tr-123"  # type: ignore[attr-defined]
        output = ToolgateFormatter(json_output=False).format(record)
        assert "tool_id=fs.read" in output
        assert "correlation_id=tr-123" in output

    def test_extra_fields_in_json(self):
        record = _record()
        record.risk_score = 35  # type: ignore[attr-defined]
        data = json.loads(ToolgateFormatter(json_output=True).format(record))
        assert data["risk_score"] == 35

    def test_none_extras_are_dropped(self):
        record = _record()
        record.session_id = None  # type: ignore[attr-defined]
        data = json.loads(ToolgateFormatter(json_output=True).format(record))
        assert "session_id" not in data


class TestGetLogger:
    def test_returns_logger(self):
        logger = get_logger("toolgate.test")
        assert isinstance(logger, logging.Logger)
        assert logger.name == "toolgate.test"

    def test_default_name(self):
        assert get_logger().name == "toolgate"


class TestConfigureLogging:
    def test_configure_info(self):
        configure_logging(level="INFO")
        assert get_logger("toolgate").level == logging.INFO

    def test_configure_debug(self):
        configure_logging(level="DEBUG")
        assert get_logger("toolgate").level == logging.DEBUG

    def test_configure_json(self):
        configure_logging(json_output=True)
        logger = get_logger("toolgate")
        assert len(logger.handlers) == 1
        formatter = logger.handlers[0].formatter
        assert isinstance(formatter, ToolgateFormatter)
        assert formatter._json_output is True

        configure_logging(json_output=False)
