"""Unit tests for structured logging."""

import json
import logging
import sys
from datetime import datetime
from io import StringIO

from pve_pact.logging import StructuredLogger, logger
from pve_pact.models import DistroStage


def make_record(msg="Test message", level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="test",
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


class TestStructuredLogger:
    """Test StructuredLogger class."""

    def test_default_level(self):
        assert StructuredLogger("test_default").logger.level == logging.INFO

    def test_custom_level(self):
        test_logger = StructuredLogger("test_custom", level=logging.DEBUG)
        assert test_logger.logger.level == logging.DEBUG

    def test_single_json_handler(self):
        StructuredLogger("test_clear")
        test_logger = StructuredLogger("test_clear")
        assert len(test_logger.logger.handlers) == 1
        assert isinstance(
            test_logger.logger.handlers[0].formatter, StructuredLogger.JsonFormatter
        )

    def test_does_not_propagate(self):
        assert StructuredLogger("test_propagate").logger.propagate is False

    def test_writes_to_stderr_by_default(self):
        handler = StructuredLogger("test_stderr").logger.handlers[0]
        assert handler.stream is sys.stderr

    def test_set_level_by_name(self):
        test_logger = StructuredLogger("test_set_level")
        test_logger.set_level("debug")
        assert test_logger.logger.level == logging.DEBUG
        test_logger.set_level(logging.ERROR)
        assert test_logger.logger.level == logging.ERROR

    def test_set_level_unknown_name_falls_back_to_info(self):
        test_logger = StructuredLogger("test_set_level_unknown", level=logging.ERROR)
        test_logger.set_level("chatty")
        assert test_logger.logger.level == logging.INFO

    def test_module_logger(self):
        assert logger.logger.name == "pve_pact"


class TestJsonFormatter:
    """Test JsonFormatter class."""

    def test_basic_record(self):
        data = json.loads(StructuredLogger.JsonFormatter().format(make_record()))
        assert data["message"] == "Test message"
        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert isinstance(datetime.fromisoformat(data["timestamp"]), datetime)

    def test_exception(self):
        try:
            raise ValueError("Test exception")
        except ValueError:
            record = make_record("Error occurred", logging.ERROR, sys.exc_info())
        data = json.loads(StructuredLogger.JsonFormatter().format(record))
        assert "ValueError" in data["exception"]

    def test_extra_fields(self):
        record = make_record()
        record.distro = "debian12"
        record.vmid = 802
        data = json.loads(StructuredLogger.JsonFormatter().format(record))
        assert data["distro"] == "debian12"
        assert data["vmid"] == 802

    def test_enum_and_unserializable_values(self):
        record = make_record()
        record.stage = DistroStage.LIFECYCLE_CHECKED
        record.started = datetime(2025, 1, 2, 3, 4, 5)
        data = json.loads(StructuredLogger.JsonFormatter().format(record))
        assert data["stage"] == "lifecycle_checked"
        assert data["started"] == "2025-01-02 03:04:05"


class TestStructuredLoggerMethods:
    """Test StructuredLogger logging methods."""

    def setup_method(self):
        self.stream = StringIO()
        self.test_logger = StructuredLogger(
            "test_methods", level=logging.DEBUG, stream=self.stream
        )

    def last_entry(self):
        return json.loads(self.stream.getvalue().strip().split("\n")[-1])

    def test_info_with_kwargs(self):
        self.test_logger.info("Base template ready", distro="rocky9", vmid=831)
        data = self.last_entry()
        assert data["level"] == "INFO"
        assert data["distro"] == "rocky9"
        assert data["vmid"] == 831

    def test_warning(self):
        self.test_logger.warning("Could not destroy VMID 802", vmid=802)
        assert self.last_entry()["level"] == "WARNING"

    def test_debug(self):
        self.test_logger.debug("qm status 802")
        assert self.last_entry()["level"] == "DEBUG"

    def test_error_with_exc_info(self):
        try:
            raise RuntimeError("Test error")
        except RuntimeError:
            self.test_logger.error("Error occurred", exc_info=True)
        data = self.last_entry()
        assert data["level"] == "ERROR"
        assert "RuntimeError" in data["exception"]

    def test_critical(self):
        self.test_logger.critical("Giving up", exc_info=False)
        assert self.last_entry()["level"] == "CRITICAL"

    def test_level_filters(self):
        self.test_logger.set_level("WARNING")
        self.test_logger.info("hidden")
        assert self.stream.getvalue() == ""
