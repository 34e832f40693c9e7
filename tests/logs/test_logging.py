"""Unit tests for log formatting and the logger manager."""

import json
import logging
import sys

import pytest

from fotalink.config import LoggingConfig
from fotalink.logs.manager import LoggerManager, get_logger
from fotalink.logs.structured import StructuredFormatter, TextFormatter


def make_record(msg="Chunk at offset %d failed", args=(4096,), level=logging.WARNING,
                exc_info=None):
    return logging.LogRecord(
        name="fotalink.modem.transfer",
        level=level,
        pathname="transfer.py",
        lineno=42,
        msg=msg,
        args=args,
        exc_info=exc_info,
    )


class TestStructuredFormatter:
    """Tests for StructuredFormatter."""

    @pytest.fixture
    def formatter(self):
        return StructuredFormatter()

    def test_format_basic_message(self, formatter):
        data = json.loads(formatter.format(make_record()))

        assert data["level"] == "WARNING"
        assert data["logger"] == "fotalink.modem.transfer"
        assert data["message"] == "Chunk at offset 4096 failed"
        assert data["thread"] == "MainThread"
        assert data["timestamp"].endswith("+00:00")

    def test_extra_fields(self, formatter):
        record = make_record()
        record.offset = 4096
        record.attempt = 2

        data = json.loads(formatter.format(record))

        assert data["offset"] == 4096
        assert data["attempt"] == 2

    def test_bytes_serialized_as_hex(self, formatter):
        record = make_record()
        record.segment = b"\x00\xff"
        assert json.loads(formatter.format(record))["segment"] == "00ff"

    def test_source_location(self):
        formatter = StructuredFormatter(include_source_location=True)
        data = json.loads(formatter.format(make_record()))
        assert data["source"]["line"] == 42
        assert data["source"]["file"] == "transfer.py"

    def test_exception_info(self, formatter):
        try:
            raise TimeoutError("no OK")
        except TimeoutError:
            exc_info = sys.exc_info()

        data = json.loads(formatter.format(make_record("Step failed", (), logging.ERROR, exc_info)))

        assert data["exception"]["type"] == "TimeoutError"
        assert data["exception"]["message"] == "no OK"
        assert data["exception"]["traceback"]


class TestTextFormatter:
    """Tests for TextFormatter."""

    def test_format_basic_message(self):
        output = TextFormatter().format(make_record())

        assert "WARNING" in output
        assert "[fotalink.modem.transfer]" in output
        assert "[MainThread]" in output
        assert output.endswith("Chunk at offset 4096 failed")

    def test_source_location(self):
        output = TextFormatter(include_source_location=True).format(make_record())
        assert "[transfer.py:42]" in output


class TestLoggerManager:
    """Tests for LoggerManager."""

    @pytest.fixture
    def manager(self, tmp_path):
        config = LoggingConfig(level="INFO", format="json",
                               output_file=str(tmp_path / "fotalink.log"))
        mgr = LoggerManager(config)
        yield mgr
        if mgr.is_configured:
            mgr.shutdown()

    def test_configure_writes_json_to_file(self, manager, tmp_path):
        manager.configure()
        manager.get_logger("modem.session").info("Running profile", extra={"steps": 16})
        manager.shutdown()

        line = (tmp_path / "fotalink.log").read_text().strip()
        data = json.loads(line)
        assert data["logger"] == "fotalink.modem.session"
        assert data["steps"] == 16

    def test_configure_idempotent(self, manager):
        manager.configure()
        manager.configure()
        assert manager.is_configured
        assert len(logging.getLogger("fotalink").handlers) == 1

    def test_shutdown_restores_propagation(self, manager):
        manager.configure()
        assert logging.getLogger("fotalink").propagate is False
        manager.shutdown()
        assert logging.getLogger("fotalink").propagate is True
        assert not manager.is_configured

    def test_get_logger_prefix(self, manager):
        assert manager.get_logger("cli").name == "fotalink.cli"
        assert manager.get_logger("fotalink.cli").name == "fotalink.cli"
        assert manager.get_logger("cli") is logging.getLogger("fotalink.cli")

    def test_set_level(self, manager):
        manager.configure()
        manager.set_level("test_component", "DEBUG")
        assert logging.getLogger("fotalink.test_component").level == logging.DEBUG
        logging.getLogger("fotalink.test_component").setLevel(logging.NOTSET)

    def test_component_levels_applied_and_reset(self, tmp_path):
        config = LoggingConfig(
            output_file=str(tmp_path / "fotalink.log"),
            component_levels={"modem.transfer": "DEBUG"},
        )
        manager = LoggerManager(config)
        component = logging.getLogger("fotalink.modem.transfer")

        manager.configure()
        try:
            assert component.level == logging.DEBUG
            assert logging.getLogger("fotalink").level == logging.INFO
        finally:
            manager.shutdown()

        assert component.level == logging.NOTSET

    def test_text_format(self):
        manager = LoggerManager(LoggingConfig(format="text"))
        manager.configure()
        try:
            assert isinstance(manager._formatter, TextFormatter)
        finally:
            manager.shutdown()


def test_get_logger_function():
    assert get_logger("modem").name == "fotalink.modem"
    assert get_logger("fotalink.modem").name == "fotalink.modem"
