"""JSON and text log formatters.

Both formatters tag every entry with the emitting thread, since a
session always runs two: the receive loop and the session driver.
"""

import json
import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Dict


class StructuredFormatter(logging.Formatter):
    """JSON log formatter.

    Produces one JSON object per entry with:
    - ISO 8601 timestamp
    - Log level
    - Logger name
    - Thread name
    - Message
    - Extra fields passed via ``extra=``
    - Exception info

    Example output:
        {
            "timestamp": "2026-01-15T10:30:45.123456+00:00",
            "level": "WARNING",
            "logger": "fotalink.modem.transfer",
            "thread": "MainThread",
            "message": "Chunk at offset 4096 failed; retry 1/5",
            "offset": 4096
        }
    """

    # LogRecord attributes that are never copied as extra fields
    STANDARD_FIELDS = {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }

    def __init__(
        self,
        include_source_location: bool = False,
    ) -> None:
        """Initialize the structured formatter.

        Args:
            include_source_location: Include file, function, and line number.
        """
        super().__init__()
        self.include_source_location = include_source_location

    def format(self, record: logging.LogRecord) -> str:
        log_entry = self._build_log_entry(record)
        return json.dumps(log_entry, default=self._json_serializer)

    def _build_log_entry(self, record: logging.LogRecord) -> Dict[str, Any]:
        entry: Dict[str, Any] = {
            "timestamp": self._format_timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        if self.include_source_location:
            entry["source"] = {
                "file": record.filename,
                "function": record.funcName,
                "line": record.lineno,
            }

        if record.exc_info:
            entry["exception"] = self._format_exception(record)

        for key, value in record.__dict__.items():
            if key not in self.STANDARD_FIELDS and not key.startswith("_"):
                entry[key] = value

        return entry

    def _format_timestamp(self, record: logging.LogRecord) -> str:
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return dt.isoformat(timespec="microseconds")

    def _format_exception(self, record: logging.LogRecord) -> Dict[str, Any]:
        exc_type, exc_value, exc_tb = record.exc_info
        return {
            "type": exc_type.__name__ if exc_type else None,
            "message": str(exc_value) if exc_value else None,
            "traceback": traceback.format_exception(exc_type, exc_value, exc_tb)
            if exc_tb
            else None,
        }

    def _json_serializer(self, obj: Any) -> str:
        """Serialize objects that aren't JSON-serializable."""
        if isinstance(obj, (bytes, bytearray)):
            return obj.hex()
        return str(obj)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter.

    Produces log entries in traditional text format:
        2026-01-15T10:30:45.123Z INFO     [fotalink.modem.session] [MainThread] Running profile
    """

    def __init__(self, include_source_location: bool = False) -> None:
        super().__init__()
        self.include_source_location = include_source_location

    def format(self, record: logging.LogRecord) -> str:
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        timestamp = dt.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"

        parts = [
            timestamp,
            record.levelname.ljust(8),
            f"[{record.name}]",
            f"[{record.threadName}]",
        ]

        if self.include_source_location:
            parts.append(f"[{record.filename}:{record.lineno}]")

        parts.append(record.getMessage())

        result = " ".join(parts)

        if record.exc_info:
            result += "\n" + self.formatException(record.exc_info)

        return result
