"""Custom exceptions for the modem session engine.

This module defines the exception hierarchy for serial transport,
response framing, chunked transfer and firmware-update errors,
including +CME ERROR code lookup for chunk failures.
"""

import re
from typing import Optional


class ModemError(Exception):
    """Base exception for all modem session errors."""

    pass


class SerialPortError(ModemError):
    """Raised for serial port communication errors."""

    def __init__(self, port: str, message: str, cause: Optional[Exception] = None):
        self.port = port
        self.cause = cause
        super().__init__(f"Serial port error on {port}: {message}")


class PortUnavailableError(SerialPortError):
    """Raised when the serial device cannot be opened."""


class ConfigurationRejectedError(SerialPortError):
    """Raised when the device refuses the requested line settings."""


class WriteError(ModemError):
    """Base class for failed writes to the modem."""

    def __init__(self, message: str, expected: int = 0, written: int = 0):
        self.expected = expected
        self.written = written
        super().__init__(message)


class WriteTimeoutError(WriteError):
    """Raised when a write (or output drain) does not complete in time."""

    def __init__(self, timeout: float, expected: int = 0, written: int = 0):
        self.timeout = timeout
        super().__init__(
            f"Write of {expected} bytes did not complete within {timeout}s",
            expected,
            written,
        )


class WriteShortError(WriteError):
    """Raised when the driver accepted fewer bytes than requested."""

    def __init__(self, expected: int, written: int):
        super().__init__(
            f"Short write: {written} of {expected} bytes accepted",
            expected,
            written,
        )


class ReadTimeoutError(ModemError):
    """No data arrived within a read window.

    Soft condition: the receive loop absorbs it and keeps polling.
    """

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"No data within {timeout}s")


class PatternTimeoutError(ModemError):
    """Raised when an expected response never arrives within its budget."""

    def __init__(self, expected: str, timeout: float, command: Optional[str] = None):
        self.expected = expected
        self.timeout = timeout
        self.command = command
        prefix = f"'{command}': " if command else ""
        super().__init__(f"{prefix}no {expected!r} within {timeout}s")


class ProtocolDesyncError(ModemError):
    """Raised when the text/binary framing can no longer be trusted.

    Never retried: once a binary boundary is misread, every later line and
    pattern search on the session is suspect.
    """

    def __init__(self, message: str, line: Optional[bytes] = None):
        self.line = line
        super().__init__(message)


class TransferError(ModemError):
    """Base exception for download/upload failures."""

    pass


# CME Error codes lookup table (subset relevant to HTTP/FOTA operations)
# Reference: 3GPP TS 27.007
CME_ERRORS = {
    0: "Phone failure",
    3: "Operation not allowed",
    4: "Operation not supported",
    10: "SIM not inserted",
    13: "SIM failure",
    14: "SIM busy",
    20: "Memory full",
    23: "Memory failure",
    30: "No network service",
    31: "Network timeout",
    50: "Incorrect parameters",
    100: "Unknown error",
}

_CME_PATTERN = re.compile(r"\+CME ERROR:\s*(\d+)")


class ChunkError(TransferError):
    """A single chunk request failed; retryable within the offset budget."""

    def __init__(self, offset: int, line: str = "", code: Optional[int] = None):
        self.offset = offset
        self.line = line
        self.code = code
        if code is not None:
            self.error_message = CME_ERRORS.get(code, "Unknown CME error")
            detail = f"+CME ERROR {code}: {self.error_message}"
        else:
            self.error_message = line or "no data"
            detail = self.error_message
        super().__init__(f"Chunk at offset {offset} failed: {detail}")

    @classmethod
    def from_line(cls, offset: int, line: str) -> "ChunkError":
        """Build a ChunkError from an error control line."""
        match = _CME_PATTERN.search(line)
        code = int(match.group(1)) if match else None
        return cls(offset, line, code)


class RetryBudgetExhaustedError(TransferError):
    """Raised when an offset keeps failing after all permitted retries."""

    def __init__(self, offset: int, attempts: int, last_error: Optional[ChunkError] = None):
        self.offset = offset
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Giving up at offset {offset} after {attempts} attempts"
            + (f": {last_error}" if last_error else "")
        )


class UpdateTimeoutError(ModemError):
    """Raised when a firmware update does not reach the ready state.

    Either the ceiling passed, or (with rebooted set) the module came back
    up without ever reporting success.
    """

    def __init__(
        self,
        timeout: float,
        success_seen: bool,
        last_progress: int = -1,
        rebooted: bool = False,
    ):
        self.timeout = timeout
        self.success_seen = success_seen
        self.last_progress = last_progress
        self.rebooted = rebooted
        if rebooted:
            summary = f"Firmware update failed after {timeout:.1f}s"
            reason = "module rebooted without reporting update success"
        else:
            summary = f"Firmware update timed out after {timeout}s"
            if success_seen:
                reason = "update succeeded but the module never reported ready"
            else:
                reason = "update success was never reported"
        super().__init__(f"{summary}: {reason} (last progress {last_progress})")
