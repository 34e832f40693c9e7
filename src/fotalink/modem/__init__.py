"""Serial session engine for cellular modules.

This package drives AT-command sessions over a serial port: a background
receive thread feeds a bounded ring buffer, a frame reader pulls text
lines and length-announced binary segments out of it, and the transfer
and update layers build chunked downloads, bulk uploads and the
firmware-update window on top.

Features:
- Fixed-capacity receive ring buffer with backpressure
- Line, prompt and binary-segment framing over one stream
- Chunked download with per-offset retry budget
- Single-write bulk upload with output-queue drain
- Firmware-update progress/success/ready monitoring
- Profile-driven sessions (YAML command vocabulary)

Quick Start:
    >>> from fotalink.modem import SerialTransport, FrameReader
    >>>
    >>> transport = SerialTransport.open("/dev/ttyUSB2", 115200)
    >>> reader = FrameReader(transport.rx_buffer, transport.emitter)
    >>> transport.send_command("AT")
    >>> reader.wait_for_response("OK", timeout=1.0)
    True
    >>> transport.close()
"""

# Core Classes
from fotalink.modem.ring_buffer import RingBuffer
from fotalink.modem.port import Port, PySerialPort, list_serial_ports
from fotalink.modem.serial_transport import SerialTransport
from fotalink.modem.frame_reader import FrameKind, FrameReader, FrameResult, decode_line
from fotalink.modem.transfer import DownloadState, TransferController
from fotalink.modem.update_monitor import LineKind, UpdateMonitor, UpdateState
from fotalink.modem.session import SessionDriver, SessionResult, run_session

# Events
from fotalink.modem.events import (
    ALL_EVENT_TYPES,
    EVENT_CHUNK_PROGRESS,
    EVENT_COMMAND_SENT,
    EVENT_ERROR,
    EVENT_LINE_RECEIVED,
    EVENT_RETRY,
    EVENT_STATE_TRANSITION,
    EVENT_STEP_COMPLETED,
    EVENT_STEP_STARTED,
    EVENT_UPDATE_PROGRESS,
    EVENT_WILDCARD,
    Event,
    EventEmitter,
)

# Exceptions
from fotalink.modem.exceptions import (
    ChunkError,
    ConfigurationRejectedError,
    ModemError,
    PatternTimeoutError,
    PortUnavailableError,
    ProtocolDesyncError,
    ReadTimeoutError,
    RetryBudgetExhaustedError,
    SerialPortError,
    TransferError,
    UpdateTimeoutError,
    WriteError,
    WriteShortError,
    WriteTimeoutError,
)

__all__ = [
    # Core Classes
    "RingBuffer",
    "Port",
    "PySerialPort",
    "SerialTransport",
    "FrameReader",
    "FrameResult",
    "TransferController",
    "DownloadState",
    "UpdateMonitor",
    "SessionDriver",
    "SessionResult",
    # Utility Functions
    "decode_line",
    "list_serial_ports",
    "run_session",
    # Enums
    "FrameKind",
    "LineKind",
    "UpdateState",
    # Events
    "Event",
    "EventEmitter",
    "ALL_EVENT_TYPES",
    "EVENT_WILDCARD",
    "EVENT_COMMAND_SENT",
    "EVENT_LINE_RECEIVED",
    "EVENT_CHUNK_PROGRESS",
    "EVENT_RETRY",
    "EVENT_ERROR",
    "EVENT_STATE_TRANSITION",
    "EVENT_UPDATE_PROGRESS",
    "EVENT_STEP_STARTED",
    "EVENT_STEP_COMPLETED",
    # Exceptions
    "ModemError",
    "SerialPortError",
    "PortUnavailableError",
    "ConfigurationRejectedError",
    "WriteError",
    "WriteTimeoutError",
    "WriteShortError",
    "ReadTimeoutError",
    "PatternTimeoutError",
    "ProtocolDesyncError",
    "TransferError",
    "ChunkError",
    "RetryBudgetExhaustedError",
    "UpdateTimeoutError",
]
