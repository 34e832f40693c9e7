"""Response framing on top of the receive ring buffer.

The modem's response stream mixes text lines with raw binary segments
whose length is announced by a preceding control line. FrameReader pulls
lines, prompt patterns and exact-length segments out of the RingBuffer
without copying the whole stream anywhere else.
"""

import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from fotalink.modem.events import EVENT_LINE_RECEIVED, EventEmitter
from fotalink.modem.exceptions import ProtocolDesyncError
from fotalink.modem.polling import BYTE_POLL_INTERVAL, SCAN_POLL_INTERVAL, Deadline, poll
from fotalink.modem.ring_buffer import RingBuffer

logger = logging.getLogger(__name__)

NEWLINE = 0x0A
DEFAULT_MAX_LINE = 256

_DIGITS = re.compile(rb"\d+")


class FrameKind(Enum):
    """Outcome of a pattern-or-line wait."""

    MATCHED = "matched"
    LINE = "line"
    TIMEOUT = "timeout"


@dataclass
class FrameResult:
    """Bytes consumed by a pattern-or-line wait.

    Attributes:
        kind: What ended the wait.
        data: Consumed bytes (through the match end, or the full line).
    """

    kind: FrameKind
    data: bytes = b""

    @property
    def text(self) -> str:
        return decode_line(self.data)


def decode_line(line: bytes) -> str:
    """Decode a received line for display and matching."""
    return line.decode("utf-8", errors="replace").rstrip("\r\n")


def _as_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


class FrameReader:
    """Line, prompt and binary-segment extraction from a RingBuffer.

    Example:
        >>> reader = FrameReader(transport.rx_buffer, emitter)
        >>> transport.send_command('AT+LFOTA=1,1024')
        >>> result = reader.wait_for_pattern_or_line(b">", timeout=10.0)
        >>> result.kind
        <FrameKind.MATCHED: 'matched'>
    """

    def __init__(
        self,
        buffer: RingBuffer,
        emitter: Optional[EventEmitter] = None,
        byte_poll_interval: float = BYTE_POLL_INTERVAL,
        scan_poll_interval: float = SCAN_POLL_INTERVAL,
    ):
        """Initialize frame reader.

        Args:
            buffer: Receive buffer filled by the transport.
            emitter: Observer for line_received events.
            byte_poll_interval: Sleep between byte-level and line polls.
            scan_poll_interval: Sleep between pattern scans.
        """
        self.buffer = buffer
        self.emitter = emitter or EventEmitter()
        self.byte_poll_interval = byte_poll_interval
        self.scan_poll_interval = scan_poll_interval

    # =========================================================================
    # Core framing
    # =========================================================================

    def read_line(self, max_len: int = DEFAULT_MAX_LINE) -> Optional[bytes]:
        """Remove and return one complete line, terminator included.

        At most max_len - 1 bytes are returned. Bytes of a longer line
        stay in the buffer and come back, split, on later calls.

        Returns:
            The line, or None if no complete line is buffered.
        """
        idx = self.buffer.find_byte(NEWLINE)
        if idx < 0:
            return None

        line = self.buffer.read_bulk(min(idx + 1, max_len - 1))
        if not line:
            return None
        self._emit_line(line)
        return line

    def wait_for_pattern_or_line(
        self,
        pattern: Union[str, bytes],
        timeout: float,
    ) -> FrameResult:
        """Wait for pattern anywhere in the buffer, or for a full line.

        Each tick takes a non-destructive snapshot. If the pattern is
        present, everything through its end is consumed (MATCHED).
        Otherwise the first complete line is consumed (LINE) so the
        caller can log it and keep waiting. On timeout nothing is
        consumed.

        Raises:
            ValueError: If pattern is empty.
        """
        needle = _as_bytes(pattern)
        if not needle:
            raise ValueError("pattern must not be empty")

        def scan() -> Optional[FrameResult]:
            snapshot = self.buffer.peek_bulk()
            if not snapshot:
                return None

            pos = snapshot.find(needle)
            if pos >= 0:
                data = self.buffer.read_bulk(pos + len(needle))
                self._emit_line(data)
                return FrameResult(FrameKind.MATCHED, data)

            nl = snapshot.find(b"\n")
            if nl >= 0:
                data = self.buffer.read_bulk(nl + 1)
                self._emit_line(data)
                return FrameResult(FrameKind.LINE, data)

            return None

        result = poll(scan, timeout, self.scan_poll_interval)
        return result if result is not None else FrameResult(FrameKind.TIMEOUT)

    def read_binary_segment(self, length: int, timeout: Optional[float] = None) -> bytes:
        """Pull exactly length raw bytes.

        The announced length is a hard contract: the call keeps polling
        until it is met rather than guessing from partial data.

        Args:
            length: Announced payload size.
            timeout: Watchdog in seconds; None waits indefinitely.

        Raises:
            ProtocolDesyncError: If the watchdog fires first.
        """
        out = bytearray()
        deadline = Deadline(timeout)
        while len(out) < length:
            chunk = self.buffer.read_bulk(length - len(out))
            if chunk:
                out += chunk
                continue
            if deadline.expired:
                raise ProtocolDesyncError(
                    f"Binary segment incomplete: {len(out)} of {length} bytes "
                    f"after {timeout}s"
                )
            time.sleep(self.byte_poll_interval)
        return bytes(out)

    # =========================================================================
    # Response helpers
    # =========================================================================

    def next_line(self, timeout: float, max_len: int = DEFAULT_MAX_LINE) -> Optional[bytes]:
        """Wait up to timeout for one complete line."""
        return poll(lambda: self.read_line(max_len), timeout, self.byte_poll_interval)

    def wait_for_response(self, expected: Union[str, bytes], timeout: float) -> bool:
        """Consume lines until one contains expected.

        Returns:
            True if a matching line arrived within timeout.
        """
        needle = _as_bytes(expected)
        deadline = Deadline(timeout)
        while not deadline.expired:
            line = self.next_line(deadline.remaining())
            if line is not None and needle in line:
                return True
        return False

    def wait_for_number(self, prefix: Union[str, bytes], timeout: float) -> Optional[int]:
        """Consume lines until one carries an integer after prefix.

        Example: prefix "Content-Length: " on "Content-Length: 1024"
        yields 1024. Lines with the prefix but no digits are skipped.
        """
        needle = _as_bytes(prefix)
        deadline = Deadline(timeout)
        while not deadline.expired:
            line = self.next_line(deadline.remaining())
            if line is None:
                continue
            pos = line.find(needle)
            if pos < 0:
                continue
            match = _DIGITS.search(line, pos + len(needle))
            if match:
                return int(match.group())
        return None

    def _emit_line(self, data: bytes) -> None:
        text = decode_line(data)
        logger.debug("Received: %s", text)
        self.emitter.emit(EVENT_LINE_RECEIVED, {"line": text})

    def __repr__(self) -> str:
        return f"FrameReader(buffered={self.buffer.available()})"
