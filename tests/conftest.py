"""
Pytest configuration and fixtures for fotalink tests.

This module provides an in-memory serial port that the real
SerialTransport receive thread can read from, and a scripted modem that
answers AT commands written to it.
"""

import threading
from typing import Callable, List, Optional, Tuple, Union

import pytest

from fotalink.modem.events import EventEmitter
from fotalink.modem.exceptions import ReadTimeoutError, SerialPortError, WriteTimeoutError
from fotalink.modem.frame_reader import FrameReader
from fotalink.modem.port import Port
from fotalink.modem.serial_transport import SerialTransport


Response = Union[bytes, Callable[[str], bytes]]


# ============================================================================
# In-memory serial port
# ============================================================================

class FakePort(Port):
    """Port double backed by an in-memory receive queue.

    Bytes passed to feed() are returned by read(). Every write is recorded
    and handed to the optional responder, which usually feeds a reply.
    """

    def __init__(self, name: str = "FAKE0", responder: Optional[Callable] = None):
        self.name = name
        self.responder = responder
        self.writes: List[bytes] = []
        self.stall_writes = False
        self.accept_limit: Optional[int] = None
        self.pending_output = 0
        self.cancel_count = 0
        self.closed_count = 0

        self._open = True
        self._rx = bytearray()
        self._cond = threading.Condition()

    def feed(self, data: bytes) -> None:
        with self._cond:
            self._rx += data
            self._cond.notify_all()

    @property
    def is_open(self) -> bool:
        return self._open

    def read(self, max_bytes: int, timeout: float) -> bytes:
        with self._cond:
            if not self._rx and self._open:
                self._cond.wait(timeout)
            if not self._open:
                raise SerialPortError(self.name, "port closed")
            if not self._rx:
                raise ReadTimeoutError(timeout)
            data = bytes(self._rx[:max_bytes])
            del self._rx[:max_bytes]
            return data

    def write(self, data: bytes, timeout: float) -> int:
        if self.stall_writes:
            raise WriteTimeoutError(timeout, expected=len(data))

        count = len(data) if self.accept_limit is None else min(len(data), self.accept_limit)
        self.writes.append(bytes(data[:count]))
        if self.responder is not None:
            self.responder(self, bytes(data))
        return count

    @property
    def out_waiting(self) -> int:
        return self.pending_output

    def cancel_pending(self) -> None:
        self.cancel_count += 1
        with self._cond:
            self._cond.notify_all()

    def close(self) -> None:
        self.closed_count += 1
        with self._cond:
            self._open = False
            self._cond.notify_all()

    @property
    def commands(self) -> List[str]:
        """Writes that look like AT command lines, without the terminator."""
        return [
            w.decode("utf-8", errors="replace").strip()
            for w in self.writes
            if w.endswith(b"\r\n") and w.startswith(b"AT")
        ]


class ScriptedModem:
    """Responder that answers AT commands from a rule table.

    Rules match the command line exactly, or by prefix when registered
    with prefix=True. A rule with several responses plays them in order
    and then repeats the last one. Writes no rule matches (payloads,
    typically) get the fallback response, if any.
    """

    def __init__(self, fallback: Optional[Response] = None):
        self.rules: List[Tuple[str, bool, List[Response]]] = []
        self.fallback = fallback

    def on(self, command: str, *responses: Response, prefix: bool = False) -> "ScriptedModem":
        self.rules.append((command, prefix, list(responses)))
        return self

    def __call__(self, port: FakePort, data: bytes) -> None:
        text = data.decode("utf-8", errors="replace").strip()
        for command, prefix, responses in self.rules:
            matched = text.startswith(command) if prefix else text == command
            if matched:
                response = responses.pop(0) if len(responses) > 1 else responses[0]
                port.feed(response(text) if callable(response) else response)
                return

        if self.fallback is not None:
            response = self.fallback
            port.feed(response(text) if callable(response) else response)


def httpread_responder(payload: bytes, segments: int = 1) -> Callable[[str], bytes]:
    """Answer AT+HTTPREAD=<offset>,<length> from payload.

    Each chunk is split into the given number of DATA segments followed
    by the zero-length terminator.
    """

    def respond(text: str) -> bytes:
        args = text.split("=", 1)[1]
        offset, length = (int(v) for v in args.split(","))
        chunk = payload[offset:offset + length]

        out = bytearray(b"OK\r\n")
        step = max(1, -(-len(chunk) // segments))
        for start in range(0, len(chunk), step):
            part = chunk[start:start + step]
            out += f"+HTTPREAD: DATA,{len(part)}\r\n".encode() + part + b"\r\n"
        out += b"+HTTPREAD: 0\r\n"
        return bytes(out)

    return respond


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def modem():
    """Empty scripted modem; tests add rules."""
    return ScriptedModem()


@pytest.fixture
def fake_port(modem):
    """In-memory port answered by the modem fixture."""
    return FakePort(responder=modem)


@pytest.fixture
def make_httpread():
    """Factory for AT+HTTPREAD answers served from a payload."""
    return httpread_responder


@pytest.fixture
def emitter():
    return EventEmitter()


@pytest.fixture
def transport(fake_port, emitter):
    """Running SerialTransport over the fake port; closed after the test."""
    t = SerialTransport(fake_port, emitter=emitter, read_wait=0.05, join_timeout=2.0)
    t.start()
    yield t
    t.close()


@pytest.fixture
def reader(transport, emitter):
    return FrameReader(transport.rx_buffer, emitter)


@pytest.fixture
def recorded_events(emitter):
    """List that collects every emitted event."""
    events = []
    emitter.subscribe("*", events.append)
    return events


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    config.addinivalue_line(
        "markers", "slow: tests that wait on real timeouts"
    )
