"""Serial transport for modem sessions.

This module owns the open port, runs the background receive loop that
feeds the session's RingBuffer, and provides timed command writes and
output-queue draining for the protocol layers above it.
"""

import logging
import threading
import time
from typing import Optional

from fotalink.modem.events import EVENT_COMMAND_SENT, EventEmitter
from fotalink.modem.exceptions import (
    ReadTimeoutError,
    SerialPortError,
    WriteError,
    WriteShortError,
)
from fotalink.modem.polling import BYTE_POLL_INTERVAL, SCAN_POLL_INTERVAL, poll
from fotalink.modem.port import DEFAULT_BAUDRATE, Port, PySerialPort
from fotalink.modem.ring_buffer import DEFAULT_CAPACITY, RingBuffer

logger = logging.getLogger(__name__)

COMMAND_TERMINATOR = b"\r\n"

# Receive loop tuning
DEFAULT_READ_SIZE = 256  # Per-call scratch size keeps the running check frequent
DEFAULT_READ_WAIT = 0.5  # Ceiling on one read when the line is idle
DEFAULT_WRITE_TIMEOUT = 2.0
DEFAULT_JOIN_TIMEOUT = 1.0
ERROR_BACKOFF = 0.01


class SerialTransport:
    """Serial session transport with a dedicated receive thread.

    Exactly one background thread reads from the port and pushes into the
    RingBuffer; the caller's thread issues writes and consumes the buffer.

    Example:
        >>> transport = SerialTransport.open("/dev/ttyUSB2", 115200)
        >>> transport.send_command("AT")
        >>> reader = FrameReader(transport.rx_buffer)
        >>> reader.wait_for_response("OK", timeout=1.0)
        True
        >>> transport.close()
    """

    def __init__(
        self,
        port: Port,
        rx_buffer: Optional[RingBuffer] = None,
        emitter: Optional[EventEmitter] = None,
        read_size: int = DEFAULT_READ_SIZE,
        read_wait: float = DEFAULT_READ_WAIT,
        write_timeout: float = DEFAULT_WRITE_TIMEOUT,
        join_timeout: float = DEFAULT_JOIN_TIMEOUT,
        backpressure_interval: float = BYTE_POLL_INTERVAL,
    ):
        """Initialize transport around an already open port.

        Args:
            port: Open device.
            rx_buffer: Receive buffer (a new 8 KiB buffer by default).
            emitter: Observer for command_sent events.
            read_size: Maximum bytes per port read.
            read_wait: Maximum seconds one read may wait for data.
            write_timeout: Default ceiling for command writes.
            join_timeout: How long close() waits for the receive thread.
            backpressure_interval: Sleep while the buffer is full.
        """
        self.port = port
        self.rx_buffer = rx_buffer if rx_buffer is not None else RingBuffer(DEFAULT_CAPACITY)
        self.emitter = emitter or EventEmitter()
        self.read_size = read_size
        self.read_wait = read_wait
        self.write_timeout = write_timeout
        self.join_timeout = join_timeout
        self.backpressure_interval = backpressure_interval

        self._running = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def open(
        cls,
        device: str,
        baudrate: int = DEFAULT_BAUDRATE,
        **kwargs,
    ) -> "SerialTransport":
        """Open a pyserial device and start the receive loop.

        Raises:
            PortUnavailableError: If the device cannot be opened.
            ConfigurationRejectedError: If the settings cannot be applied.
        """
        transport = cls(PySerialPort.open(device, baudrate), **kwargs)
        transport.start()
        return transport

    @property
    def is_running(self) -> bool:
        return self._running.is_set()

    def start(self) -> None:
        """Start the background receive loop."""
        if self._running.is_set():
            return

        self._running.set()
        self._thread = threading.Thread(
            target=self._receive_loop,
            args=(self._running,),
            name=f"SerialReceive-{self.port.name}",
            daemon=True,
        )
        self._thread.start()
        logger.debug("Receive loop started on %s", self.port.name)

    def close(self) -> None:
        """Stop the receive loop and release the port.

        The running token is cleared and pending port I/O cancelled
        before joining, since a blocked read would otherwise hold up
        teardown.
        """
        self._running.clear()

        if self.port.is_open:
            self.port.cancel_pending()

        if self._thread is not None:
            self._thread.join(timeout=self.join_timeout)
            if self._thread.is_alive():
                logger.warning("Receive loop on %s did not stop in time", self.port.name)
            self._thread = None

        if self.port.is_open:
            self.port.close()

    def _receive_loop(self, running: threading.Event) -> None:
        """Pull bytes from the port into the ring buffer until stopped."""
        failing = False
        while running.is_set():
            try:
                data = self.port.read(self.read_size, self.read_wait)
            except ReadTimeoutError:
                continue
            except SerialPortError as e:
                if not running.is_set():
                    break
                if not failing:
                    logger.warning("Receive error on %s: %s", self.port.name, e)
                    failing = True
                time.sleep(ERROR_BACKOFF)
                continue

            failing = False
            remaining = memoryview(data)
            while remaining and running.is_set():
                written = self.rx_buffer.put_bulk(remaining)
                if written <= 0:
                    # Buffer full: stall ingestion until the consumer catches up
                    time.sleep(self.backpressure_interval)
                    continue
                remaining = remaining[written:]

        logger.debug("Receive loop stopped on %s", self.port.name)

    def write_exact(self, data: bytes, timeout: Optional[float] = None) -> None:
        """Write all of data or raise.

        Raises:
            WriteTimeoutError: The write did not complete in time.
            WriteShortError: The driver accepted fewer bytes than requested.
            SerialPortError: The device failed.
        """
        timeout = self.write_timeout if timeout is None else timeout
        written = self.port.write(data, timeout)
        if written != len(data):
            raise WriteShortError(len(data), written)

    def write(self, data: bytes, timeout: Optional[float] = None) -> bool:
        """Write all of data; report failure instead of raising.

        A short write counts as a failure: commands must arrive whole.
        """
        try:
            self.write_exact(data, timeout)
            return True
        except (WriteError, SerialPortError) as e:
            logger.warning("Write to %s failed: %s", self.port.name, e)
            return False

    def send_command(self, command: str, timeout: Optional[float] = None) -> None:
        """Send one AT command line (CRLF appended).

        Raises:
            WriteTimeoutError, WriteShortError, SerialPortError
        """
        logger.debug("Sending AT command: %s", command)
        self.write_exact(command.encode("utf-8") + COMMAND_TERMINATOR, timeout)
        self.emitter.emit(EVENT_COMMAND_SENT, {"command": command})

    def drain_output_queue(self, timeout: float, interval: float = SCAN_POLL_INTERVAL) -> bool:
        """Wait until the driver's output queue is empty.

        A completed write only means the driver took the bytes; this
        waits until they have left the host.
        """
        return poll(lambda: True if self.port.out_waiting == 0 else None, timeout, interval) is not None

    def __repr__(self) -> str:
        status = "running" if self.is_running else "stopped"
        return f"SerialTransport(port={self.port.name!r}, {status})"

    def __enter__(self) -> "SerialTransport":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
