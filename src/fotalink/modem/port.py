"""Serial port abstraction for the modem transport.

The transport only needs four things from a device: a bounded read, a
bounded write that cleans up after itself on timeout, the pending output
count, and a way to cancel whatever I/O is in flight. PySerialPort
provides them on top of pyserial; tests substitute an in-memory port.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import serial
from serial.tools import list_ports

from fotalink.modem.exceptions import (
    ConfigurationRejectedError,
    PortUnavailableError,
    ReadTimeoutError,
    SerialPortError,
    WriteTimeoutError,
)

logger = logging.getLogger(__name__)

# Default serial settings
DEFAULT_BAUDRATE = 115200
# Gap between bytes after which a read returns what it has
DEFAULT_INTER_BYTE_TIMEOUT = 0.05


class Port(ABC):
    """Minimal asynchronous-style serial device interface."""

    name: str = ""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the device is usable."""

    @abstractmethod
    def read(self, max_bytes: int, timeout: float) -> bytes:
        """Return 1..max_bytes bytes, waiting at most timeout seconds.

        Raises:
            ReadTimeoutError: Nothing arrived within timeout.
            SerialPortError: The device failed.
        """

    @abstractmethod
    def write(self, data: bytes, timeout: float) -> int:
        """Write data, waiting at most timeout seconds for completion.

        Returns:
            Number of bytes the driver accepted.

        Raises:
            WriteTimeoutError: The write did not complete; it has been
                cancelled before raising.
            SerialPortError: The device failed.
        """

    @property
    @abstractmethod
    def out_waiting(self) -> int:
        """Bytes still queued in the driver's output buffer."""

    @abstractmethod
    def cancel_pending(self) -> None:
        """Abort any in-flight read or write."""

    @abstractmethod
    def close(self) -> None:
        """Release the device."""


class PySerialPort(Port):
    """Port backed by pyserial.

    Example:
        >>> port = PySerialPort.open("/dev/ttyUSB2", 115200)
        >>> port.write(b"AT\\r\\n", timeout=2.0)
        4
        >>> port.close()
    """

    def __init__(self, handle: "serial.Serial"):
        self._serial = handle
        self.name = handle.port or ""

    @classmethod
    def open(
        cls,
        device: str,
        baudrate: int = DEFAULT_BAUDRATE,
        inter_byte_timeout: float = DEFAULT_INTER_BYTE_TIMEOUT,
    ) -> "PySerialPort":
        """Open and configure a serial device.

        Configures 8-N-1, no flow control, DTR and RTS asserted.

        Args:
            device: Serial port path (e.g., /dev/ttyUSB2 or COM3).
            baudrate: Baud rate.
            inter_byte_timeout: Gap after which a partial read returns.

        Raises:
            PortUnavailableError: If the device cannot be opened.
            ConfigurationRejectedError: If the settings cannot be applied.
        """
        handle = serial.Serial()
        try:
            handle.port = device
            handle.baudrate = baudrate
            handle.bytesize = serial.EIGHTBITS
            handle.parity = serial.PARITY_NONE
            handle.stopbits = serial.STOPBITS_ONE
            handle.xonxoff = False
            handle.rtscts = False
            handle.dsrdtr = False
            handle.timeout = 0
            handle.inter_byte_timeout = inter_byte_timeout
        except ValueError as e:
            raise ConfigurationRejectedError(device, str(e), cause=e)

        try:
            handle.open()
        except ValueError as e:
            raise ConfigurationRejectedError(device, str(e), cause=e)
        except serial.SerialException as e:
            raise PortUnavailableError(device, str(e), cause=e)

        try:
            handle.dtr = True
            handle.rts = True
            handle.reset_input_buffer()
            handle.reset_output_buffer()
        except (serial.SerialException, OSError) as e:
            handle.close()
            raise ConfigurationRejectedError(device, f"Cannot assert DTR/RTS: {e}", cause=e)

        logger.debug("Opened serial port %s at %d baud", device, baudrate)
        return cls(handle)

    @property
    def is_open(self) -> bool:
        return self._serial.is_open

    def read(self, max_bytes: int, timeout: float) -> bytes:
        if self._serial.timeout != timeout:
            self._serial.timeout = timeout

        try:
            # Ask only for what is already queued so the call returns on
            # partial data instead of waiting for a full scratch buffer
            size = min(max_bytes, max(1, self._serial.in_waiting))
            data = self._serial.read(size)
        except serial.SerialException as e:
            raise SerialPortError(self.name, f"Read failed: {e}", cause=e)

        if not data:
            raise ReadTimeoutError(timeout)
        return data

    def write(self, data: bytes, timeout: float) -> int:
        if self._serial.write_timeout != timeout:
            self._serial.write_timeout = timeout

        try:
            count = self._serial.write(data)
        except serial.SerialTimeoutException:
            self._cancel_write()
            raise WriteTimeoutError(timeout, expected=len(data))
        except serial.SerialException as e:
            raise SerialPortError(self.name, f"Write failed: {e}", cause=e)

        logger.debug("Wrote %d bytes to %s", count or 0, self.name)
        return count or 0

    @property
    def out_waiting(self) -> int:
        try:
            return self._serial.out_waiting
        except serial.SerialException as e:
            raise SerialPortError(self.name, f"Cannot query output queue: {e}", cause=e)

    def cancel_pending(self) -> None:
        if not self._serial.is_open:
            return
        try:
            self._serial.cancel_read()
        except (AttributeError, serial.SerialException) as e:
            logger.debug("cancel_read unavailable on %s: %s", self.name, e)
        self._cancel_write()

    def close(self) -> None:
        try:
            self._serial.close()
            logger.debug("Closed serial port %s", self.name)
        except serial.SerialException as e:
            logger.warning("Error closing serial port %s: %s", self.name, e)

    def _cancel_write(self) -> None:
        try:
            self._serial.cancel_write()
        except (AttributeError, serial.SerialException) as e:
            logger.debug("cancel_write unavailable on %s: %s", self.name, e)

    def __repr__(self) -> str:
        status = "open" if self.is_open else "closed"
        return f"PySerialPort(port={self.name!r}, {status})"


def list_serial_ports() -> List[dict]:
    """List available serial ports.

    Returns:
        One dict per port with device, description, hwid and vid:pid.
    """
    ports = []
    for info in list_ports.comports():
        vid_pid: Optional[str] = None
        if info.vid is not None and info.pid is not None:
            vid_pid = f"{info.vid:04x}:{info.pid:04x}"
        ports.append(
            {
                "device": info.device,
                "description": info.description or "",
                "hwid": info.hwid or "",
                "manufacturer": info.manufacturer or "",
                "vid_pid": vid_pid,
            }
        )
    return ports
