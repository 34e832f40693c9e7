"""Profile-driven modem session.

A session profile is an ordered list of steps: AT commands with an
expected response, a chunked download into a local file, a bulk upload
from it, the firmware-update window, and plain delays. SessionDriver runs
them in order on the caller's thread and stops at the first failure.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from fotalink.config import ProfileError, SerialConfig, SessionProfile, Step
from fotalink.modem.events import (
    EVENT_ERROR,
    EVENT_STEP_COMPLETED,
    EVENT_STEP_STARTED,
    EventEmitter,
)
from fotalink.modem.exceptions import ModemError, PatternTimeoutError
from fotalink.modem.frame_reader import FrameReader
from fotalink.modem.ring_buffer import RingBuffer
from fotalink.modem.serial_transport import SerialTransport
from fotalink.modem.transfer import TransferController
from fotalink.modem.update_monitor import UpdateMonitor

logger = logging.getLogger(__name__)

OPEN_STEP = "open"


@dataclass
class SessionResult:
    """Outcome of one session run.

    Attributes:
        profile: Name of the profile that ran.
        completed: Labels of the steps that finished.
        failed_step: Label of the step that failed, if any.
        error: The error that stopped the session.
        variables: Session variables, captures included.
    """

    profile: str
    completed: List[str] = field(default_factory=list)
    failed_step: Optional[str] = None
    error: Optional[BaseException] = None
    variables: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1


class SessionDriver:
    """Runs a SessionProfile against an open transport.

    Example:
        >>> transport = SerialTransport.open("/dev/ttyUSB2")
        >>> driver = SessionDriver(
        ...     transport,
        ...     FrameReader(transport.rx_buffer, transport.emitter),
        ...     load_profile(default_profile_path()),
        ...     variables={"url": "https://example.com/fw.bin", "file": "fw.bin"},
        ... )
        >>> driver.run().success
        True
    """

    def __init__(
        self,
        transport: SerialTransport,
        reader: FrameReader,
        profile: SessionProfile,
        emitter: Optional[EventEmitter] = None,
        variables: Optional[Dict[str, Any]] = None,
        opener: Callable = open,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize session driver.

        Args:
            transport: Open, running transport.
            reader: Framing over the transport's receive buffer.
            profile: Steps to execute.
            emitter: Observer for step and error events.
            variables: Initial template variables (port, url, file, ...).
            opener: File opener for download/upload steps.
            sleep: Sleep function for delay steps.
        """
        self.transport = transport
        self.reader = reader
        self.profile = profile
        self.emitter = emitter or transport.emitter
        self.variables: Dict[str, Any] = dict(variables or {})
        self._opener = opener
        self._sleep = sleep

        self.transfer = TransferController(transport, reader, profile.transfer, self.emitter)

        self._handlers = {
            "command": self._run_command,
            "download": self._run_download,
            "upload": self._run_upload,
            "monitor_update": self._run_monitor_update,
            "delay": self._run_delay,
        }

    def run(self) -> SessionResult:
        """Execute every step in order, stopping at the first error."""
        result = SessionResult(profile=self.profile.name, variables=self.variables)
        total = len(self.profile.steps)
        logger.info("Running profile '%s' (%d steps)", self.profile.name, total)

        for index, step in enumerate(self.profile.steps, start=1):
            label = step.label
            self.emitter.emit(
                EVENT_STEP_STARTED,
                {"step": label, "action": step.action, "index": index, "total": total},
            )
            started = time.monotonic()

            try:
                self._handlers[step.action](step)
            except (ModemError, ProfileError, OSError) as e:
                logger.error("Step %d/%d '%s' failed: %s", index, total, label, e)
                self.emitter.emit(
                    EVENT_ERROR,
                    {"step": label, "error": str(e), "error_type": type(e).__name__},
                )
                result.failed_step = label
                result.error = e
                return result

            duration_ms = (time.monotonic() - started) * 1000
            result.completed.append(label)
            self.emitter.emit(
                EVENT_STEP_COMPLETED,
                {"step": label, "action": step.action, "duration_ms": duration_ms},
            )

        logger.info("Profile '%s' completed", self.profile.name)
        return result

    # =========================================================================
    # Step handlers
    # =========================================================================

    def _run_command(self, step: Step) -> None:
        command = self.render(step.command) if step.command else None
        if command:
            self.transport.send_command(command)

        if step.capture:
            prefix = self.render(step.capture["prefix"])
            value = self.reader.wait_for_number(prefix, step.timeout)
            if value is None:
                raise PatternTimeoutError(prefix, step.timeout, command)
            self.variables[step.capture["name"]] = value
            logger.info("Captured %s = %d", step.capture["name"], value)

        if step.expect:
            expected = self.render(step.expect)
            if not self.reader.wait_for_response(expected, step.timeout):
                raise PatternTimeoutError(expected, step.timeout, command)

    def _run_download(self, step: Step) -> None:
        size = self._size(step)
        path = self._file()
        with self._opener(path, "wb") as sink:
            self.transfer.download(sink, size)
        logger.info("Saved %d bytes to %s", size, path)

    def _run_upload(self, step: Step) -> None:
        size = self._size(step)
        command = self.render(step.command) if step.command else None
        with self._opener(self._file(), "rb") as source:
            self.transfer.upload(source, size, command=command, prompt=step.prompt)

    def _run_monitor_update(self, step: Step) -> None:
        if step.command:
            self.transport.send_command(self.render(step.command))
        monitor = UpdateMonitor(self.profile.update, self.emitter)
        progress = monitor.run(self.reader)
        self.variables["update_progress"] = progress

    def _run_delay(self, step: Step) -> None:
        self._sleep(step.seconds)

    # =========================================================================
    # Variables
    # =========================================================================

    def render(self, template: str) -> str:
        """Substitute {name} session variables into template.

        Raises:
            ProfileError: If the template names an unset variable or is
                malformed (a lone brace, a positional field).
        """
        try:
            return template.format_map(self.variables)
        except KeyError as e:
            raise ProfileError(self.profile.name, f"variable {e} is not set")
        except (IndexError, ValueError) as e:
            raise ProfileError(self.profile.name, f"bad template {template!r}: {e}")

    def _size(self, step: Step) -> int:
        value = self.variables.get(step.size_var)
        if value is None:
            raise ProfileError(self.profile.name, f"variable '{step.size_var}' is not set")
        return int(value)

    def _file(self) -> str:
        path = self.variables.get("file")
        if not path:
            raise ProfileError(self.profile.name, "variable 'file' is not set")
        return str(path)


def run_session(
    profile: SessionProfile,
    variables: Dict[str, Any],
    serial_config: SerialConfig,
    emitter: Optional[EventEmitter] = None,
) -> SessionResult:
    """Open the port, run the profile and always tear down.

    Port failures at open time are reported as a failed "open" step
    rather than raised.
    """
    emitter = emitter or EventEmitter()
    variables = dict(variables)
    variables.setdefault("port", serial_config.port)
    variables.setdefault("baudrate", serial_config.baudrate)

    try:
        transport = SerialTransport.open(
            serial_config.port,
            serial_config.baudrate,
            rx_buffer=RingBuffer(serial_config.ring_capacity),
            emitter=emitter,
            read_size=serial_config.read_size,
            read_wait=serial_config.read_wait,
            write_timeout=serial_config.write_timeout,
            join_timeout=serial_config.join_timeout,
        )
    except ModemError as e:
        logger.error("Cannot open %s: %s", serial_config.port, e)
        emitter.emit(
            EVENT_ERROR,
            {"step": OPEN_STEP, "error": str(e), "error_type": type(e).__name__},
        )
        return SessionResult(
            profile=profile.name, failed_step=OPEN_STEP, error=e, variables=variables
        )

    try:
        reader = FrameReader(transport.rx_buffer, emitter)
        driver = SessionDriver(transport, reader, profile, emitter, variables)
        return driver.run()
    finally:
        transport.close()
