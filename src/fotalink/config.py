"""Configuration for modem sessions.

This module defines the configuration dataclasses for the serial
transport, chunked transfers, firmware-update monitoring and logging,
and the YAML session profile that supplies the AT command vocabulary.

Example:
    >>> from fotalink.config import load_profile, default_profile_path
    >>> profile = load_profile(default_profile_path())
    >>> [step.action for step in profile.steps][:3]
    ['command', 'command', 'command']
"""

import logging
import os
import re
import string
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

PROFILE_DIR = Path(__file__).parent / "profiles"
DEFAULT_PROFILE_NAME = "simcom_lfota.yaml"

STEP_ACTIONS = ("command", "download", "upload", "monitor_update", "delay")


class ProfileError(Exception):
    """Raised when a session profile cannot be loaded or is invalid."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"Invalid profile '{source}': {message}")


@dataclass
class SerialConfig:
    """Serial transport configuration.

    Attributes:
        port: Serial device (e.g., /dev/ttyUSB2 or COM3).
        baudrate: Line speed.
        ring_capacity: Receive ring buffer size in bytes.
        read_size: Maximum bytes per receive-loop read.
        read_wait: Ceiling on one receive-loop read in seconds.
        write_timeout: Default command write timeout in seconds.
        join_timeout: How long teardown waits for the receive thread.
    """

    port: Optional[str] = None
    baudrate: int = 115200
    ring_capacity: int = 8192
    read_size: int = 256
    read_wait: float = 0.5
    write_timeout: float = 2.0
    join_timeout: float = 1.0

    @classmethod
    def from_env(cls) -> "SerialConfig":
        """Create configuration from environment variables."""
        return cls(
            port=os.getenv("FOTALINK_PORT"),
            baudrate=int(os.getenv("FOTALINK_BAUDRATE", "115200")),
            ring_capacity=int(os.getenv("FOTALINK_RING_CAPACITY", "8192")),
            write_timeout=float(os.getenv("FOTALINK_WRITE_TIMEOUT", "2.0")),
        )

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.baudrate <= 0:
            raise ValueError(f"Invalid baudrate: {self.baudrate}")

        if self.ring_capacity <= 0:
            raise ValueError(f"Invalid ring_capacity: {self.ring_capacity}")

        if not 0 < self.read_size <= self.ring_capacity:
            raise ValueError(f"Invalid read_size: {self.read_size}")

        for name in ("read_wait", "write_timeout", "join_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"Invalid {name}: {getattr(self, name)}")


@dataclass
class TransferConfig:
    """Chunked download and bulk upload configuration.

    Attributes:
        chunk_size: Bytes requested per chunk.
        request_template: Chunk request command; {offset} and {length}
            are substituted.
        header_pattern: Regex for the control line announcing a segment
            length (group 1).
        header_prefix: Literal start of a header line; a line with this
            prefix that header_pattern rejects is a framing error.
        error_pattern: Regex marking a failed chunk.
        max_offset_retries: Re-requests allowed at one offset.
        chunk_timeout: Ceiling on waiting for the next control line.
        segment_timeout: Watchdog for pulling one announced segment.
        upload_write_timeout: Ceiling on the single payload write.
        upload_drain_timeout: Ceiling on the output queue draining.
        upload_ack: Line fragment acknowledging the upload.
        upload_ack_timeout: Ceiling on the acknowledgement.
        prompt_timeout: Ceiling on the upload prompt.
    """

    chunk_size: int = 4096
    request_template: str = "AT+HTTPREAD={offset},{length}"
    header_pattern: str = r"^\+HTTPREAD:\s*(?:DATA,)?(\d+)"
    header_prefix: str = "+HTTPREAD:"
    error_pattern: str = r"ERROR"
    max_offset_retries: int = 5
    chunk_timeout: float = 10.0
    segment_timeout: float = 30.0
    upload_write_timeout: float = 30.0
    upload_drain_timeout: float = 30.0
    upload_ack: str = "OK"
    upload_ack_timeout: float = 20.0
    prompt_timeout: float = 10.0

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.chunk_size <= 0:
            raise ValueError(f"Invalid chunk_size: {self.chunk_size}")

        if self.max_offset_retries < 0:
            raise ValueError(f"Invalid max_offset_retries: {self.max_offset_retries}")

        if not self.header_prefix:
            raise ValueError("header_prefix cannot be empty")

        try:
            self.request_template.format(offset=0, length=0)
        except (KeyError, IndexError, ValueError) as e:
            raise ValueError(f"Invalid request_template: {e}")

        for name in ("header_pattern", "error_pattern"):
            try:
                compiled = re.compile(getattr(self, name))
            except re.error as e:
                raise ValueError(f"Invalid {name}: {e}")
            if name == "header_pattern" and compiled.groups < 1:
                raise ValueError("header_pattern must capture the length in group 1")

        for name in (
            "chunk_timeout",
            "segment_timeout",
            "upload_write_timeout",
            "upload_drain_timeout",
            "upload_ack_timeout",
            "prompt_timeout",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"Invalid {name}: {getattr(self, name)}")


@dataclass
class UpdateConfig:
    """Firmware-update monitoring configuration.

    Attributes:
        progress_prefix: Line prefix carrying the progress percentage.
        success_marker: Line fragment reporting a successful update.
        ready_marker: Line fragment reporting the module is back up.
        overall_timeout: Wall-clock ceiling for the whole update.
        idle_poll: Sleep between polls when no line is buffered.
        early_ready_fails: Treat a ready marker before the success marker
            as a reboot without the update and fail at once, instead of
            ignoring it as left over from an earlier boot.
    """

    progress_prefix: str = "+CFOTA: UPDATE:"
    success_marker: str = "+CFOTA: UPDATE SUCCESS"
    ready_marker: str = "QCRDY"
    overall_timeout: float = 600.0
    idle_poll: float = 0.2
    early_ready_fails: bool = False

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValueError: If configuration is invalid.
        """
        for name in ("progress_prefix", "success_marker", "ready_marker"):
            if not getattr(self, name):
                raise ValueError(f"{name} cannot be empty")

        if self.overall_timeout <= 0:
            raise ValueError(f"Invalid overall_timeout: {self.overall_timeout}")

        if self.idle_poll <= 0:
            raise ValueError(f"Invalid idle_poll: {self.idle_poll}")


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "text"  # or "json"
    output_file: Optional[str] = None
    # Per-component overrides, e.g. {"modem.transfer": "DEBUG"}
    component_levels: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "LoggingConfig":
        """Create configuration from environment variables."""
        return cls(
            level=os.getenv("FOTALINK_LOG_LEVEL", "INFO").upper(),
            format=os.getenv("FOTALINK_LOG_FORMAT", "text").lower(),
            output_file=os.getenv("FOTALINK_LOG_FILE"),
        )

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {self.level}")

        if self.format not in ("text", "json"):
            raise ValueError(f"Invalid log format: {self.format}")

        for component, level in self.component_levels.items():
            if level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
                raise ValueError(f"Invalid log level for {component}: {level}")


@dataclass
class Step:
    """One entry of a session profile.

    Attributes:
        action: command, download, upload, monitor_update or delay.
        name: Label shown in events and errors.
        command: AT command template ({name} placeholders, {{ and }} for braces).
        expect: Line fragment that completes a command step.
        timeout: Ceiling on the expect wait.
        capture: Optional {"name": ..., "prefix": ...} integer capture.
        prompt: Upload prompt pattern.
        size_var: Variable holding the transfer size.
        seconds: Delay length.
    """

    action: str = "command"
    name: str = ""
    command: Optional[str] = None
    expect: Optional[str] = "OK"
    timeout: float = 5.0
    capture: Optional[Dict[str, str]] = None
    prompt: str = ">"
    size_var: str = "file_size"
    seconds: float = 0.0

    @property
    def label(self) -> str:
        return self.name or self.command or self.action

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Step":
        """Build a step from a profile mapping.

        Raises:
            KeyError: On unknown keys.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise KeyError(", ".join(sorted(unknown)))
        return cls(**data)

    def validate(self) -> None:
        """Validate the step.

        Raises:
            ValueError: If the step is invalid.
        """
        if self.action not in STEP_ACTIONS:
            raise ValueError(f"Unknown action '{self.action}'")

        if self.action == "command" and not (self.command or self.expect or self.capture):
            raise ValueError("command step needs a command, expect or capture")

        if self.action == "delay" and self.seconds < 0:
            raise ValueError(f"Invalid delay: {self.seconds}")

        if self.timeout <= 0:
            raise ValueError(f"Invalid timeout: {self.timeout}")

        if self.capture is not None:
            if not isinstance(self.capture, dict) or not self.capture.get("name") \
                    or not self.capture.get("prefix"):
                raise ValueError("capture needs 'name' and 'prefix'")

        templates = [self.command, self.expect]
        if self.capture:
            templates.append(self.capture["prefix"])
        for template in templates:
            if template:
                _check_template(template)


def _check_template(template: str) -> None:
    """Reject templates that str.format cannot render by name.

    Literal braces must be doubled ({{ and }}).
    """
    try:
        parsed = list(string.Formatter().parse(template))
    except ValueError as e:
        raise ValueError(f"bad template {template!r}: {e}")
    for _, field_name, _, _ in parsed:
        if field_name is not None and (not field_name or field_name.isdigit()):
            raise ValueError(f"bad template {template!r}: positional field")


@dataclass
class SessionProfile:
    """Ordered AT command vocabulary for one session.

    Attributes:
        name: Profile name.
        description: Free text.
        steps: Steps executed in order.
        transfer: Transfer settings for download/upload steps.
        update: Settings for monitor_update steps.
    """

    name: str = "unnamed"
    description: str = ""
    steps: List[Step] = field(default_factory=list)
    transfer: TransferConfig = field(default_factory=TransferConfig)
    update: UpdateConfig = field(default_factory=UpdateConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: str = "<dict>") -> "SessionProfile":
        """Build and validate a profile from parsed YAML.

        Raises:
            ProfileError: If the data is malformed or invalid.
        """
        if not isinstance(data, dict):
            raise ProfileError(source, "root must be a mapping")

        steps_data = data.get("steps")
        if not isinstance(steps_data, list) or not steps_data:
            raise ProfileError(source, "'steps' must be a non-empty list")

        steps = []
        for i, step_data in enumerate(steps_data):
            if not isinstance(step_data, dict):
                raise ProfileError(source, f"step {i} must be a mapping")
            try:
                step = Step.from_dict(step_data)
                step.validate()
            except KeyError as e:
                raise ProfileError(source, f"step {i}: unknown field(s) {e}")
            except (TypeError, ValueError) as e:
                raise ProfileError(source, f"step {i}: {e}")
            steps.append(step)

        try:
            transfer = _override(TransferConfig(), data.get("transfer"))
            transfer.validate()
            update = _override(UpdateConfig(), data.get("update"))
            update.validate()
        except (KeyError, TypeError, ValueError) as e:
            raise ProfileError(source, str(e))

        return cls(
            name=str(data.get("name", Path(source).stem)),
            description=str(data.get("description", "")),
            steps=steps,
            transfer=transfer,
            update=update,
        )


def _override(base, overrides: Optional[Dict[str, Any]]):
    """Return base with fields replaced from a mapping."""
    if not overrides:
        return base
    if not isinstance(overrides, dict):
        raise TypeError(f"{type(base).__name__} overrides must be a mapping")
    known = {f.name for f in fields(base)}
    unknown = set(overrides) - known
    if unknown:
        raise KeyError(f"unknown {type(base).__name__} field(s): {', '.join(sorted(unknown))}")
    return replace(base, **overrides)


def default_profile_path() -> Path:
    """Path of the bundled SIMCom HTTP download + LFOTA profile."""
    return PROFILE_DIR / DEFAULT_PROFILE_NAME


def load_profile(file_path) -> SessionProfile:
    """Load a session profile from a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ProfileError: If the file cannot be parsed or is invalid.
    """
    path = Path(file_path)

    if not path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ProfileError(str(file_path), f"Invalid YAML: {e}")
    except IOError as e:
        raise ProfileError(str(file_path), f"IO error: {e}")

    profile = SessionProfile.from_dict(data, source=str(file_path))
    logger.debug("Loaded profile '%s' with %d steps", profile.name, len(profile.steps))
    return profile
