"""Firmware-update monitor.

After a firmware image has been handed to the modem and the module is
reset, it reports progress lines, then a success marker, then a ready
marker once it has rebooted. This module classifies those lines and
waits, under one wall-clock ceiling, for the full sequence.
"""

import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from fotalink.config import UpdateConfig
from fotalink.modem.events import (
    EVENT_STATE_TRANSITION,
    EVENT_UPDATE_PROGRESS,
    EventEmitter,
)
from fotalink.modem.exceptions import UpdateTimeoutError
from fotalink.modem.frame_reader import FrameReader, decode_line
from fotalink.modem.polling import Deadline

logger = logging.getLogger(__name__)

_DIGITS = re.compile(r"\d+")


class UpdateState(Enum):
    """Firmware update phases."""

    AWAITING_SUCCESS = "awaiting_success"
    AWAITING_READY = "awaiting_ready"
    DONE = "done"


class LineKind(Enum):
    """Classification of a line seen during the update window."""

    PROGRESS = "progress"
    SUCCESS = "success"
    READY = "ready"
    OTHER = "other"


@dataclass
class Observation:
    """Result of feeding one line.

    Attributes:
        kind: How the line was classified.
        progress: New progress value, set only when it changed.
    """

    kind: LineKind
    progress: Optional[int] = None


class UpdateMonitor:
    """State machine for the firmware-reboot window.

    Example:
        >>> monitor = UpdateMonitor(UpdateConfig(ready_marker="READY"))
        >>> monitor.feed("+CFOTA: UPDATE:10").progress
        10
        >>> monitor.feed("+CFOTA: UPDATE SUCCESS").kind
        <LineKind.SUCCESS: 'success'>
        >>> monitor.feed("READY").kind
        <LineKind.READY: 'ready'>
        >>> monitor.done
        True
    """

    def __init__(
        self,
        config: Optional[UpdateConfig] = None,
        emitter: Optional[EventEmitter] = None,
    ):
        self.config = config or UpdateConfig()
        self.emitter = emitter or EventEmitter()

        self.state = UpdateState.AWAITING_SUCCESS
        self.last_progress = -1
        self.rebooted_early = False

    @property
    def success_seen(self) -> bool:
        return self.state is not UpdateState.AWAITING_SUCCESS

    @property
    def ready_seen(self) -> bool:
        return self.state is UpdateState.DONE

    @property
    def done(self) -> bool:
        return self.success_seen and self.ready_seen

    def feed(self, line: str) -> Observation:
        """Classify one line and advance the state machine."""
        cfg = self.config

        if self.state is UpdateState.DONE:
            return Observation(LineKind.OTHER)

        pos = line.find(cfg.progress_prefix)
        if pos >= 0:
            match = _DIGITS.search(line, pos + len(cfg.progress_prefix))
            if match is None:
                return Observation(LineKind.PROGRESS)
            value = int(match.group())
            if value == self.last_progress:
                return Observation(LineKind.PROGRESS)
            self.last_progress = value
            logger.info("Update progress: %d", value)
            self.emitter.emit(EVENT_UPDATE_PROGRESS, {"progress": value})
            return Observation(LineKind.PROGRESS, value)

        if cfg.success_marker in line:
            if self.state is UpdateState.AWAITING_SUCCESS:
                logger.info("Update reported success")
                self._transition(UpdateState.AWAITING_READY)
            return Observation(LineKind.SUCCESS)

        if cfg.ready_marker in line:
            if self.state is UpdateState.AWAITING_READY:
                logger.info("Module reported ready")
                self._transition(UpdateState.DONE)
                return Observation(LineKind.READY)
            if cfg.early_ready_fails:
                logger.warning("Module rebooted before reporting update success")
                self.rebooted_early = True
                return Observation(LineKind.READY)
            logger.debug("Ignoring ready marker before update success")

        return Observation(LineKind.OTHER)

    def run(self, reader: FrameReader, timeout: Optional[float] = None) -> int:
        """Consume lines until the update is done.

        Args:
            reader: Framing over the session's receive buffer.
            timeout: Overall ceiling (config.overall_timeout by default).

        Returns:
            The last progress value seen (-1 if none).

        Raises:
            UpdateTimeoutError: The ceiling passed first; success_seen
                tells "no success" from "success but never ready". Also
                raised at once, with rebooted set, on an early ready
                marker when config.early_ready_fails is on.
        """
        timeout = self.config.overall_timeout if timeout is None else timeout
        deadline = Deadline(timeout)
        logger.info("Waiting up to %ss for firmware update to finish", timeout)

        while not self.done:
            if deadline.expired:
                raise UpdateTimeoutError(timeout, self.success_seen, self.last_progress)

            line = reader.read_line()
            if line is None:
                time.sleep(min(self.config.idle_poll, deadline.remaining()))
                continue
            self.feed(decode_line(line))
            if self.rebooted_early:
                raise UpdateTimeoutError(
                    deadline.elapsed(), False, self.last_progress, rebooted=True
                )

        return self.last_progress

    def _transition(self, new_state: UpdateState) -> None:
        old_state = self.state
        self.state = new_state
        self.emitter.emit(
            EVENT_STATE_TRANSITION,
            {"from": old_state.value, "to": new_state.value},
        )

    def __repr__(self) -> str:
        return f"UpdateMonitor(state={self.state.value}, last_progress={self.last_progress})"
