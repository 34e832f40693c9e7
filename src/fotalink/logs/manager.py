"""Logger manager for the fotalink logger hierarchy.

This module provides a LoggerManager class that installs one handler on
the ``fotalink`` logger with text or JSON output and manages component
levels.
"""

import logging
import sys
from typing import Optional

from fotalink.config import LoggingConfig
from fotalink.logs.structured import StructuredFormatter, TextFormatter

ROOT_LOGGER_NAME = "fotalink"


class LoggerManager:
    """Manager for component loggers.

    Example:
        >>> from fotalink.config import LoggingConfig
        >>> manager = LoggerManager(LoggingConfig(level="DEBUG", format="json"))
        >>> manager.configure()
        >>>
        >>> logger = manager.get_logger("modem.transfer")
        >>> logger.info("Chunk received", extra={"offset": 4096})
    """

    def __init__(self, config: Optional[LoggingConfig] = None) -> None:
        """Initialize the logger manager.

        Args:
            config: Logging configuration (defaults to INFO text on stderr).
        """
        self.config = config or LoggingConfig()
        self._handler: Optional[logging.Handler] = None
        self._formatter: Optional[logging.Formatter] = None
        self._configured = False
        self._root_logger_name = ROOT_LOGGER_NAME

    def configure(self) -> None:
        """Configure the root application logger.

        Should be called once during application startup.
        """
        if self._configured:
            return

        if self.config.format == "json":
            self._formatter = StructuredFormatter()
        else:
            self._formatter = TextFormatter()

        if self.config.output_file:
            self._handler = logging.FileHandler(self.config.output_file)
        else:
            self._handler = logging.StreamHandler(sys.stderr)

        self._handler.setFormatter(self._formatter)

        root_logger = logging.getLogger(self._root_logger_name)
        root_logger.setLevel(self._parse_level(self.config.level))
        root_logger.addHandler(self._handler)

        # Keep entries out of Python's root logger
        root_logger.propagate = False

        for component, level in self.config.component_levels.items():
            self.set_level(component, level)

        self._configured = True

    def shutdown(self) -> None:
        """Remove the installed handler and restore propagation."""
        if not self._configured:
            return

        root_logger = logging.getLogger(self._root_logger_name)
        if self._handler:
            root_logger.removeHandler(self._handler)
            self._handler.close()
            self._handler = None

        root_logger.propagate = True

        for component in self.config.component_levels:
            self.get_logger(component).setLevel(logging.NOTSET)

        self._configured = False

    def get_logger(self, name: str) -> logging.Logger:
        """Get or create a logger for a component.

        Args:
            name: Component name. Will be prefixed with 'fotalink.' if not already.
        """
        return get_logger(name)

    def set_level(self, name: str, level: str) -> None:
        """Set log level for a specific component.

        Example:
            >>> manager.set_level("modem.serial_transport", "DEBUG")
        """
        self.get_logger(name).setLevel(self._parse_level(level))

    @property
    def is_configured(self) -> bool:
        return self._configured

    def _parse_level(self, level: str) -> int:
        return getattr(logging, level.upper(), logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Convenience function to get a logger under the fotalink hierarchy.

    Example:
        >>> from fotalink.logs import get_logger
        >>> logger = get_logger("cli")
        >>> logger.info("Hello world")
    """
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)
