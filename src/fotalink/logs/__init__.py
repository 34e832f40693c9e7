"""Logging setup for fotalink.

This module provides JSON and text log output for the ``fotalink`` logger
hierarchy.
"""

from fotalink.logs.manager import LoggerManager, get_logger
from fotalink.logs.structured import StructuredFormatter, TextFormatter

__all__ = ["LoggerManager", "StructuredFormatter", "TextFormatter", "get_logger"]
