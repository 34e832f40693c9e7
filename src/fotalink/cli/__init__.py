"""CLI commands for fotalink.

Example:
    $ fotalink ports
    $ fotalink run /dev/ttyUSB2 https://example.com/fw.bin fw.bin
    $ fotalink at /dev/ttyUSB2 ATI
"""

from fotalink.cli.main import at, cli, ports, run
from fotalink.cli.observer import ConsoleObserver, format_hexdump

__all__ = [
    "cli",
    "ports",
    "run",
    "at",
    "ConsoleObserver",
    "format_hexdump",
]
