"""fotalink: firmware download and update over a cellular modem's AT port.

The modem fetches a firmware image over HTTP; fotalink pulls it through
the serial AT port in chunks, stores it locally, pushes it back for a
local firmware update, and follows the module through the reboot.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
