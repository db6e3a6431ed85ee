"""Error taxonomy shared by the decoder, state machine and watcher"""


class GuitarBridgeError(Exception):
    pass


class MalformedReport(GuitarBridgeError, ValueError):
    """Report is empty, shorter than the configured frame, or otherwise unparsable."""


class DeviceUnavailable(GuitarBridgeError, OSError):
    """HID enumeration or open failed during (re)initialization."""


class DuplicateMatch(GuitarBridgeError):
    """A second controller matched while a session is already active."""

    def __init__(self, handle, current):
        super().__init__(f"ignoring {handle!r}: already connected to {current!r}")
        self.handle = handle
        self.current = current


class ConfigError(GuitarBridgeError, ValueError):
    pass
