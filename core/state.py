"""State models and lightweight DTOs"""
import enum
from dataclasses import dataclass
from typing import Any, Optional


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


@dataclass
class DecodedSample:
    """Fields that changed in one report; None means unchanged."""
    button_mask: Optional[int] = None  # 0..255
    axis_value: Optional[int] = None  # -128..127

    @property
    def is_empty(self) -> bool:
        return self.button_mask is None and self.axis_value is None


@dataclass
class ControllerInputState:
    button_mask: int = 0
    axis_value: int = 0

    def merge(self, sample: DecodedSample) -> bool:
        """Apply the non-None fields of `sample` in place. Returns True if anything changed."""
        changed = False
        if sample.button_mask is not None and sample.button_mask != self.button_mask:
            self.button_mask = sample.button_mask
            changed = True
        if sample.axis_value is not None and sample.axis_value != self.axis_value:
            self.axis_value = sample.axis_value
            changed = True
        return changed


@dataclass(frozen=True)
class StatusSnapshot:
    status_message: str
    is_connected: bool
    button_state: int
    axis_state: int


# Normalized watcher events

@dataclass(frozen=True)
class DeviceMatched:
    handle: Any = None  # hidapi path, or whatever identifies the device


@dataclass(frozen=True)
class DeviceRemoved:
    pass


@dataclass(frozen=True)
class ReportReceived:
    data: bytes = b""
