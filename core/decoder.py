"""Guitar controller report decoding

A report carries the fret/button bitmask at `button_offset` (byte 0) and the
strum bar at `axis_offset` (byte 4) as a signed byte:

    0x00 -> 0      strum bar at rest
    0xFF -> -1     strum down
    0x80 -> -128   neutral/reset value, also sent while frets are pressed

`decode` is pure: it only compares against the prior accepted state and never
touches it. `ReportFramer` decides what a "report" is before decoding.
"""
import logging
from typing import Optional

from core.config import ReportProfile
from core.errors import MalformedReport
from core.state import ControllerInputState, DecodedSample

LOG = logging.getLogger("guitarbridge.decoder")


def to_int8(byte: int) -> int:
    """Reinterpret an unsigned byte as two's-complement."""
    byte &= 0xFF
    return byte - 0x100 if byte & 0x80 else byte


def decode(raw, prior: ControllerInputState, profile: ReportProfile) -> DecodedSample:
    """Turn one full frame into the fields that differ from `prior`.

    Raises MalformedReport for empty or short frames.
    """
    if not raw:
        raise MalformedReport("empty report")
    if len(raw) < profile.frame_length:
        raise MalformedReport(f"short report: {len(raw)} bytes, expected {profile.frame_length}")

    buttons = raw[profile.button_offset] & 0xFF
    axis = to_int8(raw[profile.axis_offset])

    sample = DecodedSample()
    if buttons != prior.button_mask:
        sample.button_mask = buttons
    if axis != prior.axis_value and _axis_accepted(axis, sample.button_mask is not None, profile):
        sample.axis_value = axis
    return sample


def _axis_accepted(axis: int, buttons_changed: bool, profile: ReportProfile) -> bool:
    policy = profile.axis_policy
    if policy.mode == "suppress_sentinel":
        # The strum bar jumps to the sentinel when frets are pressed
        if buttons_changed and axis == policy.sentinel:
            LOG.debug("axis %d suppressed (button change in same report)", axis)
            return False
        return True
    if policy.mode == "allow_set":
        if axis not in policy.allow:
            LOG.debug("axis %d dropped (not in %s)", axis, sorted(policy.allow))
            return False
        return True
    return True


class ReportFramer:
    """Turns delivered reports into decodable frames.

    `frame` mode passes each report straight through. `accumulate` mode
    appends to a buffer until it holds a full frame, decodes from the start of
    the buffer and clears it.
    """

    def __init__(self, profile: ReportProfile):
        self._profile = profile
        self._buffer = bytearray()

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def reset(self):
        self._buffer.clear()

    def push(self, raw) -> Optional[bytes]:
        """Return a frame ready for decoding, or None if more bytes are needed."""
        if not raw:
            raise MalformedReport("empty report")
        if self._profile.framing != "accumulate":
            return bytes(raw)
        self._buffer.extend(raw)
        if len(self._buffer) < self._profile.frame_length:
            LOG.debug("buffered %d/%d bytes", len(self._buffer), self._profile.frame_length)
            return None
        frame = bytes(self._buffer)
        self._buffer.clear()
        return frame


class ReportDecoder:
    def __init__(self, profile: Optional[ReportProfile] = None):
        self.profile = profile or ReportProfile()
        self.framer = ReportFramer(self.profile)

    def reset(self):
        self.framer.reset()

    def feed(self, raw, prior: ControllerInputState) -> Optional[DecodedSample]:
        """Frame and decode `raw`. None means the framer is still waiting for bytes."""
        frame = self.framer.push(raw)
        if frame is None:
            return None
        return decode(frame, prior, self.profile)
