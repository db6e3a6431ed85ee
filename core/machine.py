"""Connection state machine for a single guitar controller

Owns ConnectionState and ControllerInputState. Watchers feed it events through
`handle()`; observers receive a StatusSnapshot after every accepted change.
"""
import logging
import threading

from core.decoder import ReportDecoder
from core.errors import DeviceUnavailable, DuplicateMatch, MalformedReport
from core.state import (
    ConnectionState,
    ControllerInputState,
    DeviceMatched,
    DeviceRemoved,
    ReportReceived,
    StatusSnapshot,
)

LOG = logging.getLogger("guitarbridge.machine")

STATUS_INITIALIZING = "Initializing..."
STATUS_WAITING = "Waiting for Guitar Hero controller to connect..."
STATUS_CONNECTED = "Guitar Hero controller connected! Listening for inputs..."
STATUS_DISCONNECTED = "Guitar Hero controller disconnected."


class ConnectionStateMachine:
    def __init__(self, decoder: ReportDecoder = None, reset_on_reconnect: bool = False):
        self._decoder = decoder or ReportDecoder()
        self._reset_on_reconnect = reset_on_reconnect
        self._lock = threading.RLock()
        self._subs = []
        self._state = ConnectionState.DISCONNECTED
        self._input = ControllerInputState()
        self._session = None
        self._status = STATUS_INITIALIZING

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def session(self):
        """Handle of the device currently delivering reports, if any."""
        return self._session

    @property
    def input_state(self) -> ControllerInputState:
        with self._lock:
            return ControllerInputState(self._input.button_mask, self._input.axis_value)

    @property
    def status_message(self) -> str:
        return self._status

    def snapshot(self) -> StatusSnapshot:
        with self._lock:
            return StatusSnapshot(
                status_message=self._status,
                is_connected=self.is_connected,
                button_state=self._input.button_mask,
                axis_state=self._input.axis_value,
            )

    def subscribe(self, callback):
        """Register a callback to receive StatusSnapshot updates."""
        self._subs.append(callback)

    def handle(self, event):
        """Apply one watcher event. Never raises for device-side problems."""
        with self._lock:
            try:
                if isinstance(event, DeviceMatched):
                    self._on_matched(event)
                elif isinstance(event, DeviceRemoved):
                    self._on_removed()
                elif isinstance(event, ReportReceived):
                    self._on_report(event)
                else:
                    raise TypeError(f"unknown event {event!r}")
            except MalformedReport as e:
                LOG.warning("dropping report: %s", e)
            except DuplicateMatch as e:
                LOG.info("%s", e)

    def waiting(self):
        """Discovery has been (re)issued."""
        with self._lock:
            self._set_status(STATUS_WAITING)

    def unavailable(self, error: DeviceUnavailable):
        with self._lock:
            LOG.error("HID subsystem unavailable: %s", error)
            self._set_status(f"HID subsystem unavailable: {error}")

    def _on_matched(self, event: DeviceMatched):
        if self._state is ConnectionState.CONNECTED:
            raise DuplicateMatch(event.handle, self._session)
        self._state = ConnectionState.CONNECTED
        self._session = event.handle
        self._decoder.reset()
        if self._reset_on_reconnect:
            self._input = ControllerInputState()
        LOG.info("controller connected: %r", event.handle)
        self._set_status(STATUS_CONNECTED)

    def _on_removed(self):
        if self._state is ConnectionState.DISCONNECTED:
            LOG.debug("removal while disconnected ignored")
            return
        LOG.info("controller removed: %r", self._session)
        self._state = ConnectionState.DISCONNECTED
        self._session = None
        self._decoder.reset()
        self._set_status(STATUS_DISCONNECTED)

    def _on_report(self, event: ReportReceived):
        if self._state is ConnectionState.DISCONNECTED:
            LOG.debug("report without an active session ignored (%d bytes)", len(event.data))
            return
        sample = self._decoder.feed(event.data, self._input)
        if sample is None or sample.is_empty:
            return
        if sample.button_mask is not None:
            LOG.debug("button mask -> %d", sample.button_mask)
        if sample.axis_value is not None:
            LOG.debug("strum bar -> %d", sample.axis_value)
        if self._input.merge(sample):
            self._set_status(f"Button: {self._input.button_mask}, Strum bar: {self._input.axis_value}")

    def _set_status(self, message: str):
        self._status = message
        self._emit(self.snapshot())

    def _emit(self, snap: StatusSnapshot):
        for cb in self._subs:
            try:
                cb(snap)
            except Exception:
                LOG.exception("subscriber callback failed")
