"""Guitar controller watcher using hidapi

Finds the controller by HID usage (generic desktop / gamepad), opens it by
path and feeds the state machine with:

  DeviceMatched(path)       controller opened
  ReportReceived(bytes)     one raw input report
  DeviceRemoved()           read failed (unplugged), reinitialize() or stop()

Everything happens on one worker thread, so events reach the machine in the
order hidapi produced them. `reinitialize()` only raises a flag; the worker
tears down and rediscovers before its next read.
"""
import threading
import time
import logging

try:
    import hid
except Exception:
    hid = None

from core.config import BridgeConfig
from core.errors import DeviceUnavailable
from core.reader import DeviceWatcher
from core.state import DeviceMatched, DeviceRemoved, ReportReceived

LOG = logging.getLogger("guitarbridge.watcher")


class GuitarWatcher(DeviceWatcher):
    def __init__(self, machine, config: BridgeConfig = None, backend=None):
        self._machine = machine
        self._config = config or BridgeConfig()
        self._hid = backend if backend is not None else hid
        self._t = None
        self._lifecycle = threading.RLock()
        self._stop = threading.Event()
        self._reinit = threading.Event()
        self._device = None
        self._path = None
        self._seen = set()
        self._next_scan = 0.0
        self._unavailable = False

    @property
    def path(self):
        return self._path

    def start(self):
        """Start the event lane thread. No-op if it is already running."""
        with self._lifecycle:
            if self._t and self._t.is_alive():
                return
            self._stop.clear()
            self._t = threading.Thread(target=self._loop, name="GuitarWatcher", daemon=True)
            self._t.start()

    def stop(self):
        """Stop the event lane, release the device and report its removal."""
        with self._lifecycle:
            self._stop.set()
            if self._t:
                self._t.join(timeout=1.0)
            self._teardown()

    def reinitialize(self):
        """Drop the current device (if any) and rediscover. Safe from any thread."""
        LOG.info("reinitialize requested")
        self._reinit.set()
        self.start()

    def _loop(self):
        self._machine.waiting()
        while not self._stop.is_set():
            try:
                self.step()
            except Exception:
                LOG.exception("watcher iteration failed; dropping device")
                self._teardown()
                self._stop.wait(self._config.watcher.rescan_interval)

    def step(self):
        """Run one iteration of the event lane."""
        if self._reinit.is_set():
            self._reinit.clear()
            self._teardown()
            self._seen.clear()
            self._next_scan = 0.0
            self._unavailable = False
            self._machine.waiting()

        settings = self._config.watcher
        now = time.monotonic()

        if self._device is None:
            if now < self._next_scan:
                self._stop.wait(min(0.1, self._next_scan - now))
                return
            self._next_scan = now + settings.rescan_interval
            try:
                self._discover()
            except DeviceUnavailable as e:
                self._unavailable = True
                self._machine.unavailable(e)
                return
            if self._unavailable:
                # enumeration recovered; a match has already set the connected status
                self._unavailable = False
                if self._device is None:
                    self._machine.waiting()
            return

        try:
            data = self._device.read(settings.read_size, timeout_ms=settings.read_timeout_ms)
        except (OSError, IOError, ValueError) as e:
            LOG.warning("read from %r failed (%s); treating as removal", self._path, e)
            self._teardown()
            return

        if data:
            self._machine.handle(ReportReceived(bytes(data)))

        if now >= self._next_scan:
            self._next_scan = now + settings.rescan_interval
            try:
                self._announce_others(self._matching())
            except DeviceUnavailable as e:
                LOG.debug("rescan while connected failed: %s", e)

    def _matching(self):
        if self._hid is None:
            raise DeviceUnavailable("hidapi not installed")
        try:
            infos = self._hid.enumerate()
        except (OSError, IOError) as e:
            raise DeviceUnavailable(f"HID enumeration failed: {e}") from e
        flt = self._config.device
        return [info for info in infos if flt.matches(info)]

    def _discover(self):
        matches = self._matching()
        if not matches:
            LOG.debug("no controller matching usage %#04x/%#04x",
                      self._config.device.usage_page, self._config.device.usage)
            return

        info = matches[0]
        path = info["path"]
        device = self._hid.device()
        try:
            device.open_path(path)
        except (OSError, IOError) as e:
            raise DeviceUnavailable(f"cannot open {path!r}: {e}") from e

        self._device = device
        self._path = path
        self._seen.add(path)
        LOG.info("Found controller via hidapi: %s %s (VID:%04x, PID:%04x)",
                 info.get("manufacturer_string") or "", info.get("product_string") or "",
                 info.get("vendor_id", 0), info.get("product_id", 0))
        self._machine.handle(DeviceMatched(path))
        self._announce_others(matches[1:])

    def _announce_others(self, matches):
        # The machine keeps the first session; extra controllers are reported once each
        for info in matches:
            path = info["path"]
            if path == self._path or path in self._seen:
                continue
            self._seen.add(path)
            self._machine.handle(DeviceMatched(path))

    def _teardown(self):
        """Close the device and report removal if one was open."""
        was_open = self._device is not None
        self._close()
        if was_open:
            self._machine.handle(DeviceRemoved())

    def _close(self):
        device, self._device = self._device, None
        if self._path is not None:
            self._seen.discard(self._path)
        self._path = None
        if device is None:
            return
        try:
            device.close()
        except (OSError, IOError) as e:
            LOG.debug("close failed: %s", e)
