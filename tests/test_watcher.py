import threading
import time

from core.config import BridgeConfig, WatcherSettings
from core.machine import STATUS_CONNECTED, STATUS_WAITING, ConnectionStateMachine
from core.state import ControllerInputState, DeviceMatched, DeviceRemoved, ReportReceived
from devices.guitar_hidapi import GuitarWatcher


def gamepad(path, vid=0x1430, pid=0x0070):
    return {
        "path": path,
        "vendor_id": vid,
        "product_id": pid,
        "usage_page": 0x01,
        "usage": 0x05,
        "manufacturer_string": "Activision",
        "product_string": "Guitar Hero Live",
    }


class FakeDevice:
    def __init__(self, backend):
        self._backend = backend
        self.path = None
        self.closed = False

    def open_path(self, path):
        if path in self._backend.unopenable:
            raise OSError("open failed")
        self.path = path

    def read(self, max_length, timeout_ms=0):
        reports = self._backend.reports
        if not reports:
            time.sleep(0.001)
            return []
        item = reports.pop(0)
        if isinstance(item, Exception):
            raise item
        return list(item)

    def close(self):
        self.closed = True


class FakeHid:
    def __init__(self, devices=None):
        self.devices = list(devices or [])
        self.reports = []
        self.unopenable = set()
        self.opened = []
        self.enumerate_error = None

    def enumerate(self, vendor_id=0, product_id=0):
        if self.enumerate_error:
            raise self.enumerate_error
        return list(self.devices)

    def device(self):
        dev = FakeDevice(self)
        self.opened.append(dev)
        return dev


class RecordingMachine(ConnectionStateMachine):
    def __init__(self):
        super().__init__()
        self.events = []

    def handle(self, event):
        self.events.append(event)
        super().handle(event)


def frame(buttons, strum):
    data = [0] * 27
    data[0] = buttons
    data[4] = strum
    return data


def make_watcher(backend, machine=None):
    cfg = BridgeConfig(watcher=WatcherSettings(rescan_interval=0.0))
    machine = machine or RecordingMachine()
    return GuitarWatcher(machine, cfg, backend=backend), machine


def test_discovers_and_delivers_reports_in_order():
    backend = FakeHid([{"path": b"kbd", "usage_page": 1, "usage": 6}, gamepad(b"gh")])
    backend.reports = [frame(0x01, 0xFF), frame(0x03, 0xFF)]
    watcher, machine = make_watcher(backend)

    watcher.step()
    watcher.step()
    watcher.step()

    assert machine.events == [
        DeviceMatched(b"gh"),
        ReportReceived(bytes(frame(0x01, 0xFF))),
        ReportReceived(bytes(frame(0x03, 0xFF))),
    ]
    assert machine.input_state == ControllerInputState(3, -1)
    assert backend.opened[0].path == b"gh"


def test_no_match_stays_disconnected():
    backend = FakeHid([{"path": b"kbd", "usage_page": 1, "usage": 6}])
    watcher, machine = make_watcher(backend)
    watcher.step()
    assert machine.events == []
    assert machine.is_connected is False


def test_read_error_is_removal():
    backend = FakeHid([gamepad(b"gh")])
    backend.reports = [frame(0x01, 0x00), OSError("read error")]
    watcher, machine = make_watcher(backend)

    watcher.step()
    watcher.step()
    backend.devices = []
    watcher.step()

    assert machine.events[-1] == DeviceRemoved()
    assert machine.is_connected is False
    assert backend.opened[0].closed is True
    assert machine.input_state == ControllerInputState(1, 0)


def test_second_controller_is_announced_once():
    backend = FakeHid([gamepad(b"gh"), gamepad(b"gh2")])
    watcher, machine = make_watcher(backend)

    watcher.step()
    watcher.step()
    watcher.step()

    assert machine.events == [DeviceMatched(b"gh"), DeviceMatched(b"gh2")]
    assert machine.session == b"gh"


def test_enumeration_failure_reported_as_status():
    backend = FakeHid()
    backend.enumerate_error = OSError("no HID subsystem")
    watcher, machine = make_watcher(backend)
    watcher.step()
    assert machine.status_message.startswith("HID subsystem unavailable")
    assert machine.is_connected is False


def test_open_failure_reported_as_status():
    backend = FakeHid([gamepad(b"gh")])
    backend.unopenable.add(b"gh")
    watcher, machine = make_watcher(backend)
    watcher.step()
    assert "cannot open" in machine.status_message
    assert machine.events == []


def test_missing_hidapi_reported_as_status(monkeypatch):
    import devices.guitar_hidapi as mod

    monkeypatch.setattr(mod, "hid", None)
    machine = ConnectionStateMachine()
    watcher = GuitarWatcher(machine, BridgeConfig(watcher=WatcherSettings(rescan_interval=0.0)))
    watcher.step()
    assert machine.status_message == "HID subsystem unavailable: hidapi not installed"


def test_reinitialize_while_connected():
    backend = FakeHid([gamepad(b"gh")])
    watcher, machine = make_watcher(backend)
    seen = []
    machine.subscribe(seen.append)

    watcher.step()
    assert machine.is_connected is True

    # flag only; the lane thread is not running in this test
    watcher._reinit.set()
    watcher.step()
    watcher.step()

    assert machine.events == [DeviceMatched(b"gh"), DeviceRemoved(), DeviceMatched(b"gh")]
    connected = [s.is_connected for s in seen]
    assert connected == [True, False, False, True]
    assert seen[2].status_message == STATUS_WAITING
    assert backend.opened[0].closed is True
    assert len(backend.opened) == 2


def test_reinitialize_while_disconnected_has_no_removal():
    backend = FakeHid()
    watcher, machine = make_watcher(backend)
    watcher._reinit.set()
    watcher.step()
    assert machine.events == []
    assert machine.status_message == STATUS_WAITING


def test_start_reinitialize_stop_thread():
    backend = FakeHid()
    watcher, machine = make_watcher(backend)
    watcher.start()
    watcher.reinitialize()
    watcher.stop()
    assert machine.is_connected is False


class SnapshotLog:
    """Subscriber that lets a test wait for snapshots published by the lane thread."""

    def __init__(self):
        self.snaps = []
        self._cond = threading.Condition()

    def __call__(self, snap):
        with self._cond:
            self.snaps.append(snap)
            self._cond.notify_all()

    def wait_for(self, predicate, timeout=2.0):
        with self._cond:
            return self._cond.wait_for(lambda: predicate(self.snaps), timeout)


def connected_now(snaps):
    return bool(snaps) and snaps[-1].is_connected


def test_reinitialize_on_running_lane_reconnects():
    backend = FakeHid([gamepad(b"gh")])
    watcher, machine = make_watcher(backend)
    log = SnapshotLog()
    machine.subscribe(log)

    watcher.start()
    try:
        assert log.wait_for(connected_now)
        mark = len(log.snaps)
        watcher.reinitialize()
        assert log.wait_for(lambda s: len(s) > mark and not s[mark].is_connected and s[-1].is_connected)
    finally:
        watcher.stop()

    assert [s.is_connected for s in log.snaps[mark:mark + 2]] == [False, False]
    assert machine.events == [DeviceMatched(b"gh"), DeviceRemoved(), DeviceMatched(b"gh"), DeviceRemoved()]


def test_stop_reports_removal_and_restart_reconnects():
    backend = FakeHid([gamepad(b"gh")])
    watcher, machine = make_watcher(backend)
    log = SnapshotLog()
    machine.subscribe(log)

    watcher.start()
    assert log.wait_for(connected_now)
    watcher.stop()

    assert machine.is_connected is False
    assert machine.session is None
    assert backend.opened[0].closed is True
    assert machine.events == [DeviceMatched(b"gh"), DeviceRemoved()]

    watcher.reinitialize()
    try:
        assert log.wait_for(connected_now)
    finally:
        watcher.stop()
    assert machine.events == [DeviceMatched(b"gh"), DeviceRemoved(), DeviceMatched(b"gh"), DeviceRemoved()]


def test_stop_without_lane_reports_removal():
    backend = FakeHid([gamepad(b"gh")])
    watcher, machine = make_watcher(backend)
    watcher.step()
    watcher.stop()
    assert machine.events == [DeviceMatched(b"gh"), DeviceRemoved()]
    assert machine.is_connected is False


class CountingWatcher(GuitarWatcher):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.lanes = 0
        self._count_lock = threading.Lock()

    def _loop(self):
        with self._count_lock:
            self.lanes += 1
        super()._loop()


def test_concurrent_reinitialize_starts_one_lane():
    machine = ConnectionStateMachine()
    machine.subscribe(lambda snap: time.sleep(0.05))
    cfg = BridgeConfig(watcher=WatcherSettings(rescan_interval=0.01))
    watcher = CountingWatcher(machine, cfg, backend=FakeHid())
    barrier = threading.Barrier(8)

    def call():
        barrier.wait()
        watcher.reinitialize()

    callers = [threading.Thread(target=call) for _ in range(8)]
    for t in callers:
        t.start()
    for t in callers:
        t.join()
    time.sleep(0.05)
    watcher.stop()

    assert watcher.lanes == 1


def test_status_returns_to_waiting_after_enumeration_recovers():
    backend = FakeHid()
    backend.enumerate_error = OSError("transient")
    watcher, machine = make_watcher(backend)

    watcher.step()
    assert machine.status_message.startswith("HID subsystem unavailable")

    backend.enumerate_error = None
    watcher.step()
    assert machine.status_message == STATUS_WAITING


def test_recovery_with_controller_present_reports_connected():
    backend = FakeHid([gamepad(b"gh")])
    backend.enumerate_error = OSError("transient")
    watcher, machine = make_watcher(backend)

    watcher.step()
    backend.enumerate_error = None
    watcher.step()
    assert machine.status_message == STATUS_CONNECTED
    assert machine.is_connected is True
