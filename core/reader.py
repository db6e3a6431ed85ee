"""Base watcher abstraction"""
import abc


class DeviceWatcher(abc.ABC):
    """Turns platform HID activity into DeviceMatched / DeviceRemoved / ReportReceived."""

    @abc.abstractmethod
    def start(self):
        raise NotImplementedError

    @abc.abstractmethod
    def stop(self):
        raise NotImplementedError

    @abc.abstractmethod
    def reinitialize(self):
        raise NotImplementedError
