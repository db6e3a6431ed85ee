"""Entry point for guitarbridge

Watches for a Guitar Hero controller and prints its connection status and
button/strum bar state. Send SIGHUP to reinitialize the driver.
"""
import argparse
import logging
import signal
import threading

from core.config import BridgeConfig
from core.decoder import ReportDecoder
from core.machine import ConnectionStateMachine
from devices.guitar_hidapi import GuitarWatcher

LOG = logging.getLogger("guitarbridge")


def format_snapshot(snap):
    if snap.is_connected:
        return f"[connected] {snap.status_message} | buttons={snap.button_state:08b} strum={snap.axis_state}"
    return f"[not connected] {snap.status_message}"


def main():
    parser = argparse.ArgumentParser(description="guitarbridge: Guitar Hero HID controller monitor")
    parser.add_argument("--profile", help="YAML device/report profile (defaults built in)")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        help="Logging level (default: INFO)")
    parser.add_argument("--log-format", default="%(levelname)s:%(name)s:%(message)s",
                        help="Logging format string (default: %(levelname)s:%(name)s:%(message)s)")
    parser.add_argument("--debug-modules", nargs="*", default=[],
                        help="Modules to set to DEBUG level (e.g., 'decoder', 'machine', 'watcher')")
    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, args.log_level), format=args.log_format)
    for module in args.debug_modules:
        logging.getLogger(f"guitarbridge.{module}").setLevel(logging.DEBUG)

    config = BridgeConfig.load(args.profile) if args.profile else BridgeConfig()
    machine = ConnectionStateMachine(ReportDecoder(config.report),
                                     reset_on_reconnect=config.reset_on_reconnect)
    watcher = GuitarWatcher(machine, config)

    machine.subscribe(lambda snap: print(format_snapshot(snap), flush=True))

    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, lambda signum, frame: watcher.reinitialize())

    stop_event = threading.Event()
    try:
        watcher.start()
        LOG.info("guitarbridge running, press Ctrl+C to stop")
        while not stop_event.is_set():
            stop_event.wait(0.5)
    except KeyboardInterrupt:
        LOG.info("shutdown requested")
    finally:
        watcher.stop()


if __name__ == "__main__":
    main()
