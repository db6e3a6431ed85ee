"""Profile loading: YAML -> BridgeConfig

Every key is optional; missing sections fall back to the defaults below, which
describe a Guitar Hero Live dongle reporting 27-byte frames.
"""
import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

import yaml

from core.errors import ConfigError

LOG = logging.getLogger("guitarbridge.config")

# HID usage page / usage id for "generic desktop / gamepad"
USAGE_PAGE_GENERIC_DESKTOP = 0x01
USAGE_GAMEPAD = 0x05

FRAMING_MODES = ("frame", "accumulate")
AXIS_POLICY_MODES = ("suppress_sentinel", "allow_set", "none")


@dataclass
class DeviceFilter:
    usage_page: int = USAGE_PAGE_GENERIC_DESKTOP
    usage: int = USAGE_GAMEPAD
    vendor_id: Optional[int] = None
    product_id: Optional[int] = None

    def matches(self, info: dict) -> bool:
        """True if a `hid.enumerate()` entry describes a controller we want."""
        if info.get("usage_page") != self.usage_page or info.get("usage") != self.usage:
            return False
        if self.vendor_id is not None and info.get("vendor_id") != self.vendor_id:
            return False
        if self.product_id is not None and info.get("product_id") != self.product_id:
            return False
        return True


@dataclass
class AxisPolicy:
    mode: str = "suppress_sentinel"
    sentinel: int = -128
    allow: FrozenSet[int] = frozenset({-1, 0})


@dataclass
class ReportProfile:
    frame_length: int = 27
    button_offset: int = 0
    axis_offset: int = 4
    framing: str = "frame"
    axis_policy: AxisPolicy = field(default_factory=AxisPolicy)


@dataclass
class WatcherSettings:
    read_size: int = 64
    read_timeout_ms: int = 100
    rescan_interval: float = 1.0


@dataclass
class BridgeConfig:
    device: DeviceFilter = field(default_factory=DeviceFilter)
    report: ReportProfile = field(default_factory=ReportProfile)
    watcher: WatcherSettings = field(default_factory=WatcherSettings)
    reset_on_reconnect: bool = False

    @classmethod
    def from_dict(cls, data) -> "BridgeConfig":
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"profile must be a mapping, got {type(data).__name__}")
        try:
            dev = data.get("device") or {}
            rep = data.get("report") or {}
            pol = data.get("axis_policy") or {}
            ses = data.get("session") or {}
            wat = data.get("watcher") or {}

            device = DeviceFilter(
                usage_page=_as_int(dev.get("usage_page", USAGE_PAGE_GENERIC_DESKTOP)),
                usage=_as_int(dev.get("usage", USAGE_GAMEPAD)),
                vendor_id=_optional_int(dev.get("vendor_id")),
                product_id=_optional_int(dev.get("product_id")),
            )
            policy = AxisPolicy(
                mode=str(pol.get("mode", "suppress_sentinel")),
                sentinel=int(pol.get("sentinel", -128)),
                allow=frozenset(int(v) for v in pol.get("allow", (-1, 0))),
            )
            report = ReportProfile(
                frame_length=int(rep.get("frame_length", 27)),
                button_offset=int(rep.get("button_offset", 0)),
                axis_offset=int(rep.get("axis_offset", 4)),
                framing=str(rep.get("framing", "frame")),
                axis_policy=policy,
            )
            watcher = WatcherSettings(
                read_size=int(wat.get("read_size", 64)),
                read_timeout_ms=int(wat.get("read_timeout_ms", 100)),
                rescan_interval=float(wat.get("rescan_interval", 1.0)),
            )
            reset = ses.get("reset_on_reconnect", False)
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigError(f"invalid profile: {e}") from e

        if not isinstance(reset, bool):
            raise ConfigError(f"session.reset_on_reconnect must be true or false, got {reset!r}")

        cfg = cls(device=device, report=report, watcher=watcher, reset_on_reconnect=reset)
        cfg.validate()
        return cfg

    @classmethod
    def load(cls, path: str) -> "BridgeConfig":
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"{path}: {e}") from e
        LOG.info("loaded profile %s", path)
        return cls.from_dict(data)

    def validate(self):
        rep = self.report
        if rep.frame_length < 1:
            raise ConfigError("report.frame_length must be positive")
        for name in ("button_offset", "axis_offset"):
            off = getattr(rep, name)
            if not 0 <= off < rep.frame_length:
                raise ConfigError(f"report.{name}={off} lies outside a {rep.frame_length}-byte frame")
        if rep.framing not in FRAMING_MODES:
            raise ConfigError(f"report.framing must be one of {FRAMING_MODES}, got {rep.framing!r}")
        if rep.axis_policy.mode not in AXIS_POLICY_MODES:
            raise ConfigError(f"axis_policy.mode must be one of {AXIS_POLICY_MODES}, got {rep.axis_policy.mode!r}")
        for v in set(rep.axis_policy.allow) | {rep.axis_policy.sentinel}:
            if not -128 <= v <= 127:
                raise ConfigError(f"axis value {v} does not fit a signed byte")
        for name in ("read_size", "read_timeout_ms", "rescan_interval"):
            if getattr(self.watcher, name) <= 0:
                raise ConfigError(f"watcher.{name} must be positive, got {getattr(self.watcher, name)}")
        if self.watcher.read_size < rep.frame_length and rep.framing == "frame":
            LOG.warning("watcher.read_size (%d) is smaller than the frame (%d); every report will be rejected",
                        self.watcher.read_size, rep.frame_length)


def _as_int(value):
    # YAML gives strings for quoted hex like "0x1430"
    if isinstance(value, str):
        return int(value, 0)
    return int(value)


def _optional_int(value):
    if value is None:
        return None
    return _as_int(value)
