"""Declarative lifecycle engine for bare-metal devices."""

from .config import EngineSettings, EngineSettingsError
from .devices import DeviceRecord, DeviceSpec, collect_violations, ensure_valid, validate
from .engine import DeviceEngine, build_engine
from .lifecycle import DeviceGone, RefreshResult, TeardownResult, check_destroyed

__all__ = [
    "DeviceEngine",
    "DeviceGone",
    "DeviceRecord",
    "DeviceSpec",
    "EngineSettings",
    "EngineSettingsError",
    "RefreshResult",
    "TeardownResult",
    "build_engine",
    "check_destroyed",
    "collect_violations",
    "ensure_valid",
    "validate",
]
