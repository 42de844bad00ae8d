"""BLE resting heart rate client with profile sync."""

from .aggregator import AggregateResult, MeasurementWindow, SampleAggregator
from .ble import Binding, ConnectionState, DeviceHandle, DeviceSession, scan_hr_devices
from .config import Config, load_config
from .controller import AuthState, LinkState, MeasureState, SessionController, Snapshot
from .decoder import HeartRateReading, decode
from .log import setup_logging
from .profile import Sex, SyncResult, UserProfile
from .server import PulseServer
from .timer import SessionTimer

__all__ = [
    "decode",
    "HeartRateReading",
    "SampleAggregator",
    "MeasurementWindow",
    "AggregateResult",
    "SessionTimer",
    "DeviceSession",
    "DeviceHandle",
    "Binding",
    "ConnectionState",
    "scan_hr_devices",
    "SessionController",
    "Snapshot",
    "AuthState",
    "LinkState",
    "MeasureState",
    "UserProfile",
    "Sex",
    "SyncResult",
    "Config",
    "load_config",
    "setup_logging",
    "PulseServer",
]
