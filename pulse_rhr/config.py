"""Configuration file loading and defaults.

Values come from the first TOML file found in ``CONFIG_PATHS`` (or an explicit
path from ``--config``). Missing sections and keys keep their dataclass
defaults. A file that cannot be parsed or holds out-of-range values is
reported and ignored in favour of the defaults.
"""

import logging
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path

from .aggregator import DEFAULT_DURATION_SECONDS
from .ble import CONTROL_CHAR_UUID, PROFILE_CHAR_UUID

logger = logging.getLogger(__name__)

CONFIG_PATHS = (
    Path("config.toml"),
    Path("~/.config/pulse-rhr/config.toml"),
)


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8765
    broadcast_timeout: float = 0.5
    log_level: str = "INFO"


@dataclass
class BLEConfig:
    scan_timeout: float = 5.0
    connect_timeout: float = 10.0


@dataclass
class DeviceConfig:
    """Which device to use and where its optional characteristics live."""

    address: str = ""
    name_filter: str = ""
    profile_char_uuid: str = PROFILE_CHAR_UUID
    control_char_uuid: str = CONTROL_CHAR_UUID


@dataclass
class MeasureConfig:
    duration_seconds: int = DEFAULT_DURATION_SECONDS
    tick_interval: float = 1.0


@dataclass
class Config:
    server: ServerConfig = field(default_factory=ServerConfig)
    ble: BLEConfig = field(default_factory=BLEConfig)
    device: DeviceConfig = field(default_factory=DeviceConfig)
    measure: MeasureConfig = field(default_factory=MeasureConfig)

    def validate(self) -> None:
        """Check value types and ranges.

        Raises:
            ValueError: Naming the first offending key
        """
        # bool is an int subclass, so it is rejected explicitly
        for key, value in (("server.port", self.server.port), ("measure.duration_seconds", self.measure.duration_seconds)):
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{key} must be an integer, got {value!r}")
        for key, value in (
            ("server.broadcast_timeout", self.server.broadcast_timeout),
            ("ble.scan_timeout", self.ble.scan_timeout),
            ("ble.connect_timeout", self.ble.connect_timeout),
            ("measure.tick_interval", self.measure.tick_interval),
        ):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{key} must be a number, got {value!r}")

        if not 0 < self.server.port < 65536:
            raise ValueError(f"server.port out of range: {self.server.port}")
        checks = {
            "server.broadcast_timeout": self.server.broadcast_timeout,
            "ble.scan_timeout": self.ble.scan_timeout,
            "ble.connect_timeout": self.ble.connect_timeout,
            "measure.duration_seconds": self.measure.duration_seconds,
            "measure.tick_interval": self.measure.tick_interval,
        }
        for key, value in checks.items():
            if value <= 0:
                raise ValueError(f"{key} must be positive, got {value}")


def _find_config(path: Path | None) -> Path | None:
    if path is not None:
        return path.expanduser()
    for candidate in CONFIG_PATHS:
        candidate = candidate.expanduser()
        if candidate.exists():
            return candidate
    return None


def load_config(path: Path | None = None) -> Config:
    """Load config from file, with defaults for missing values.

    Args:
        path: Explicit config file; when omitted the default locations are searched
    """
    config_path = _find_config(path)
    if config_path is None:
        return Config()

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
        config = _parse_config(data)
        config.validate()
    except OSError as e:
        logger.warning("Cannot read config '%s': %s. Using defaults.", config_path, e)
        return Config()
    except (tomllib.TOMLDecodeError, TypeError, ValueError) as e:
        logger.warning("Invalid config '%s': %s. Using defaults.", config_path, e)
        return Config()

    logger.debug("Loaded config from %s", config_path)
    return config


def _section(cls, data: dict, name: str):
    values = data.get(name, {})
    if not isinstance(values, dict):
        raise TypeError(f"[{name}] must be a table")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise TypeError(f"Unknown key(s) in [{name}]: {', '.join(unknown)}")
    return cls(**values)


def _parse_config(data: dict) -> Config:
    """Parse TOML dict into Config dataclass.

    Uses dataclass defaults for missing values. Unknown top-level sections are
    ignored; unknown keys inside a known section raise TypeError.
    """
    return Config(
        server=_section(ServerConfig, data, "server"),
        ble=_section(BLEConfig, data, "ble"),
        device=_section(DeviceConfig, data, "device"),
        measure=_section(MeasureConfig, data, "measure"),
    )
