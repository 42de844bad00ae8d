"""Logging configuration."""

import logging
import sys

APP_LOGGER = "pulse_rhr"
BLE_LOGGER = "bleak"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"

VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _resolve_level(level: str) -> tuple[int, bool]:
    """Return (numeric level, whether the name was recognised)."""
    name = level.upper()
    if name not in VALID_LEVELS:
        return logging.INFO, False
    return getattr(logging, name), True


def setup_logging(level: str = "INFO", ble_debug: bool = False) -> None:
    """Configure logging for the application.

    The root logger stays at WARNING on stderr so bleak and websockets stay
    quiet; only the pulse_rhr tree follows the requested level.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        ble_debug: Also let bleak's transport logging through at DEBUG
    """
    numeric_level, known = _resolve_level(level)

    logging.basicConfig(
        level=logging.WARNING,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        stream=sys.stderr,
        force=True,
    )

    app_logger = logging.getLogger(APP_LOGGER)
    app_logger.setLevel(numeric_level)

    logging.getLogger(BLE_LOGGER).setLevel(logging.DEBUG if ble_debug else logging.NOTSET)

    if not known:
        app_logger.warning("Unknown log level '%s', defaulting to INFO", level)
