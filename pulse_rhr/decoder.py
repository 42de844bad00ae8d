"""Heart rate measurement decoder for the Bluetooth Heart Rate Measurement characteristic.

Decodes the Heart Rate Measurement characteristic (0x2A37) into an immutable
reading. Only the flags byte and the bpm value are required; the optional
sensor contact, energy expended and RR interval fields are decoded when their
flag bits are set.
"""

import time
from dataclasses import dataclass

from .errors import TruncatedPayload


@dataclass(frozen=True)
class HeartRateReading:
    """A single decoded heart rate notification."""

    bpm: int
    source_timestamp: float  # time.monotonic() at arrival
    sensor_contact: bool | None = None  # None if not supported
    energy_expended: int | None = None  # Joules, if supported
    rr_intervals_ms: tuple[float, ...] = ()


def decode(payload: bytes, timestamp: float | None = None) -> HeartRateReading:
    """Decode a raw Heart Rate Measurement payload.

    Args:
        payload: Raw bytes from the measurement characteristic
        timestamp: Monotonic arrival time, defaults to now

    Returns:
        HeartRateReading with decoded values

    Raises:
        TruncatedPayload: If the payload is shorter than its flags require
    """
    if not payload:
        raise TruncatedPayload("Empty HR payload")

    flags = payload[0]

    # Bit 0: HR format (0 = uint8, 1 = uint16)
    is_16_bit = flags & 0b1 == 1
    # Bit 2: Sensor contact feature supported
    has_sensor_contact = flags & 0b100 == 0b100
    # Bit 3: Energy expended present
    has_energy = flags & 0b1000 == 0b1000
    # Bit 4: RR intervals present
    has_rr = flags & 0b10000 == 0b10000

    min_len = 1 + (2 if is_16_bit else 1)
    if len(payload) < min_len:
        raise TruncatedPayload(f"HR payload too short: {len(payload)} bytes, need {min_len}")

    if is_16_bit:
        bpm = int.from_bytes(payload[1:3], "little")
    else:
        bpm = payload[1]
    offset = min_len

    sensor_contact = None
    if has_sensor_contact:
        sensor_contact = flags & 0b10 == 0b10

    energy_expended = None
    if has_energy:
        if len(payload) < offset + 2:
            raise TruncatedPayload(f"HR payload too short for energy field: {len(payload)} bytes")
        energy_expended = int.from_bytes(payload[offset : offset + 2], "little")
        offset += 2

    # RR intervals are in 1/1024 s; a trailing odd byte is ignored
    rr_intervals_ms: list[float] = []
    if has_rr:
        while offset + 2 <= len(payload):
            rr_raw = int.from_bytes(payload[offset : offset + 2], "little")
            rr_intervals_ms.append(rr_raw * 1000.0 / 1024.0)
            offset += 2

    return HeartRateReading(
        bpm=bpm,
        source_timestamp=time.monotonic() if timestamp is None else timestamp,
        sensor_contact=sensor_contact,
        energy_expended=energy_expended,
        rr_intervals_ms=tuple(rr_intervals_ms),
    )
