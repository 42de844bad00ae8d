"""Shared test helpers for pulse_rhr tests."""

from __future__ import annotations

from pulse_rhr.ble import Binding, ConnectionState, DeviceHandle, HR_CHAR_UUID
from pulse_rhr.decoder import HeartRateReading
from pulse_rhr.errors import NotBound


def make_hr_packet(
    bpm: int,
    *,
    is_16bit: bool = False,
    sensor_contact: bool | None = None,
    energy: int | None = None,
    rr_intervals: list[int] | None = None,
) -> bytes:
    """Build a BLE HR measurement packet.

    Args:
        bpm: Heart rate in BPM
        is_16bit: If True, use 16-bit BPM format
        sensor_contact: None=not supported, True=detected, False=not detected
        energy: Energy expended in joules (if supported)
        rr_intervals: RR intervals in 1/1024 second units
    """
    flags = 0b1 if is_16bit else 0
    if sensor_contact is not None:
        flags |= 0b110 if sensor_contact else 0b100
    if energy is not None:
        flags |= 0b1000
    if rr_intervals:
        flags |= 0b10000

    data = bytearray([flags])
    data.extend(bpm.to_bytes(2 if is_16bit else 1, "little"))
    if energy is not None:
        data.extend(energy.to_bytes(2, "little"))
    for rr in rr_intervals or []:
        data.extend(rr.to_bytes(2, "little"))
    return bytes(data)


def make_reading(bpm: int, timestamp: float = 0.0) -> HeartRateReading:
    return HeartRateReading(bpm=bpm, source_timestamp=timestamp)


class FakeSession:
    """In-memory stand-in for DeviceSession used by controller tests."""

    def __init__(self, on_disconnect, *, can_sync: bool = True, can_control: bool = False):
        self.on_disconnect = on_disconnect
        self.state = ConnectionState.IDLE
        self.binding = Binding(
            notify_uuid=HR_CHAR_UUID,
            write_uuid="profile" if can_sync else None,
            control_uuid="control" if can_control else None,
        )
        self.on_reading = None
        self.discover_error: Exception | None = None
        self.connect_error: Exception | None = None
        self.sync_error: Exception | None = None
        self.synced: list = []
        self.commands: list[str] = []
        self.disconnect_calls = 0
        self.connected_handle = None

    @property
    def can_sync(self) -> bool:
        return self.binding.can_sync

    @property
    def can_control(self) -> bool:
        return self.binding.can_control

    async def discover(self, timeout=5.0, name_filter=None, select=None, **_):
        if self.discover_error:
            raise self.discover_error
        return DeviceHandle("AA:BB:CC:DD:EE:FF", "XIAO nRF52840 Sense")

    async def connect(self, handle):
        self.connected_handle = handle
        if self.connect_error:
            self.state = ConnectionState.DISCONNECTED
            raise self.connect_error
        self.state = ConnectionState.BOUND
        return self.binding

    async def subscribe(self, on_reading):
        self.on_reading = on_reading
        self.state = ConnectionState.CONNECTED

    async def read_device_name(self) -> str:
        return "XIAO nRF52840 Sense"

    async def disconnect(self):
        self.disconnect_calls += 1
        self.state = ConnectionState.DISCONNECTED
        self.on_reading = None

    async def sync_profile(self, profile):
        if not self.can_sync:
            raise NotBound("Device has no profile write characteristic")
        if self.sync_error:
            raise self.sync_error
        self.synced.append(profile)

    async def send_command(self, command):
        if not self.can_control:
            raise NotBound("Device has no control characteristic")
        self.commands.append(command)

    async def emit(self, bpm: int, timestamp: float = 0.0) -> None:
        """Deliver a decoded reading as a notification would."""
        if self.on_reading is not None:
            await self.on_reading(make_reading(bpm, timestamp))

    async def drop_link(self) -> None:
        """Simulate a remote disconnect."""
        self.state = ConnectionState.DISCONNECTED
        await self.on_disconnect()


class ManualTimer:
    """SessionTimer stand-in driven explicitly by the test."""

    def __init__(self):
        self.remaining: int | None = None
        self.running = False
        self.start_calls: list[int] = []
        self._on_tick = None
        self._on_expire = None

    def start(self, duration_seconds, on_tick, on_expire):
        self.start_calls.append(duration_seconds)
        self.remaining = duration_seconds
        self.running = True
        self._on_tick = on_tick
        self._on_expire = on_expire

    def stop(self):
        self.running = False

    async def advance_to(self, remaining: int) -> None:
        """Tick down to the given remaining seconds, expiring at 0."""
        while self.running and self.remaining > remaining:
            self.remaining -= 1
            await self._on_tick(self.remaining)
            if self.remaining == 0 and self.running:
                self.running = False
                await self._on_expire()
