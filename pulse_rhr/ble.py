"""BLE device discovery and session lifecycle."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError
from bleak.uuids import normalize_uuid_str

from .decoder import HeartRateReading, decode
from .errors import (
    ConnectTransportError,
    DecodeError,
    NoMatch,
    NoSelection,
    NotBound,
    ScanTransportError,
    ServiceMissing,
    SyncTransportError,
)
from .profile import UserProfile

logger = logging.getLogger(__name__)

HR_SERVICE_UUID = normalize_uuid_str("180D")
HR_CHAR_UUID = normalize_uuid_str("2A37")
DEVICE_NAME_UUID = normalize_uuid_str("2A00")
PROFILE_CHAR_UUID = normalize_uuid_str("19b10001-e8f2-537e-4f6c-d104768a1214")
CONTROL_CHAR_UUID = normalize_uuid_str("19b10002-e8f2-537e-4f6c-d104768a1214")

# ATT write header is 3 bytes
ATT_HEADER_SIZE = 3

TRANSPORT_ERRORS = (BleakError, TimeoutError, OSError)

ReadingCallback = Callable[[HeartRateReading], Awaitable[None]]
DisconnectCallback = Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class DeviceHandle:
    address: str
    name: str


DeviceSelector = Callable[[list[DeviceHandle]], DeviceHandle | None]


class ConnectionState(str, Enum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    CONNECTING = "connecting"
    BOUND = "bound"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class Binding:
    """Characteristics resolved for a connected device."""

    notify_uuid: str
    write_uuid: str | None = None
    control_uuid: str | None = None

    @property
    def can_sync(self) -> bool:
        return self.write_uuid is not None

    @property
    def can_control(self) -> bool:
        return self.control_uuid is not None


async def scan_hr_devices(
    timeout: float = 5.0,
    name_filter: str | None = None,
    service_uuid: str = HR_SERVICE_UUID,
) -> list[DeviceHandle]:
    """Scan for BLE devices advertising a service.

    Args:
        timeout: Scan duration in seconds
        name_filter: Optional case-insensitive substring to filter device names
        service_uuid: Service the device must advertise

    Returns:
        Discovered devices in order of first sighting
    """
    devices: dict[str, DeviceHandle] = {}  # Use dict to deduplicate by address
    filter_lower = name_filter.lower() if name_filter else None

    def detection_callback(device: BLEDevice, adv: AdvertisementData) -> None:
        service_uuids = adv.service_uuids or []
        if service_uuid in service_uuids:
            if device.address in devices:
                return  # Already seen this device
            name = device.name or "Unknown"
            if filter_lower is None or filter_lower in name.lower():
                logger.debug("Discovered: %s (%s)", name, device.address)
                devices[device.address] = DeviceHandle(device.address, name)

    scanner = BleakScanner(detection_callback=detection_callback)
    await scanner.start()
    await asyncio.sleep(timeout)
    await scanner.stop()

    logger.debug("Scan complete, found %d device(s)", len(devices))
    return list(devices.values())


class DeviceSession:
    """One connection to a heart rate device.

    A remote disconnect is delivered as a single on_disconnect() event on the
    event loop; a local disconnect() does not emit it.
    """

    def __init__(
        self,
        on_disconnect: DisconnectCallback | None = None,
        profile_char_uuid: str = PROFILE_CHAR_UUID,
        control_char_uuid: str = CONTROL_CHAR_UUID,
        connect_timeout: float = 10.0,
    ):
        self._on_disconnect = on_disconnect
        self._profile_uuid = normalize_uuid_str(profile_char_uuid)
        self._control_uuid = normalize_uuid_str(control_char_uuid)
        self._connect_timeout = connect_timeout
        self._state = ConnectionState.IDLE
        self._handle: DeviceHandle | None = None
        self._client: BleakClient | None = None
        self._binding: Binding | None = None
        self._on_reading: ReadingCallback | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._closing = False
        self._pending: set[asyncio.Task] = set()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def handle(self) -> DeviceHandle | None:
        return self._handle

    @property
    def binding(self) -> Binding | None:
        return self._binding

    @property
    def can_sync(self) -> bool:
        return self._binding is not None and self._binding.can_sync

    @property
    def can_control(self) -> bool:
        return self._binding is not None and self._binding.can_control

    def _is_linked(self) -> bool:
        """Check if the transport link is up."""
        return (
            self._state in (ConnectionState.BOUND, ConnectionState.CONNECTED)
            and self._client is not None
            and self._client.is_connected
        )

    async def discover(
        self,
        timeout: float = 5.0,
        name_filter: str | None = None,
        select: DeviceSelector | None = None,
        service_uuid: str = HR_SERVICE_UUID,
    ) -> DeviceHandle:
        """Scan for devices and run the selection step.

        Raises:
            NoMatch: If no device advertises the service
            NoSelection: If the selector returns None
            ScanTransportError: If the scanner fails to start or stop
        """
        self._state = ConnectionState.DISCOVERING
        try:
            devices = await scan_hr_devices(timeout=timeout, name_filter=name_filter, service_uuid=service_uuid)
        except TRANSPORT_ERRORS as e:
            raise ScanTransportError(f"BLE scan failed: {e}") from e
        finally:
            # A disconnect() during the scan leaves the session DISCONNECTED
            if self._state == ConnectionState.DISCOVERING:
                self._state = ConnectionState.IDLE

        if not devices:
            raise NoMatch(f"No device advertising {service_uuid} found")

        handle = select(devices) if select else devices[0]
        if handle is None:
            raise NoSelection("Device selection aborted")

        logger.info("Selected: %s (%s)", handle.name, handle.address)
        self._handle = handle
        return handle

    async def connect(self, handle: DeviceHandle) -> Binding:
        """Open the link and resolve characteristics.

        Raises:
            ConnectTransportError: On link failure
            ServiceMissing: If the heart rate service or measurement characteristic is absent
        """
        self._loop = asyncio.get_running_loop()
        self._handle = handle
        self._closing = False
        self._state = ConnectionState.CONNECTING

        logger.debug("Connecting to %s...", handle.address)
        client = BleakClient(
            handle.address,
            disconnected_callback=self._on_bleak_disconnect,
            timeout=self._connect_timeout,
        )
        self._client = client
        try:
            await client.connect()
        except TRANSPORT_ERRORS as e:
            await self._cleanup_client()
            raise ConnectTransportError(f"Failed to connect to {handle.address}: {e}") from e

        if self._state == ConnectionState.DISCONNECTED:
            # Link dropped, or disconnect() ran while the connect was in flight
            self._client = client
            await self._cleanup_client()
            raise ConnectTransportError(f"{handle.address} disconnected while connecting")

        services = client.services
        hr_service = services.get_service(HR_SERVICE_UUID)
        if hr_service is None or hr_service.get_characteristic(HR_CHAR_UUID) is None:
            await self._cleanup_client()
            raise ServiceMissing(f"{handle.name} does not expose the heart rate measurement characteristic")

        write_uuid = self._resolve_optional(services, self._profile_uuid, "profile write")
        control_uuid = self._resolve_optional(services, self._control_uuid, "control")

        self._binding = Binding(notify_uuid=HR_CHAR_UUID, write_uuid=write_uuid, control_uuid=control_uuid)
        self._state = ConnectionState.BOUND
        logger.debug("Bound: %s", self._binding)
        return self._binding

    def _resolve_optional(self, services, uuid: str, label: str) -> str | None:
        try:
            char = services.get_characteristic(uuid)
        except BleakError as e:
            logger.warning("Ambiguous %s characteristic %s: %s", label, uuid, e)
            return None
        if char is None:
            logger.info("No %s characteristic on device, continuing without it", label)
            return None
        return uuid

    async def subscribe(self, on_reading: ReadingCallback) -> None:
        """Start heart rate notifications.

        Raises:
            ConnectTransportError: If the link is down or notifications fail to start
        """
        if not self._is_linked():
            raise ConnectTransportError("Link lost before subscribing")

        self._on_reading = on_reading
        try:
            await self._client.start_notify(HR_CHAR_UUID, self._notify_handler)
        except TRANSPORT_ERRORS as e:
            raise ConnectTransportError(f"Failed to subscribe to HR notifications: {e}") from e

        if self._state == ConnectionState.DISCONNECTED:
            self._on_reading = None
            raise ConnectTransportError("Link lost while subscribing")
        self._state = ConnectionState.CONNECTED
        logger.debug("Subscribed to HR notifications")

    async def _notify_handler(self, _: object, data: bytearray) -> None:
        """Handle incoming HR notifications."""
        try:
            reading = decode(bytes(data))
        except DecodeError as e:
            logger.warning("Malformed HR packet dropped: %s", e)
            return
        logger.debug("HR: %d bpm", reading.bpm)
        if self._on_reading is not None:
            await self._on_reading(reading)

    def _on_bleak_disconnect(self, _: BleakClient) -> None:
        # Backends may call this from another thread
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._handle_link_lost)

    def _handle_link_lost(self) -> None:
        if self._closing or self._state == ConnectionState.DISCONNECTED:
            return
        was_linked = self._state in (ConnectionState.BOUND, ConnectionState.CONNECTED)
        self._state = ConnectionState.DISCONNECTED
        logger.info("Device %s disconnected", self._handle.address if self._handle else "?")
        if was_linked and self._on_disconnect is not None:
            task = asyncio.ensure_future(self._on_disconnect())
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _cleanup_client(self) -> None:
        """Clean up client resources."""
        self._closing = True
        client, self._client = self._client, None
        if client:
            try:
                if client.is_connected:
                    if self._state == ConnectionState.CONNECTED:
                        await client.stop_notify(HR_CHAR_UUID)
                    await client.disconnect()
            except Exception as e:
                logger.debug("Error during disconnect: %s", e)
        self._state = ConnectionState.DISCONNECTED

    async def disconnect(self) -> None:
        """Tear the session down. Safe to call repeatedly."""
        if self._state == ConnectionState.DISCONNECTED and self._client is None:
            return
        if self._is_linked():
            logger.debug("Disconnecting from %s", self._handle.address)
        await self._cleanup_client()
        self._on_reading = None

    async def _write(self, uuid: str, payload: bytes) -> None:
        if not self._is_linked():
            raise SyncTransportError("Device not connected")
        max_write = self._client.mtu_size - ATT_HEADER_SIZE
        if len(payload) > max_write:
            logger.warning("Payload of %d bytes exceeds single write size %d", len(payload), max_write)
        try:
            await self._client.write_gatt_char(uuid, payload, response=True)
        except TRANSPORT_ERRORS as e:
            raise SyncTransportError(f"Write to {uuid} failed: {e}") from e

    async def sync_profile(self, profile: UserProfile) -> None:
        """Write the profile to the device once.

        Raises:
            NotBound: If the device has no profile write characteristic
            SyncTransportError: If the write fails or the link is down
        """
        if not self.can_sync:
            raise NotBound("Device has no profile write characteristic")
        payload = profile.to_wire()
        await self._write(self._binding.write_uuid, payload)
        logger.info("Profile synced (%d bytes)", len(payload))

    async def send_command(self, command: str) -> None:
        """Write an ASCII command to the device control point."""
        if not self.can_control:
            raise NotBound("Device has no control characteristic")
        await self._write(self._binding.control_uuid, command.encode("ascii"))
        logger.debug("Sent command: %s", command)

    async def read_device_name(self) -> str:
        """Read device name from GATT, fallback to handle name."""
        fallback = self._handle.name if self._handle else ""
        if not self._is_linked():
            return fallback
        try:
            name_bytes = await self._client.read_gatt_char(DEVICE_NAME_UUID)
            return name_bytes.decode("utf-8", errors="ignore") or fallback
        except TRANSPORT_ERRORS:
            return fallback
