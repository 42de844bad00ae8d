"""Session controller: the state machine between the UI and the device.

All inputs are discrete events on the event loop: UI commands, decoded
readings, timer ticks and expiry, and remote disconnects. Every transition
publishes a fresh Snapshot to the on_change callback.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from .aggregator import DEFAULT_DURATION_SECONDS, AggregateResult, SampleAggregator
from .ble import ConnectionState, DeviceHandle, DeviceSelector, DeviceSession, DisconnectCallback
from .decoder import HeartRateReading
from .errors import (
    AlreadyMeasuring,
    ConnectCancelled,
    ConnectTransportError,
    DisconnectedDuringTest,
    NotAuthenticated,
    NotReady,
    PulseRhrError,
    SyncError,
)
from .profile import SyncResult, UserProfile
from .timer import SessionTimer

logger = logging.getLogger(__name__)


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


class LinkState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class MeasureState(str, Enum):
    IDLE = "idle"
    MEASURING = "measuring"


@dataclass(frozen=True)
class Snapshot:
    """Read-only view of the controller for the UI."""

    auth_state: AuthState
    connection_state: LinkState
    live_bpm: int | None
    test_state: MeasureState
    remaining_seconds: int | None
    last_estimate: int | None
    last_error: str | None
    error_message: str | None = None
    last_result: str | None = None  # "estimate", "empty" or None before the first test
    device_name: str | None = None
    can_sync: bool = False

    def to_dict(self) -> dict:
        return {
            "auth_state": self.auth_state.value,
            "connection_state": self.connection_state.value,
            "live_bpm": self.live_bpm,
            "test_state": self.test_state.value,
            "remaining_seconds": self.remaining_seconds,
            "last_estimate": self.last_estimate,
            "last_result": self.last_result,
            "last_error": self.last_error,
            "error_message": self.error_message,
            "device_name": self.device_name,
            "can_sync": self.can_sync,
        }


SnapshotCallback = Callable[[Snapshot], Awaitable[None]]
SessionFactory = Callable[[DisconnectCallback], DeviceSession]


def _default_session_factory(on_disconnect: DisconnectCallback) -> DeviceSession:
    return DeviceSession(on_disconnect=on_disconnect)


class SessionController:
    """Owns the device session and the measurement window."""

    def __init__(
        self,
        on_change: SnapshotCallback | None = None,
        session_factory: SessionFactory = _default_session_factory,
        timer: SessionTimer | None = None,
        duration_seconds: int = DEFAULT_DURATION_SECONDS,
        scan_timeout: float = 5.0,
        name_filter: str | None = None,
        device_address: str | None = None,
        select: DeviceSelector | None = None,
    ):
        self.on_change = on_change
        self._session_factory = session_factory
        self._timer = timer or SessionTimer()
        self._aggregator = SampleAggregator()
        self._duration = duration_seconds
        self._scan_timeout = scan_timeout
        self._name_filter = name_filter
        self._device_address = device_address
        self._select = select

        self._user_id: str | None = None
        self._auth = AuthState.UNAUTHENTICATED
        self._link = LinkState.DISCONNECTED
        self._test = MeasureState.IDLE
        self._session: DeviceSession | None = None
        self._device_name: str | None = None
        self._live_bpm: int | None = None
        self._remaining: int | None = None
        self._last_result: AggregateResult | None = None
        self._last_error: PulseRhrError | None = None

    @property
    def snapshot(self) -> Snapshot:
        result = self._last_result
        if result is None:
            outcome = None
        else:
            outcome = "empty" if result.is_empty else "estimate"
        return Snapshot(
            auth_state=self._auth,
            connection_state=self._link,
            live_bpm=self._live_bpm,
            test_state=self._test,
            remaining_seconds=self._remaining,
            last_estimate=result.estimate if result else None,
            last_error=self._last_error.code if self._last_error else None,
            error_message=str(self._last_error) if self._last_error else None,
            last_result=outcome,
            device_name=self._device_name,
            can_sync=self._session is not None and self._session.can_sync,
        )

    @property
    def last_error(self) -> PulseRhrError | None:
        return self._last_error

    @property
    def last_result(self) -> AggregateResult | None:
        return self._last_result

    async def _publish(self) -> None:
        if self.on_change:
            await self.on_change(self.snapshot)

    async def _fail(self, error: PulseRhrError) -> None:
        """Record error in the single error slot (last wins) and publish."""
        self._last_error = error
        await self._publish()

    async def _require_auth(self) -> None:
        if self._auth != AuthState.AUTHENTICATED:
            error = NotAuthenticated("Login required")
            await self._fail(error)
            raise error

    # Commands

    async def login(self, user_id: str) -> None:
        user_id = (user_id or "").strip()
        if not user_id:
            error = NotAuthenticated("User id must not be empty")
            await self._fail(error)
            raise error
        self._user_id = user_id
        self._auth = AuthState.AUTHENTICATED
        self._last_error = None
        logger.info("Logged in as %s", user_id)
        await self._publish()

    async def connect(self) -> None:
        """Discover, connect and subscribe to a heart rate device.

        Raises:
            NotAuthenticated: If login() has not succeeded
            DiscoveryError: If no device is found or selection is aborted
            ConnectError: On link failure or missing heart rate service
        """
        await self._require_auth()
        if self._link != LinkState.DISCONNECTED:
            logger.debug("connect() ignored, link is %s", self._link.value)
            return

        self._link = LinkState.CONNECTING
        self._last_error = None
        await self._publish()

        session: DeviceSession | None = None

        async def on_lost() -> None:
            await self._on_session_lost(session)

        session = self._session_factory(on_lost)
        self._session = session

        def check_current() -> None:
            if self._session is not session:
                raise ConnectCancelled("Connect cancelled by disconnect")

        connected = False
        try:
            if self._device_address:
                handle = DeviceHandle(self._device_address, self._device_address)
            else:
                handle = await session.discover(
                    timeout=self._scan_timeout,
                    name_filter=self._name_filter,
                    select=self._select,
                )
                check_current()
            await session.connect(handle)
            check_current()
            await session.subscribe(self._on_reading)
            check_current()
            device_name = await session.read_device_name()
            check_current()
            if session.state != ConnectionState.CONNECTED:
                raise ConnectTransportError("Link lost while connecting")
            connected = True
        except PulseRhrError as e:
            logger.warning("Connect failed: %s", e)
            # A superseded connect must not touch the state of its replacement
            if self._session is session:
                self._last_error = e
            raise
        finally:
            if not connected:
                await self._abandon_connect(session)

        self._device_name = device_name
        self._link = LinkState.CONNECTED
        self._test = MeasureState.IDLE
        logger.info("Connected to %s", device_name)
        await self._publish()

    async def start_test(self) -> None:
        """Open a measurement window and start the countdown.

        Raises:
            NotReady: If no device is connected
            AlreadyMeasuring: If a window is already open
        """
        # Connecting requires login, so a connected link implies authentication
        if self._link != LinkState.CONNECTED:
            error = NotReady("Device not connected")
            await self._fail(error)
            raise error
        if self._test == MeasureState.MEASURING:
            error = AlreadyMeasuring("A resting HR test is already running")
            await self._fail(error)
            raise error

        self._test = MeasureState.MEASURING
        self._remaining = self._duration
        self._last_error = None
        self._aggregator.reset(self._duration)
        self._timer.start(self._duration, self._on_tick, self._on_expire)
        logger.info("Resting HR test started (%ds)", self._duration)
        await self._publish()
        await self._send_control("start")

    async def sync_profile(self, profile: UserProfile) -> SyncResult:
        """Write the profile to the device. Failures are returned, not raised."""
        if self._auth != AuthState.AUTHENTICATED:
            error: PulseRhrError = NotAuthenticated("Login required")
        elif self._session is None or self._link != LinkState.CONNECTED:
            error = NotReady("Device not connected")
        else:
            try:
                await self._session.sync_profile(profile)
            except SyncError as e:
                error = e
            else:
                self._last_error = None
                await self._publish()
                return SyncResult(ok=True)

        logger.warning("Profile sync failed: %s", error)
        await self._fail(error)
        return SyncResult(ok=False, reason=error.code)

    async def disconnect(self) -> None:
        """Local teardown. Any open window is discarded without an error."""
        session, self._session = self._session, None
        self._abort_window()
        self._link = LinkState.DISCONNECTED
        self._live_bpm = None
        self._device_name = None
        if session is not None:
            await session.disconnect()
            logger.info("Disconnected")
        await self._publish()

    # Events

    async def _on_reading(self, reading: HeartRateReading) -> None:
        # Record before any await so readings reach the window in arrival order
        self._live_bpm = reading.bpm
        if self._test == MeasureState.MEASURING:
            self._aggregator.record(reading)
        await self._publish()

    async def _on_tick(self, remaining: int) -> None:
        if self._test != MeasureState.MEASURING:
            return
        self._remaining = remaining
        self._aggregator.tick(self._duration - remaining)
        await self._publish()

    async def _on_expire(self) -> None:
        if self._test != MeasureState.MEASURING:
            return
        result = self._aggregator.finalize()
        self._test = MeasureState.IDLE
        self._remaining = 0
        self._last_result = result
        if result.is_empty:
            logger.warning("Resting HR test finished without readings")
        else:
            logger.info("Resting HR: %d bpm (%d samples)", result.estimate, result.sample_count)
        await self._publish()
        await self._send_control("stop")

    async def _on_session_lost(self, session: DeviceSession | None) -> None:
        # Connect handles losses during its own awaits; stale sessions are ignored
        if session is None or session is not self._session or self._link != LinkState.CONNECTED:
            return

        was_measuring = self._test == MeasureState.MEASURING
        self._abort_window()
        self._session = None
        self._link = LinkState.DISCONNECTED
        self._live_bpm = None

        if was_measuring:
            logger.warning("Device disconnected during test, window discarded")
            self._last_error = DisconnectedDuringTest("Device disconnected during the resting HR test")
        else:
            logger.info("Device disconnected")
        await self._publish()
        await session.disconnect()

    async def _abandon_connect(self, session: DeviceSession) -> None:
        """Tear down a connect that did not complete."""
        await session.disconnect()
        if self._session is session:
            self._session = None
            self._link = LinkState.DISCONNECTED
            self._live_bpm = None
            await self._publish()

    def _abort_window(self) -> None:
        self._timer.stop()
        self._aggregator.abort()
        self._test = MeasureState.IDLE
        self._remaining = None

    async def _send_control(self, command: str) -> None:
        """Best-effort control point write; notifications remain the source of truth."""
        session = self._session
        if session is None or not session.can_control:
            return
        try:
            await session.send_command(command)
        except SyncError as e:
            logger.warning("Control command '%s' failed: %s", command, e)
