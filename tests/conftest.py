"""Shared test fixtures for pulse_rhr tests."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from pulse_rhr.ble import CONTROL_CHAR_UUID, HR_CHAR_UUID, HR_SERVICE_UUID, PROFILE_CHAR_UUID
from pulse_rhr.controller import SessionController
from pulse_rhr.profile import Sex, UserProfile
from tests.helpers import FakeSession, ManualTimer, make_hr_packet


@pytest.fixture
def hr_packet_simple() -> bytes:
    """Simple 8-bit BPM packet (72 bpm)."""
    return make_hr_packet(72)


@pytest.fixture
def hr_packet_16bit() -> bytes:
    """16-bit BPM packet (180 bpm)."""
    return make_hr_packet(180, is_16bit=True)


@pytest.fixture
def hr_packet_full() -> bytes:
    """Packet with all fields populated."""
    return make_hr_packet(
        150,
        is_16bit=True,
        sensor_contact=True,
        energy=1500,
        rr_intervals=[800, 850],
    )


@pytest.fixture
def profile() -> UserProfile:
    return UserProfile(age=34, sex=Sex.FEMALE, height_cm=168.5, weight_kg=61.2, fitness_level=4)


# Mock fixtures for BLE


def _make_services(chars: set[str]) -> MagicMock:
    """Mock service collection exposing the given characteristic UUIDs."""
    hr_service = MagicMock()
    hr_service.get_characteristic = MagicMock(side_effect=lambda uuid: object() if uuid in chars else None)

    services = MagicMock()
    services.get_service = MagicMock(
        side_effect=lambda uuid: hr_service if uuid == HR_SERVICE_UUID and HR_CHAR_UUID in chars else None
    )
    services.get_characteristic = MagicMock(side_effect=lambda uuid: object() if uuid in chars else None)
    return services


@pytest.fixture
def make_services():
    return _make_services


@pytest.fixture
def mock_bleak_client():
    """Create a mock BleakClient exposing HR, profile and control characteristics."""
    client = AsyncMock()
    client.is_connected = True
    client.mtu_size = 247
    client.connect = AsyncMock(return_value=True)
    client.disconnect = AsyncMock()
    client.start_notify = AsyncMock()
    client.stop_notify = AsyncMock()
    client.write_gatt_char = AsyncMock()
    client.read_gatt_char = AsyncMock(return_value=bytearray(b"TestDevice"))
    client.services = _make_services({HR_CHAR_UUID, PROFILE_CHAR_UUID, CONTROL_CHAR_UUID})
    return client


@pytest.fixture
def mock_ble_device():
    """Create a mock BLEDevice."""
    device = MagicMock()
    device.address = "AA:BB:CC:DD:EE:FF"
    device.name = "HR Monitor"
    return device


@pytest.fixture
def mock_advertisement_data():
    """Create mock AdvertisementData with HR service UUID."""
    adv = MagicMock()
    adv.service_uuids = [HR_SERVICE_UUID]
    return adv


# Controller fixtures


@pytest.fixture
def sessions() -> list[FakeSession]:
    """Every FakeSession created by the controller, in order."""
    return []


@pytest.fixture
def timer() -> ManualTimer:
    return ManualTimer()


@pytest.fixture
def controller(sessions, timer) -> SessionController:
    """Controller wired to fake sessions and a manual timer."""

    def factory(on_disconnect):
        session = FakeSession(on_disconnect)
        sessions.append(session)
        return session

    return SessionController(session_factory=factory, timer=timer, on_change=AsyncMock())


# Mock fixtures for WebSocket
@pytest.fixture
def mock_websocket():
    """Create a mock WebSocket connection."""
    ws = AsyncMock()
    ws.send = AsyncMock()
    ws.close = AsyncMock()
    return ws


# Config fixtures
@pytest.fixture
def sample_config_dict() -> dict:
    """Sample config dict as would be parsed from TOML."""
    return {
        "server": {
            "host": "0.0.0.0",
            "port": 9000,
            "broadcast_timeout": 1.0,
            "log_level": "DEBUG",
        },
        "ble": {
            "scan_timeout": 10.0,
            "connect_timeout": 20.0,
        },
        "device": {
            "address": "11:22:33:44:55:66",
            "name_filter": "XIAO",
            "profile_char_uuid": "19b10001-e8f2-537e-4f6c-d104768a1214",
        },
        "measure": {
            "duration_seconds": 30,
            "tick_interval": 0.5,
        },
    }


@pytest.fixture
def partial_config_dict() -> dict:
    """Partial config dict with some values missing."""
    return {
        "server": {"port": 8080},
        "measure": {"duration_seconds": 45},
    }
