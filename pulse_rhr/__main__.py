"""Entry point for pulse-rhr."""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from .ble import DeviceHandle, DeviceSelector, DeviceSession, DisconnectCallback
from .config import Config, load_config
from .controller import LinkState, MeasureState, SessionController, Snapshot
from .errors import PulseRhrError
from .log import setup_logging
from .profile import UserProfile
from .server import PulseServer
from .timer import SessionTimer

logger = logging.getLogger(__name__)

# Shutdown event for graceful termination
_shutdown_event: asyncio.Event | None = None


def _signal_handler() -> None:
    """Handle shutdown signals."""
    if _shutdown_event:
        logger.info("Shutdown requested...")
        _shutdown_event.set()


def _prompt_device_selection(devices: list[DeviceHandle]) -> DeviceHandle | None:
    """Prompt user to select a device from the list, 'q' aborts."""
    print("Found devices:")
    for i, device in enumerate(devices, 1):
        print(f"  {i}. {device.name} ({device.address})")

    while True:
        choice = input("Select device [1], q to cancel: ").strip() or "1"
        if choice.lower() == "q":
            return None
        try:
            idx = int(choice) - 1
            if 0 <= idx < len(devices):
                return devices[idx]
        except ValueError:
            pass
        print("Invalid selection, try again.")


def make_selector(name_filter: str | None, interactive: bool) -> DeviceSelector:
    """Auto-select if single device, filter was used, or no terminal; otherwise prompt."""

    def select(devices: list[DeviceHandle]) -> DeviceHandle | None:
        if len(devices) == 1 or name_filter or not interactive:
            if len(devices) > 1:
                logger.info("Multiple devices found, using %s (%s)", devices[0].name, devices[0].address)
            return devices[0]
        return _prompt_device_selection(devices)

    return select


def build_controller(
    config: Config,
    device: str | None,
    name_filter: str | None,
    select: DeviceSelector | None = None,
) -> SessionController:
    """Wire a controller to bleak-backed sessions using the config."""

    def session_factory(on_disconnect: DisconnectCallback) -> DeviceSession:
        return DeviceSession(
            on_disconnect=on_disconnect,
            profile_char_uuid=config.device.profile_char_uuid,
            control_char_uuid=config.device.control_char_uuid,
            connect_timeout=config.ble.connect_timeout,
        )

    return SessionController(
        session_factory=session_factory,
        timer=SessionTimer(interval=config.measure.tick_interval),
        duration_seconds=config.measure.duration_seconds,
        scan_timeout=config.ble.scan_timeout,
        name_filter=name_filter,
        device_address=device,
        select=select or make_selector(name_filter, interactive=False),
    )


async def run(config: Config, host: str, port: int, device: str | None, name_filter: str | None) -> None:
    """Run the WebSocket bridge until a shutdown signal arrives."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    controller = build_controller(config, device, name_filter)
    server = PulseServer(
        controller=controller,
        host=host,
        port=port,
        broadcast_timeout=config.server.broadcast_timeout,
    )
    controller.on_change = server.broadcast_snapshot

    await server.start()
    logger.info("WebSocket server running on ws://%s:%d", host, port)
    try:
        await _shutdown_event.wait()
    finally:
        await controller.disconnect()
        await server.stop()
        logger.info("Shutdown complete")


async def measure_once(
    config: Config,
    device: str | None,
    name_filter: str | None,
    user: str,
    profile: UserProfile | None = None,
) -> int:
    """Connect, optionally sync a profile, run one resting HR test and print the result.

    Returns:
        Process exit code, 0 when an estimate was produced
    """
    finished = asyncio.Event()
    measuring = False

    async def on_change(snapshot: Snapshot) -> None:
        if not measuring:
            return
        if snapshot.test_state == MeasureState.MEASURING and snapshot.remaining_seconds:
            logger.debug("%ds remaining, live %s bpm", snapshot.remaining_seconds, snapshot.live_bpm)
        if snapshot.test_state == MeasureState.IDLE or snapshot.connection_state == LinkState.DISCONNECTED:
            finished.set()

    controller = build_controller(config, device, name_filter, make_selector(name_filter, sys.stdin.isatty()))
    controller.on_change = on_change
    try:
        await controller.login(user)
        await controller.connect()
        if profile is not None:
            result = await controller.sync_profile(profile)
            print("Profile sent" if result.ok else f"Profile sync failed: {result.reason}")
        print(f"Measuring resting heart rate for {config.measure.duration_seconds}s, stay still...")
        measuring = True
        await controller.start_test()
        await finished.wait()
    except PulseRhrError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await controller.disconnect()

    snapshot = controller.snapshot
    if snapshot.last_error:
        print(f"Error: {snapshot.error_message}", file=sys.stderr)
        return 1
    if snapshot.last_estimate is None:
        print("No heart rate readings received")
        return 1
    print(f"Resting HR: {snapshot.last_estimate} bpm")
    return 0


def _load_profile(path: str) -> UserProfile:
    try:
        return UserProfile.from_wire(Path(path).read_bytes())
    except OSError as e:
        raise ValueError(f"Cannot read profile '{path}': {e}") from e


def main() -> None:
    """CLI entry point."""
    # --config must be known before the file's values become argument defaults
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("-c", "--config", type=Path, help="Config file (default: ./config.toml)")
    pre_args, _ = pre.parse_known_args()
    config = load_config(pre_args.config)

    parser = argparse.ArgumentParser(description="BLE resting heart rate client", parents=[pre])
    parser.add_argument("-H", "--host", default=config.server.host, help="Server host")
    parser.add_argument("-p", "--port", type=int, default=config.server.port, help="Server port")
    parser.add_argument("-d", "--device", default=config.device.address or None, help="Device address (skip scanning)")
    parser.add_argument(
        "-n",
        "--name",
        default=config.device.name_filter or None,
        help="Filter by device name (case-insensitive, auto-connects to first match)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--ble-debug", action="store_true", help="Include bleak transport logging")
    parser.add_argument("--measure", action="store_true", help="Run one resting HR test and exit")
    parser.add_argument("--duration", type=int, help="Test duration in seconds")
    parser.add_argument("--profile", help="Profile JSON file to sync before measuring")
    parser.add_argument("--user", default="local", help="User id for --measure")
    args = parser.parse_args()

    # Setup logging before anything else
    log_level = "DEBUG" if args.verbose else config.server.log_level
    setup_logging(log_level, ble_debug=args.ble_debug)

    if args.duration is not None:
        if args.duration <= 0:
            parser.error("--duration must be positive")
        config.measure.duration_seconds = args.duration

    if args.measure:
        profile = None
        if args.profile:
            try:
                profile = _load_profile(args.profile)
            except ValueError as e:
                parser.error(str(e))
        sys.exit(asyncio.run(measure_once(config, args.device, args.name, args.user, profile)))

    asyncio.run(run(config, args.host, args.port, args.device, args.name))


if __name__ == "__main__":
    main()
