"""WebSocket bridge between browser clients and the session controller.

Clients receive every controller snapshot as ``{"type": "state", ...}`` and
send commands as ``{"command": "<name>", ...}``. Each command is answered with
``{"type": "result", "command": ..., "ok": ...}`` on the same connection.
"""

import asyncio
import json
import logging

from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosedError

from .controller import SessionController, Snapshot
from .errors import PulseRhrError
from .profile import UserProfile

logger = logging.getLogger(__name__)

COMMANDS = ("login", "connect", "start_test", "sync_profile", "disconnect")


class PulseServer:
    """WebSocket server that fans out controller state and accepts UI commands."""

    def __init__(
        self,
        controller: SessionController | None = None,
        host: str = "127.0.0.1",
        port: int = 8765,
        broadcast_timeout: float = 0.5,
    ):
        self.controller = controller
        self.host = host
        self.port = port
        self._broadcast_timeout = broadcast_timeout
        self._clients: set[ServerConnection] = set()
        self._server = None

    def _client_info(self, websocket: ServerConnection) -> str:
        """Get client info string for logging."""
        addr = websocket.remote_address
        if addr:
            return f"{addr[0]}:{addr[1]}"
        return "unknown"

    async def _handler(self, websocket: ServerConnection) -> None:
        """Handle a WebSocket connection."""
        self._clients.add(websocket)
        logger.info("Client connected: %s (%d total)", self._client_info(websocket), len(self._clients))
        try:
            if self.controller:
                await websocket.send(json.dumps(self._state_message(self.controller.snapshot)))
            async for message in websocket:
                reply = await self.handle_command(message)
                await websocket.send(json.dumps(reply))
        except ConnectionClosedError:
            pass  # Client disconnected abruptly, this is normal
        finally:
            self._clients.discard(websocket)
            logger.info("Client disconnected: %s (%d total)", self._client_info(websocket), len(self._clients))

    async def handle_command(self, message: str | bytes) -> dict:
        """Parse and dispatch one client command, returning the reply."""
        try:
            request = json.loads(message)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return _error_reply(None, "bad_request", "Message is not valid JSON")
        if not isinstance(request, dict):
            return _error_reply(None, "bad_request", "Message must be a JSON object")

        command = request.get("command")
        if command not in COMMANDS:
            return _error_reply(command, "unknown_command", f"Unknown command: {command!r}")
        if self.controller is None:
            return _error_reply(command, "not_ready", "No controller attached")

        logger.debug("Command: %s", command)
        try:
            if command == "login":
                await self.controller.login(str(request.get("id", "")))
            elif command == "connect":
                await self.controller.connect()
            elif command == "start_test":
                await self.controller.start_test()
            elif command == "disconnect":
                await self.controller.disconnect()
            elif command == "sync_profile":
                fields = request.get("profile")
                if not isinstance(fields, dict):
                    return _error_reply(command, "invalid_profile", "profile must be a JSON object")
                try:
                    profile = UserProfile.from_dict(fields)
                except ValueError as e:
                    return _error_reply(command, "invalid_profile", str(e))
                result = await self.controller.sync_profile(profile)
                if not result.ok:
                    return _error_reply(command, result.reason, "Profile sync failed")
        except PulseRhrError as e:
            return _error_reply(command, e.code, str(e))

        return {"type": "result", "command": command, "ok": True}

    async def broadcast(self, message: dict) -> None:
        """Broadcast a message to all connected clients."""
        if not self._clients:
            return
        # Snapshot clients to avoid RuntimeError if set changes during iteration
        clients = list(self._clients)
        data = json.dumps(message)
        try:
            results = await asyncio.wait_for(
                asyncio.gather(
                    *[client.send(data) for client in clients],
                    return_exceptions=True,
                ),
                timeout=self._broadcast_timeout,
            )
            self._remove_failed_clients(clients, results)
        except TimeoutError:
            logger.warning("Broadcast timeout, slow client(s) skipped")

    def _remove_failed_clients(self, clients: list[ServerConnection], results: list) -> None:
        """Remove clients that failed to receive a message."""
        for client, result in zip(clients, results, strict=True):
            if isinstance(result, Exception):
                self._clients.discard(client)
                logger.debug("Removed failed client: %s", result)

    @staticmethod
    def _state_message(snapshot: Snapshot) -> dict:
        return {"type": "state", **snapshot.to_dict()}

    async def broadcast_snapshot(self, snapshot: Snapshot) -> None:
        """Broadcast controller state; used as the controller's on_change callback."""
        await self.broadcast(self._state_message(snapshot))

    async def start(self) -> None:
        """Start the WebSocket server."""
        self._server = await serve(self._handler, self.host, self.port)
        logger.debug("Server started on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Stop the WebSocket server."""
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            logger.debug("Server stopped")

    @property
    def client_count(self) -> int:
        """Number of connected clients."""
        return len(self._clients)


def _error_reply(command: str | None, code: str | None, message: str) -> dict:
    return {"type": "result", "command": command, "ok": False, "error": code, "message": message}
