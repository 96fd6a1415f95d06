"""Registry of authenticated client connections with fan-out broadcast."""

import logging
import uuid
from enum import Enum
from typing import Any

from websockets.asyncio.server import ServerConnection, broadcast
from websockets.protocol import State

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection lifecycle states.

    State Transitions:
    - CONNECTING → AUTHENTICATING (on accept)
    - AUTHENTICATING → AUTHENTICATED (on token match)
    - * → CLOSED (auth failure, rate-limit violation, client close or error, shutdown)
    """

    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


class ClientConnection:
    """One client transport session.

    Wraps the underlying WebSocket connection with the identity used for
    logging and rate limiting.
    """

    def __init__(self, websocket: ServerConnection, connection_id: str | None = None) -> None:
        """Initialize client connection.

        Args:
            websocket: WebSocket connection
            connection_id: Optional identifier (generated when omitted)
        """
        self._websocket = websocket
        self._connection_id = connection_id or f"ws-{uuid.uuid4().hex[:12]}"
        self.state = ConnectionState.CONNECTING

    @property
    def authenticated(self) -> bool:
        return self.state is ConnectionState.AUTHENTICATED

    @property
    def websocket(self) -> ServerConnection:
        return self._websocket

    @property
    def connection_id(self) -> str:
        """Unique connection identifier for logging and tracking."""
        return self._connection_id

    @property
    def remote_address(self) -> str:
        """Remote host, used as the rate-limit identity."""
        remote: Any = self._websocket.remote_address
        if isinstance(remote, (tuple, list)) and remote:
            return str(remote[0])
        if remote:
            return str(remote)
        return "unknown"

    @property
    def is_open(self) -> bool:
        """Check if the transport is open and ready to send."""
        return self._websocket.state is State.OPEN

    def __repr__(self) -> str:
        return f"ClientConnection({self._connection_id!r}, remote={self.remote_address!r})"


class ConnectionRegistry:
    """Tracks live authenticated connections.

    Thread-safety: This class is NOT thread-safe. Use from a single event loop.
    """

    def __init__(self) -> None:
        self._connections: dict[str, ClientConnection] = {}

    def register(self, conn: ClientConnection) -> None:
        """Add an authenticated connection."""
        self._connections[conn.connection_id] = conn
        logger.info(
            "Connection registered",
            extra={
                "connection_id": conn.connection_id,
                "remote": conn.remote_address,
                "active": len(self._connections),
            },
        )

    def unregister(self, conn: ClientConnection) -> None:
        """Remove a connection. Unknown connections are ignored."""
        if self._connections.pop(conn.connection_id, None) is None:
            return
        logger.info(
            "Connection unregistered",
            extra={"connection_id": conn.connection_id, "active": len(self._connections)},
        )

    def broadcast(self, message: str) -> int:
        """Send a text frame to every registered connection that is open.

        Connections that are closing or closed are skipped. Frames are queued
        on each connection without waiting for slow consumers to drain them.

        Args:
            message: Serialized message

        Returns:
            Number of connections the frame was handed to
        """
        recipients = [conn.websocket for conn in self._connections.values() if conn.is_open]
        if recipients:
            broadcast(recipients, message)
        logger.debug(
            "Broadcast sent",
            extra={"recipients": len(recipients), "registered": len(self._connections)},
        )
        return len(recipients)

    def send_now(self, conn: ClientConnection, message: str) -> bool:
        """Queue a text frame on a single connection without awaiting.

        Returns:
            False if the connection was not open
        """
        if not conn.is_open:
            return False
        broadcast([conn.websocket], message)
        return True

    def connections(self) -> list[ClientConnection]:
        """Return a snapshot of registered connections."""
        return list(self._connections.values())

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, conn: object) -> bool:
        return isinstance(conn, ClientConnection) and conn.connection_id in self._connections
