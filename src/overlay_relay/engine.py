"""Relay engine: authentication, state merge, persistence and broadcast.

The engine is the only owner of the shared state. Every connection runs
`handle_connection`, which walks the connection through its states:

- CONNECTING → AUTHENTICATING (on accept, token read from the request URL)
- AUTHENTICATING → AUTHENTICATED (token matches; snapshot sent, connection registered)
- AUTHENTICATING → CLOSED (no server token or mismatch; policy-violation close)
- AUTHENTICATED → AUTHENTICATED (each inbound message)
- AUTHENTICATED → CLOSED (client close/error, rate-limit close, server shutdown)

All handlers run on one event loop. Processing a message (merge, disk write,
broadcast) contains no await, so two merges never interleave and every
update is written to disk before its broadcast is queued. Updates are applied
last-writer-wins per key in the order the engine receives them.
"""

import hmac
import logging
import time
from typing import Any
from urllib.parse import parse_qs, urlsplit

from websockets.asyncio.server import ServerConnection
from websockets.exceptions import ConnectionClosed

from overlay_relay.config import RelayConfig
from overlay_relay.metrics import MetricsCollector
from overlay_relay.protocol import (
    CLOSE_POLICY_VIOLATION,
    CLOSE_RATE_LIMITED,
    CLOSE_REASON_RATE_LIMITED,
    CLOSE_REASON_UNAUTHORIZED,
    ConfigInitMessage,
    ConfigMessage,
    MalformedMessageError,
    extract_update,
    parse_client_message,
)
from overlay_relay.rate_limiter import FixedWindowRateLimiter
from overlay_relay.registry import ClientConnection, ConnectionRegistry, ConnectionState
from overlay_relay.store import PersistenceError, StateStore

logger = logging.getLogger(__name__)


def extract_token(request_path: str) -> str | None:
    """Return the first ``token`` query parameter of a request path, if any."""
    query = urlsplit(request_path).query
    values = parse_qs(query, keep_blank_values=True).get("token")
    if not values:
        return None
    return values[0]


class RelayEngine:
    """Owns the shared state and runs the per-connection protocol.

    Thread-safety: This class is NOT thread-safe. All calls must come from
    the event loop that serves the connections.
    """

    def __init__(
        self,
        config: RelayConfig,
        store: StateStore,
        limiter: FixedWindowRateLimiter,
        registry: ConnectionRegistry,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize the engine and load the persisted state.

        Args:
            config: Relay configuration (token is read from here)
            store: Persistence store for the state snapshot
            limiter: Per-client rate limiter
            registry: Registry of authenticated connections
            metrics: Optional metrics collector
        """
        self._token = config.token
        self._store = store
        self._limiter = limiter
        self._registry = registry
        self._metrics = metrics or MetricsCollector()

        self._state: dict[str, Any] = store.load()
        self._metrics.set_state_keys(len(self._state))

        if self._token is None:
            logger.warning("OVERLAY_WS_TOKEN not set. Connections will be rejected.")

    @classmethod
    def from_config(
        cls, config: RelayConfig, metrics: MetricsCollector | None = None
    ) -> "RelayEngine":
        """Build an engine with its store, limiter and registry from configuration."""
        return cls(
            config,
            store=StateStore(config.state_path),
            limiter=FixedWindowRateLimiter(config.rate_limit),
            registry=ConnectionRegistry(),
            metrics=metrics,
        )

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    # === Shared state ===

    def get_snapshot(self) -> dict[str, Any]:
        """Return a shallow copy of the shared state."""
        return dict(self._state)

    def apply_merge(self, update: dict[str, Any]) -> dict[str, Any]:
        """Shallow-merge `update` into the shared state and persist it.

        A failed write is logged; the in-memory state stays authoritative
        until the next successful save.

        Args:
            update: Top-level keys to overwrite

        Returns:
            The merged state
        """
        self._state = {**self._state, **update}
        self._metrics.inc("state_updates_total")
        self._metrics.set_state_keys(len(self._state))

        try:
            self._store.save(self._state)
        except PersistenceError as e:
            self._metrics.inc("persistence_errors_total")
            logger.error(
                "Failed to persist state",
                extra={"path": str(self._store.path), "error": str(e)},
            )

        return self._state

    # === Protocol ===

    def authenticate(self, request_path: str) -> bool:
        """Check the ``token`` query parameter against the configured secret.

        Always fails when no secret is configured.
        """
        if self._token is None:
            return False
        provided = extract_token(request_path)
        if provided is None:
            return False
        return hmac.compare_digest(provided.encode("utf-8"), self._token.encode("utf-8"))

    def broadcast_state(self) -> int:
        """Send the current state to every registered connection."""
        message = ConfigMessage(payload=self._state).model_dump_json()
        self._metrics.inc("broadcasts_total")
        return self._registry.broadcast(message)

    def handle_message(self, conn: ClientConnection, raw: str | bytes) -> bool:
        """Process one inbound message that has passed the rate limit.

        Malformed JSON is logged and otherwise ignored. Any well-formed message
        triggers a state broadcast; only ``config:update`` with an object
        payload changes the state.

        Args:
            conn: Sending connection
            raw: Raw frame

        Returns:
            True if the message was well-formed and a broadcast was sent
        """
        try:
            message = parse_client_message(raw)
        except MalformedMessageError as e:
            self._metrics.inc("messages_malformed_total")
            logger.error(
                "Invalid message received",
                extra={"connection_id": conn.connection_id, "error": str(e)},
            )
            return False

        update = extract_update(message)
        if update is not None:
            self.apply_merge(update)
            logger.info(
                "State updated",
                extra={"connection_id": conn.connection_id, "keys": sorted(update)},
            )
        else:
            logger.debug(
                "Message without state change",
                extra={"connection_id": conn.connection_id, "type": message.get("type")},
            )

        self.broadcast_state()
        return True

    async def handle_connection(self, websocket: ServerConnection) -> None:
        """Serve one client connection until it closes.

        Args:
            websocket: Accepted WebSocket connection
        """
        conn = ClientConnection(websocket)
        logger.info(
            "New WebSocket connection",
            extra={"connection_id": conn.connection_id, "remote": conn.remote_address},
        )

        conn.state = ConnectionState.AUTHENTICATING
        request_path = websocket.request.path if websocket.request is not None else ""
        if not self.authenticate(request_path):
            self._metrics.inc("connections_rejected_total")
            logger.warning(
                "Rejected unauthenticated connection",
                extra={"connection_id": conn.connection_id, "remote": conn.remote_address},
            )
            await websocket.close(CLOSE_POLICY_VIOLATION, CLOSE_REASON_UNAUTHORIZED)
            conn.state = ConnectionState.CLOSED
            return

        # Snapshot, initial send and registration happen without yielding to
        # the loop, so no broadcast can slip in between them.
        conn.state = ConnectionState.AUTHENTICATED
        init = ConfigInitMessage(payload=self._state).model_dump_json()
        self._registry.send_now(conn, init)
        self._registry.register(conn)
        self._metrics.record_connection_open()
        opened_at = time.monotonic()

        try:
            async for raw in websocket:
                self._metrics.inc("messages_received_total")
                if not self._limiter.allow(conn.remote_address):
                    self._metrics.inc("rate_limit_closes_total")
                    logger.warning(
                        "Rate limit exceeded, closing connection",
                        extra={
                            "connection_id": conn.connection_id,
                            "remote": conn.remote_address,
                            "limit": self._limiter.limit,
                        },
                    )
                    self._registry.unregister(conn)
                    await websocket.close(CLOSE_RATE_LIMITED, CLOSE_REASON_RATE_LIMITED)
                    break

                self.handle_message(conn, raw)
        except ConnectionClosed as e:
            logger.info(
                "WebSocket connection closed with error",
                extra={"connection_id": conn.connection_id, "error": str(e)},
            )
        finally:
            conn.state = ConnectionState.CLOSED
            self._registry.unregister(conn)
            self._metrics.record_connection_close(time.monotonic() - opened_at)
            logger.info(
                "WebSocket connection closed",
                extra={"connection_id": conn.connection_id, "state": conn.state.value},
            )
