"""WebSocket CLI client for the overlay relay.

Connects with the shared token, prints the initial snapshot, optionally
pushes a ``config:update`` built from ``--set key=value`` pairs, and prints
state broadcasts.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from overlay_relay.protocol import ConfigUpdateMessage

logger = logging.getLogger(__name__)


def build_url(server_url: str, token: str | None) -> str:
    """Return `server_url` with the ``token`` query parameter set."""
    if token is None:
        return server_url
    parts = urlsplit(server_url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "token"]
    query.append(("token", token))
    return urlunsplit(parts._replace(query=urlencode(query)))


def parse_assignments(assignments: list[str]) -> dict[str, Any]:
    """Turn ``key=value`` strings into an update payload.

    Values are parsed as JSON when possible (``count=3`` gives an int,
    ``tags=["a"]`` a list) and kept as plain strings otherwise.

    Raises:
        ValueError: If an assignment has no ``=`` or an empty key
    """
    payload: dict[str, Any] = {}
    for item in assignments:
        key, sep, raw = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"Expected key=value, got '{item}'")
        try:
            payload[key] = json.loads(raw)
        except json.JSONDecodeError:
            payload[key] = raw
    return payload


class RelayClient:
    """WebSocket client for relay communication."""

    def __init__(self, server_url: str, token: str | None = None) -> None:
        """Initialize relay client.

        Args:
            server_url: WebSocket server URL (e.g., ws://localhost:8080)
            token: Shared secret appended as ``?token=``
        """
        self.server_url = build_url(server_url, token)
        self.state: dict[str, Any] = {}

    async def send_update(self, websocket: ClientConnection, payload: dict[str, Any]) -> None:
        """Send a ``config:update`` message."""
        message = ConfigUpdateMessage(payload=payload)
        await websocket.send(message.model_dump_json())
        logger.debug(f"Sent update: {sorted(payload)}")

    def handle_message(self, message_data: str | bytes) -> str | None:
        """Apply a server message to the local state mirror.

        Returns:
            The message type, or None if the message could not be decoded
        """
        try:
            data = json.loads(message_data)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to decode server message: {e}")
            return None

        msg_type = data.get("type") if isinstance(data, dict) else None
        if msg_type in ("config:init", "config"):
            self.state = dict(data.get("payload") or {})
            print(json.dumps({"type": msg_type, "payload": self.state}, indent=2), flush=True)
        else:
            logger.warning(f"Unknown message type: {msg_type}")
        return msg_type

    async def run(self, updates: dict[str, Any] | None = None, listen: bool = False) -> int:
        """Run the client.

        Returns:
            Process exit code (0 on success, 1 if the server closed on us)
        """
        async with connect(self.server_url) as websocket:
            logger.info(f"Connected to {self.server_url.split('?')[0]}")
            try:
                self.handle_message(await websocket.recv())

                if updates:
                    await self.send_update(websocket, updates)
                    while self.handle_message(await websocket.recv()) != "config":
                        pass

                if listen:
                    async for message in websocket:
                        self.handle_message(message)
            except ConnectionClosed as e:
                rcvd = e.rcvd
                if rcvd is not None:
                    logger.error(f"Connection closed by server: {rcvd.code} {rcvd.reason}")
                else:
                    logger.error("Connection closed")
                return 1
        return 0


def main() -> None:
    """Entry point for the relay CLI client."""
    parser = argparse.ArgumentParser(description="Overlay relay CLI client")
    parser.add_argument(
        "--url",
        default="ws://localhost:8080",
        help="Relay WebSocket URL (default: ws://localhost:8080)",
    )
    parser.add_argument("--token", default=None, help="Shared secret token")
    parser.add_argument(
        "--set",
        dest="assignments",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="State key to update (repeatable; values parsed as JSON when possible)",
    )
    parser.add_argument(
        "--listen",
        action="store_true",
        help="Stay connected and print broadcasts until interrupted",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        updates = parse_assignments(args.assignments)
    except ValueError as e:
        parser.error(str(e))

    client = RelayClient(args.url, token=args.token)
    try:
        code = asyncio.run(client.run(updates=updates, listen=args.listen))
    except KeyboardInterrupt:
        code = 0
    except OSError as e:
        logger.error(f"Connection failed: {e}")
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
