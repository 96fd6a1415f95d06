"""Integration test fixtures and utilities.

Provides shared fixtures for:
- Relay server lifecycle on an ephemeral loopback port
- Authenticated WebSocket clients
- Helpers for receiving typed messages and close codes
"""

import asyncio
import json
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from websockets.asyncio.client import ClientConnection, connect

from overlay_relay.config import RelayConfig
from overlay_relay.server import RelayServer

TOKEN = "secret"  # noqa: S105


async def recv_json(ws: ClientConnection, timeout_s: float = 2.0) -> dict[str, Any]:
    """Receive and decode one message."""
    raw = await asyncio.wait_for(ws.recv(), timeout=timeout_s)
    message: dict[str, Any] = json.loads(raw)
    return message


async def send_update(ws: ClientConnection, payload: dict[str, Any]) -> None:
    await ws.send(json.dumps({"type": "config:update", "payload": payload}))


async def wait_closed(ws: ClientConnection, timeout_s: float = 2.0) -> int | None:
    """Wait for the connection to close and return the close code."""
    await asyncio.wait_for(ws.wait_closed(), timeout=timeout_s)
    return ws.close_code


async def wait_for(predicate: Callable[[], bool], timeout_s: float = 2.0) -> None:
    """Poll until `predicate` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_s
    while not predicate():
        if loop.time() > deadline:
            raise TimeoutError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def state_path(tmp_path: Path) -> Path:
    return tmp_path / "config.json"


@pytest.fixture
def relay_config(state_path: Path) -> RelayConfig:
    """Loopback config with token auth and a generous rate limit."""
    return RelayConfig(host="127.0.0.1", port=0, token=TOKEN, state_path=state_path)


@pytest_asyncio.fixture
async def relay_server(relay_config: RelayConfig) -> AsyncIterator[RelayServer]:
    """Running relay server, stopped after the test."""
    server = RelayServer(relay_config)
    await server.start()
    try:
        yield server
    finally:
        await server.stop()


def ws_url(server: RelayServer, token: str | None = TOKEN) -> str:
    base = f"ws://127.0.0.1:{server.bound_port}/"
    return f"{base}?token={token}" if token is not None else base


@pytest_asyncio.fixture
async def ws_client(relay_server: RelayServer) -> AsyncIterator[ClientConnection]:
    """Authenticated client whose config:init has already been consumed."""
    async with connect(ws_url(relay_server)) as ws:
        init = await recv_json(ws)
        assert init["type"] == "config:init"
        yield ws
