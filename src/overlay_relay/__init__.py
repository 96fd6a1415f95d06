"""Overlay state relay.

This module provides a WebSocket relay that authenticates clients with a
shared token, merges their partial state updates into one persisted JSON
document, and broadcasts the merged state to every connected client.
"""

from overlay_relay.config import RelayConfig
from overlay_relay.engine import RelayEngine
from overlay_relay.server import RelayServer

__version__ = "0.1.0"

__all__ = ["RelayConfig", "RelayEngine", "RelayServer"]
