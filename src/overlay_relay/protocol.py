"""WebSocket message protocol definitions.

Defines Pydantic models for the relay's JSON messages and the close codes
used to terminate connections.
"""

import json
import math
from typing import Any, Literal

from pydantic import BaseModel, Field

# Close codes (RFC 6455)
CLOSE_POLICY_VIOLATION = 1008
CLOSE_RATE_LIMITED = 1013

CLOSE_REASON_UNAUTHORIZED = "Unauthorized"
CLOSE_REASON_RATE_LIMITED = "Rate limit exceeded"

CONFIG_UPDATE = "config:update"


class MalformedMessageError(ValueError):
    """Raised when an inbound frame is not well-formed JSON."""


class ConfigInitMessage(BaseModel):
    """Server → Client: State snapshot sent once, right after authentication."""

    type: Literal["config:init"] = "config:init"
    payload: dict[str, Any] = Field(default_factory=dict, description="Shared state")


class ConfigMessage(BaseModel):
    """Server → Client: State broadcast after any processed message."""

    type: Literal["config"] = "config"
    payload: dict[str, Any] = Field(default_factory=dict, description="Shared state")


class ConfigUpdateMessage(BaseModel):
    """Client → Server: Partial state to shallow-merge into the shared state."""

    type: Literal["config:update"] = "config:update"
    payload: dict[str, Any] = Field(..., description="Keys to overwrite")


# Union type for all server → client messages
ServerMessage = ConfigInitMessage | ConfigMessage


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Non-standard JSON constant {name}")


def _finite_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"Number out of range: {text}")
    return value


def parse_client_message(raw: str | bytes) -> dict[str, Any]:
    """Decode an inbound frame into a message mapping.

    Any JSON value is accepted. Values that are not objects come back as a
    mapping without a ``type`` so they are treated as unrecognized messages.

    Args:
        raw: Text or binary WebSocket frame

    Returns:
        Decoded message mapping

    Raises:
        MalformedMessageError: If the frame is not valid UTF-8 JSON, or uses
            the ``NaN``/``Infinity`` extensions
    """
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        data = json.loads(raw, parse_float=_finite_float, parse_constant=_reject_constant)
    except ValueError as e:
        raise MalformedMessageError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        return {"type": None, "payload": data}
    return data


def extract_update(message: dict[str, Any]) -> dict[str, Any] | None:
    """Return the merge payload if this is a ``config:update`` with an object payload."""
    if message.get("type") != CONFIG_UPDATE:
        return None
    payload = message.get("payload")
    if not isinstance(payload, dict):
        return None
    return ConfigUpdateMessage(payload=payload).payload
