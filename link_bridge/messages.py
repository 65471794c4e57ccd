"""
Wire messages for LinkBridge clients.

Every message is a JSON object with a "type" discriminator, sent as one
WebSocket text frame. Keys keep insertion order so a given message always
encodes to the same text.
"""

import json
from typing import Any, Dict, Union

from link_bridge.errors import SerializationError
from link_bridge.state import ClockState

HELLO = "hello"
STATE = "state"


def build_state_message(msg_type: str, state: ClockState, num_clients: int) -> Dict[str, Any]:
    """Full clock snapshot tagged with msg_type."""
    message: Dict[str, Any] = {"type": msg_type}
    message.update(state.to_wire(num_clients))
    return message


def build_hello(state: ClockState, num_clients: int) -> Dict[str, Any]:
    return build_state_message(HELLO, state, num_clients)


def encode(message: Dict[str, Any]) -> str:
    """Serialize an outbound message.

    Raises SerializationError when the message is not a typed dict or holds
    values JSON cannot represent (including NaN and infinity).
    """
    if not isinstance(message, dict) or not isinstance(message.get("type"), str):
        raise SerializationError("Outbound message must be a dict with a string 'type'")
    try:
        return json.dumps(message, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Cannot encode '{message['type']}' message: {e}") from e


def decode(raw: Union[str, bytes]) -> Dict[str, Any]:
    """Parse an inbound frame. Raises ValueError unless it is a JSON object."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data
