"""
LinkBridge - local WebSocket hub for shared tempo and beat position.

Clients connect, receive a hello snapshot of the shared clock, then get a
broadcast whenever that clock changes.
"""

from .config import BridgeConfig, load_config
from .connection import CommandHandler, ConnectionHandle, ConnectionState, ignore_command
from .dispatcher import BroadcastDispatcher
from .errors import (
    BindError,
    HandshakeError,
    LinkBridgeError,
    ReceiveError,
    SendError,
    SerializationError,
)
from .registry import ConnectionRegistry
from .server import LinkBridgeServer
from .state import ClockState, SharedState
from .status import ServerStatus, StatusPublisher

__all__ = [
    "LinkBridgeServer",
    "BridgeConfig",
    "load_config",
    "ConnectionHandle",
    "ConnectionState",
    "CommandHandler",
    "ignore_command",
    "ConnectionRegistry",
    "BroadcastDispatcher",
    "ClockState",
    "SharedState",
    "ServerStatus",
    "StatusPublisher",
    "LinkBridgeError",
    "BindError",
    "HandshakeError",
    "SendError",
    "ReceiveError",
    "SerializationError",
]
