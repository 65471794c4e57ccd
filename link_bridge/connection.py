"""
Connection handle - one client WebSocket session.

Lifecycle:
    CONNECTING -> READY -> CLOSED
    CONNECTING -> CLOSED   (upgrade never completed)

Entering READY registers the handle and sends its hello snapshot while the
handle's send lock is held, so a broadcast that finds the new member queues
behind the hello. Entering CLOSED deregisters the handle and releases the
transport; closing twice is a no-op.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from link_bridge.errors import HandshakeError, LinkBridgeError, ReceiveError, SendError, SerializationError
from link_bridge.messages import decode, encode
from link_bridge.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

# Close code sent to clients when the server shuts down
GOING_AWAY = 1001


class ConnectionState(Enum):
    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"


CommandHandler = Callable[["ConnectionHandle", Dict[str, Any]], Awaitable[None]]


async def ignore_command(connection: "ConnectionHandle", message: Dict[str, Any]) -> None:
    """Default command handler: inbound messages are read and dropped."""
    logger.debug(f"Ignoring '{message.get('type')}' message from connection {connection.id}")


class ConnectionHandle:
    """Owns one accepted WebSocket and its place in the registry."""

    def __init__(
        self,
        connection_id: int,
        transport,
        registry: ConnectionRegistry,
        on_change: Optional[Callable[["ConnectionHandle"], None]] = None,
    ):
        self.id = connection_id
        self._transport = transport
        self._registry = registry
        self._on_change = on_change
        self._state = ConnectionState.CONNECTING
        self._send_lock = asyncio.Lock()
        self._close_task: Optional[asyncio.Task] = None

        # Why the handle closed (None for a clean close) and the latest send failure
        self.close_reason: Optional[LinkBridgeError] = None
        self.last_send_error: Optional[SendError] = None
        self.messages_sent = 0
        self.messages_received = 0

    def __repr__(self) -> str:
        return f"<ConnectionHandle id={self.id} state={self._state.value}>"

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def remote_address(self):
        return getattr(self._transport, "remote_address", None)

    async def open(self, hello_factory: Optional[Callable[[], Optional[str]]] = None) -> bool:
        """CONNECTING -> READY.

        hello_factory is called after registration and returns the encoded
        hello. If it raises or returns None the handle closes instead of
        staying registered without a hello. Without a factory no hello is
        sent. Returns False if the handle could not become READY.
        """
        if self._state is not ConnectionState.CONNECTING:
            return False

        if self._transport.state is not State.OPEN:
            self.close_reason = HandshakeError(
                f"WebSocket upgrade did not complete (state={self._transport.state.name})"
            )
            logger.warning(f"Connection {self.id}: {self.close_reason}", extra={"connection_id": self.id})
            self.close()
            return False

        async with self._send_lock:
            self._state = ConnectionState.READY
            self._registry.register(self)
            self._changed()
            if hello_factory is None:
                return True
            try:
                payload = hello_factory()
                if payload is None:
                    raise SerializationError("hello snapshot could not be encoded")
                await self._write(payload)
            except Exception as e:
                self.close_reason = e if isinstance(e, LinkBridgeError) else SerializationError(str(e))
                logger.error(
                    f"Connection {self.id}: hello failed, closing: {e}", extra={"connection_id": self.id}
                )
                self.close(code=1011, reason="hello failed")
                return False
        return True

    async def send(self, message: Dict[str, Any]) -> bool:
        """Encode and send one message. Never raises; returns True on success."""
        try:
            payload = encode(message)
        except LinkBridgeError as e:
            logger.warning(f"Dropping message for connection {self.id}: {e}")
            return False
        return await self.send_text(payload)

    async def send_text(self, payload: str) -> bool:
        """Send an already encoded message as one text frame."""
        if self._state is not ConnectionState.READY:
            return False
        async with self._send_lock:
            if self._state is not ConnectionState.READY:
                return False
            return await self._write(payload)

    async def _write(self, payload: str) -> bool:
        try:
            await self._transport.send(payload)
        except ConnectionClosed as e:
            self.last_send_error = SendError(f"connection closed ({e})")
            logger.debug(f"Send to connection {self.id} failed: {self.last_send_error}")
            return False
        except Exception as e:
            self.last_send_error = SendError(str(e))
            logger.warning(f"Send to connection {self.id} failed: {e}", extra={"connection_id": self.id})
            return False
        self.messages_sent += 1
        return True

    async def receive_loop(self, command_handler: CommandHandler = ignore_command) -> None:
        """Read frames until the peer goes away, then close.

        Each JSON object is passed to command_handler. Frames that are not
        JSON objects are logged and skipped.
        """
        if self._state is not ConnectionState.READY:
            return
        try:
            async for raw in self._transport:
                self.messages_received += 1
                try:
                    message = decode(raw)
                except ValueError as e:
                    logger.debug(f"Invalid JSON from connection {self.id}: {e}")
                    continue
                try:
                    await command_handler(self, message)
                except Exception as e:
                    logger.error(f"Error handling message from connection {self.id}: {e}", exc_info=True)
        except ConnectionClosed as e:
            self.close_reason = ReceiveError(f"connection lost ({e})")
            logger.info(f"Connection {self.id}: {self.close_reason}", extra={"connection_id": self.id})
        except Exception as e:
            self.close_reason = ReceiveError(str(e))
            logger.warning(f"Connection {self.id} receive failed: {e}", extra={"connection_id": self.id})
        finally:
            self.close()

    def close(self, code: int = 1000, reason: str = "") -> None:
        """Move to CLOSED: deregister now, close the transport in the background."""
        if self._state is ConnectionState.CLOSED:
            return
        was_ready = self._state is ConnectionState.READY
        self._state = ConnectionState.CLOSED
        self._registry.deregister(self.id)
        if was_ready:
            self._changed()

        if self._transport.state in (State.CONNECTING, State.OPEN):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning(f"Connection {self.id} closed outside the event loop; transport left open")
                return
            self._close_task = loop.create_task(self._close_transport(code, reason))

    async def _close_transport(self, code: int, reason: str) -> None:
        try:
            await self._transport.close(code, reason)
        except Exception as e:
            logger.debug(f"Error closing connection {self.id}: {e}")

    async def wait_closed(self) -> None:
        """Wait for a transport close started by close() to finish."""
        if self._close_task is not None:
            await self._close_task

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self)
