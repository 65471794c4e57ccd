"""
Broadcast dispatcher - builds the hello snapshot and fans messages out.

A broadcast encodes the message once and sends the same text to every
member of a registry snapshot. One member failing never stops delivery to
the others and never raises to the caller; the failed member is left to
its own receive loop to close.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from link_bridge.errors import SerializationError
from link_bridge.messages import STATE, build_hello, build_state_message, encode
from link_bridge.registry import ConnectionRegistry
from link_bridge.state import SharedState

if TYPE_CHECKING:
    from link_bridge.connection import ConnectionHandle

logger = logging.getLogger(__name__)


class BroadcastDispatcher:
    """Fan-out of messages to every registered connection."""

    def __init__(self, registry: ConnectionRegistry, state: SharedState):
        self._registry = registry
        self._state = state

        # Counters for the metrics endpoint
        self.broadcasts_sent = 0
        self.messages_delivered = 0
        self.send_failures = 0
        self.messages_dropped = 0

    def hello(self) -> Dict[str, Any]:
        """Bootstrap snapshot. numClients is the registry size right now."""
        return build_hello(self._state.snapshot(), self._registry.size())

    def state_message(self) -> Dict[str, Any]:
        return build_state_message(STATE, self._state.snapshot(), self._registry.size())

    def encoded_hello(self) -> Optional[str]:
        """hello() as wire text, or None if it cannot be built or encoded."""
        try:
            message = self.hello()
        except (TypeError, ValueError) as e:
            self.messages_dropped += 1
            logger.warning(f"Dropping hello: {e}")
            return None
        return self._encode(message)

    async def send_to(self, handle: "ConnectionHandle", message: Dict[str, Any]) -> bool:
        payload = self._encode(message)
        if payload is None:
            return False
        return await self._deliver(handle, payload)

    async def broadcast(self, message: Dict[str, Any]) -> int:
        """Send message to every current member. Returns how many received it."""
        payload = self._encode(message)
        if payload is None:
            return 0

        members = self._registry.snapshot()
        self.broadcasts_sent += 1
        if not members:
            return 0

        results = await asyncio.gather(
            *(self._deliver(member, payload) for member in members),
            return_exceptions=True,
        )
        delivered = 0
        for member, result in zip(members, results):
            if result is True:
                delivered += 1
            elif isinstance(result, BaseException):
                logger.warning(f"Broadcast to connection {member.id} raised: {result!r}")

        failed = len(members) - delivered
        if failed:
            logger.debug(
                f"Broadcast '{message.get('type')}': {delivered}/{len(members)} delivered, {failed} failed"
            )
        return delivered

    async def _deliver(self, handle: "ConnectionHandle", payload: str) -> bool:
        ok = await handle.send_text(payload)
        if ok:
            self.messages_delivered += 1
        else:
            self.send_failures += 1
        return ok

    def _encode(self, message: Dict[str, Any]) -> Optional[str]:
        try:
            return encode(message)
        except SerializationError as e:
            self.messages_dropped += 1
            logger.warning(f"Dropping message: {e}")
            return None
