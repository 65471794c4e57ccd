"""
Connection registry - the set of connections that receive broadcasts.

A connection id is present only while its handle is READY. Every operation
takes the same lock and never awaits, so a stalled client can never hold
up membership changes for anyone else. Iterate over snapshot(), not the
live mapping.
"""

import itertools
import threading
from typing import TYPE_CHECKING, Dict, List, Optional

if TYPE_CHECKING:
    from link_bridge.connection import ConnectionHandle


class ConnectionRegistry:
    """Thread-safe mapping of connection id to ConnectionHandle."""

    def __init__(self):
        self._lock = threading.RLock()
        self._members: Dict[int, "ConnectionHandle"] = {}
        self._ids = itertools.count()

    def next_id(self) -> int:
        """Allocate a connection id. Ids are never reused."""
        with self._lock:
            return next(self._ids)

    def register(self, handle: "ConnectionHandle") -> None:
        with self._lock:
            if handle.id in self._members and self._members[handle.id] is not handle:
                raise ValueError(f"Connection id {handle.id} already registered")
            self._members[handle.id] = handle

    def deregister(self, connection_id: int) -> Optional["ConnectionHandle"]:
        """Remove a member. Returns the removed handle, or None if absent."""
        with self._lock:
            return self._members.pop(connection_id, None)

    def get(self, connection_id: int) -> Optional["ConnectionHandle"]:
        with self._lock:
            return self._members.get(connection_id)

    def snapshot(self) -> List["ConnectionHandle"]:
        """Point-in-time copy of the members, safe to iterate without the lock."""
        with self._lock:
            return list(self._members.values())

    def size(self) -> int:
        with self._lock:
            return len(self._members)

    def clear(self) -> List["ConnectionHandle"]:
        """Drop every member and return the handles that were removed."""
        with self._lock:
            removed = list(self._members.values())
            self._members.clear()
            return removed

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, connection_id: int) -> bool:
        with self._lock:
            return connection_id in self._members
