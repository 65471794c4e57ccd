"""
Observable server status for display collaborators.

Observers are called with the new ServerStatus after every change. When a
running event loop is available the calls are scheduled on it with
call_soon, so a slow observer never runs inside accept processing.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, replace
from typing import Callable, List

logger = logging.getLogger(__name__)

NO_ADDRESS = "—"


@dataclass(frozen=True)
class ServerStatus:
    is_running: bool = False
    client_count: int = 0
    local_address: str = NO_ADDRESS


StatusObserver = Callable[[ServerStatus], None]


class StatusPublisher:
    """Holds the current ServerStatus and notifies subscribers of changes."""

    def __init__(self):
        self._lock = threading.Lock()
        self._status = ServerStatus()
        self._observers: List[StatusObserver] = []

    @property
    def status(self) -> ServerStatus:
        with self._lock:
            return self._status

    def subscribe(self, observer: StatusObserver) -> Callable[[], None]:
        """Add an observer. Returns a function that removes it again."""
        with self._lock:
            self._observers.append(observer)

        def unsubscribe():
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    def update(self, **changes) -> ServerStatus:
        with self._lock:
            new_status = replace(self._status, **changes)
            if new_status == self._status:
                return new_status
            self._status = new_status
            observers = list(self._observers)

        if observers:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                self._notify(observers, new_status)
            else:
                loop.call_soon(self._notify, observers, new_status)
        return new_status

    @staticmethod
    def _notify(observers: List[StatusObserver], status: ServerStatus) -> None:
        for observer in observers:
            try:
                observer(status)
            except Exception as e:
                logger.error(f"Status observer {observer!r} failed: {e}", exc_info=True)
