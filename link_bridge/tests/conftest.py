"""Shared fixtures for the LinkBridge test suite."""

import asyncio
import json
import time
from typing import Callable, List, Optional

import pytest
import pytest_asyncio
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosedError
from websockets.protocol import State

from link_bridge.config import BridgeConfig
from link_bridge.registry import ConnectionRegistry
from link_bridge.server import LinkBridgeServer
from link_bridge.state import SharedState

_END = object()


class MockWebSocket:
    """In-memory stand-in for a websockets ServerConnection."""

    def __init__(self, state: State = State.OPEN, fail_send: Optional[Exception] = None):
        self.state = state
        self.fail_send = fail_send
        self.sent: List[str] = []
        self.close_calls: List[tuple] = []
        self.remote_address = ("127.0.0.1", 50000)
        self.send_gate: Optional[asyncio.Event] = None
        self._incoming: asyncio.Queue = asyncio.Queue()

    def feed(self, *messages) -> None:
        """Queue inbound frames (str, bytes, or an exception to raise)."""
        for message in messages:
            self._incoming.put_nowait(message)

    def disconnect(self, error: Optional[Exception] = None) -> None:
        """End the inbound stream cleanly, or with error."""
        self._incoming.put_nowait(error if error is not None else _END)

    async def send(self, message: str) -> None:
        if self.send_gate is not None:
            await self.send_gate.wait()
        if self.fail_send is not None:
            raise self.fail_send
        self.sent.append(message)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_calls.append((code, reason))
        self.state = State.CLOSED
        self._incoming.put_nowait(_END)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is _END:
            self.state = State.CLOSED
            raise StopAsyncIteration
        if isinstance(item, Exception):
            self.state = State.CLOSED
            raise item
        return item

    def sent_json(self) -> List[dict]:
        return [json.loads(m) for m in self.sent]


def connection_lost() -> ConnectionClosedError:
    return ConnectionClosedError(None, None)


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def shared_state() -> SharedState:
    return SharedState()


@pytest.fixture
def make_socket() -> Callable[..., MockWebSocket]:
    return MockWebSocket


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll predicate until it is true or fail after timeout."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.01)


async def recv_json(client, timeout: float = 2.0) -> dict:
    return json.loads(await asyncio.wait_for(client.recv(), timeout=timeout))


@pytest_asyncio.fixture
async def bridge():
    """A LinkBridgeServer listening on an ephemeral loopback port."""
    server = LinkBridgeServer(
        BridgeConfig(host="127.0.0.1", port=0, stop_grace_seconds=2.0),
        address_resolver=lambda host: host,
    )
    await server.start()
    yield server
    server.stop()
    await server.wait_closed()


@pytest_asyncio.fixture
async def open_client(bridge):
    """Factory connecting loopback clients to the bridge; closes them afterwards."""
    clients = []

    async def _open():
        client = await connect(f"ws://127.0.0.1:{bridge.port}")
        clients.append(client)
        return client

    yield _open
    for client in clients:
        await client.close()
