"""Tests for broadcast fan-out and the hello snapshot."""

import json
import math

import pytest

from link_bridge.connection import ConnectionHandle
from link_bridge.dispatcher import BroadcastDispatcher

pytestmark = pytest.mark.asyncio


async def ready_handle(registry, socket):
    handle = ConnectionHandle(registry.next_id(), socket, registry)
    await handle.open()
    return handle


@pytest.fixture
def dispatcher(registry, shared_state):
    return BroadcastDispatcher(registry, shared_state)


class TestHelloSnapshot:
    async def test_hello_reflects_shared_state(self, dispatcher, registry, shared_state, make_socket):
        shared_state.update(tempo=128.0, is_playing=True, num_peers=2)
        await ready_handle(registry, make_socket())

        hello = dispatcher.hello()
        assert hello["type"] == "hello"
        assert hello["tempo"] == 128.0
        assert hello["isPlaying"] is True
        assert hello["numPeers"] == 2
        assert hello["numClients"] == 1

    async def test_rejected_state_keeps_hello_available(self, dispatcher, registry, shared_state, make_socket):
        shared_state.update(tempo=99.0)
        with pytest.raises(ValueError):
            shared_state.update(tempo=math.nan)

        socket = make_socket()
        handle = ConnectionHandle(registry.next_id(), socket, registry)
        assert await handle.open(dispatcher.encoded_hello) is True
        hello = socket.sent_json()[0]
        assert hello["type"] == "hello"
        assert hello["tempo"] == 99.0
        assert dispatcher.messages_dropped == 0

    async def test_unbuildable_hello_is_dropped(self, dispatcher, monkeypatch):
        def broken_hello():
            raise TypeError("float() argument must be a string or a real number, not 'NoneType'")

        monkeypatch.setattr(dispatcher, "hello", broken_hello)
        assert dispatcher.encoded_hello() is None
        assert dispatcher.messages_dropped == 1


class TestBroadcast:
    async def test_identical_payload_to_every_member(self, dispatcher, registry, make_socket):
        sockets = [make_socket() for _ in range(3)]
        for socket in sockets:
            await ready_handle(registry, socket)

        delivered = await dispatcher.broadcast({"type": "tick", "beat": 1.0})

        assert delivered == 3
        expected = json.dumps({"type": "tick", "beat": 1.0})
        assert [s.sent for s in sockets] == [[expected]] * 3
        assert dispatcher.broadcasts_sent == 1

    async def test_partial_failure_is_isolated(self, dispatcher, registry, make_socket):
        good_a = make_socket()
        bad = make_socket(fail_send=RuntimeError("reset by peer"))
        good_b = make_socket()
        for socket in (good_a, bad, good_b):
            await ready_handle(registry, socket)

        delivered = await dispatcher.broadcast({"type": "tick", "beat": 2.0})

        assert delivered == 2
        assert len(good_a.sent) == 1
        assert len(good_b.sent) == 1
        assert dispatcher.send_failures == 1
        # The failing member stays registered until its receive loop ends
        assert registry.size() == 3

    async def test_member_removed_mid_broadcast_is_tolerated(self, dispatcher, registry, make_socket):
        first = await ready_handle(registry, make_socket())
        second_socket = make_socket()
        await ready_handle(registry, second_socket)
        first.close()

        assert await dispatcher.broadcast({"type": "tick"}) == 1
        assert len(second_socket.sent) == 1

    async def test_unencodable_message_is_dropped(self, dispatcher, registry, make_socket):
        socket = make_socket()
        await ready_handle(registry, socket)

        assert await dispatcher.broadcast({"type": "tick", "beat": math.inf}) == 0
        assert socket.sent == []
        assert dispatcher.messages_dropped == 1

    async def test_broadcast_with_no_members(self, dispatcher):
        assert await dispatcher.broadcast({"type": "tick"}) == 0

    async def test_state_message_counts_members(self, dispatcher, registry, make_socket):
        sockets = [make_socket() for _ in range(2)]
        for socket in sockets:
            await ready_handle(registry, socket)

        await dispatcher.broadcast(dispatcher.state_message())

        for socket in sockets:
            message = socket.sent_json()[0]
            assert message["type"] == "state"
            assert message["numClients"] == 2

    async def test_send_to_single_member(self, dispatcher, registry, make_socket):
        target_socket = make_socket()
        other_socket = make_socket()
        target = await ready_handle(registry, target_socket)
        await ready_handle(registry, other_socket)

        assert await dispatcher.send_to(target, {"type": "ack"}) is True
        assert target_socket.sent_json() == [{"type": "ack"}]
        assert other_socket.sent == []
