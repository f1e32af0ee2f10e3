from __future__ import annotations

import asyncio
from typing import Any

import pytest

from arcade.presence import PresenceFSM, PresencePhase
from arcade.websocket_hub import BroadcastHub


class FakeTransport:
    def __init__(self, *, fail: bool = False, hang: bool = False) -> None:
        self.accepted = False
        self.sent: list[dict[str, Any]] = []
        self.fail = fail
        self.hang = hang
        self.closed = False

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise RuntimeError("transport closed")
        if self.hang:
            await asyncio.sleep(10)
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True

    def of_type(self, kind: str) -> list[dict[str, Any]]:
        return [m for m in self.sent if m["type"] == kind]


async def _identified(hub: BroadcastHub, uid: int, name: str, **kw: bool) -> tuple[int, FakeTransport]:
    t = FakeTransport(**kw)
    cid = await hub.connect(t)
    await hub.identify(cid, user_id=uid, display_name=name)
    return cid, t


def test_presence_fsm_transitions() -> None:
    fsm = PresenceFSM()
    assert fsm.phase == PresencePhase.connected
    assert not fsm.is_identified

    fsm.identify()
    assert fsm.is_identified

    fsm.drop()
    assert fsm.phase == PresencePhase.disconnected


def test_presence_fsm_can_drop_before_identify() -> None:
    fsm = PresenceFSM()
    fsm.drop()
    assert fsm.phase == PresencePhase.disconnected


@pytest.mark.asyncio
async def test_chat_reaches_everyone_including_sender() -> None:
    hub = BroadcastHub()
    a, ta = await _identified(hub, 1, "alice")
    _, tb = await _identified(hub, 2, "bob")

    assert await hub.broadcast_chat(a, "  hello  ")

    for t in (ta, tb):
        chats = t.of_type("chat")
        assert len(chats) == 1
        assert chats[0]["author"] == "alice"
        assert chats[0]["text"] == "hello"
        assert chats[0]["timestamp"]


@pytest.mark.asyncio
async def test_chat_from_unidentified_connection_is_dropped() -> None:
    hub = BroadcastHub()
    _, ta = await _identified(hub, 1, "alice")
    anon = FakeTransport()
    anon_id = await hub.connect(anon)

    assert await hub.broadcast_chat(anon_id, "hi") is False
    assert await hub.broadcast_chat(9999, "hi") is False
    assert ta.of_type("chat") == []


@pytest.mark.asyncio
async def test_join_is_not_echoed_to_the_joiner() -> None:
    hub = BroadcastHub()
    _, ta = await _identified(hub, 1, "alice")
    _, tb = await _identified(hub, 2, "bob")

    assert tb.of_type("presence") == []
    joins = ta.of_type("presence")
    assert joins == [{"type": "presence", "action": "join", "user_id": 2, "display_name": "bob", "online": 2}]


@pytest.mark.asyncio
async def test_identify_twice_is_ignored() -> None:
    hub = BroadcastHub()
    a, _ = await _identified(hub, 1, "alice")
    _, tb = await _identified(hub, 2, "bob")

    assert await hub.identify(a, user_id=1, display_name="alice") is False
    assert tb.of_type("presence") == []


@pytest.mark.asyncio
async def test_disconnect_announces_leave_to_others() -> None:
    hub = BroadcastHub()
    _, ta = await _identified(hub, 1, "alice")
    b, _ = await _identified(hub, 2, "bob")

    await hub.disconnect(b)
    await hub.disconnect(b)  # idempotent

    leaves = [m for m in ta.of_type("presence") if m["action"] == "leave"]
    assert leaves == [{"type": "presence", "action": "leave", "user_id": 2, "display_name": "bob", "online": 1}]
    assert hub.online_count() == 1


@pytest.mark.asyncio
async def test_anonymous_disconnect_is_silent() -> None:
    hub = BroadcastHub()
    _, ta = await _identified(hub, 1, "alice")
    anon_id = await hub.connect(FakeTransport())

    await hub.disconnect(anon_id)

    assert ta.of_type("presence") == []


@pytest.mark.asyncio
async def test_failed_peer_does_not_block_others() -> None:
    hub = BroadcastHub()
    a, ta = await _identified(hub, 1, "alice")
    _, tb = await _identified(hub, 2, "bob")
    _, tc = await _identified(hub, 3, "carol")

    tb.fail = True
    assert await hub.broadcast_chat(a, "still here?")

    assert [m["text"] for m in ta.of_type("chat")] == ["still here?"]
    assert [m["text"] for m in tc.of_type("chat")] == ["still here?"]
    assert tb.of_type("chat") == []

    # The dead peer is dropped and the survivors hear that it left.
    assert hub.online_count() == 2
    assert any(m["action"] == "leave" and m["user_id"] == 2 for m in tc.of_type("presence"))


@pytest.mark.asyncio
async def test_slow_peer_times_out_without_blocking_others() -> None:
    hub = BroadcastHub(send_timeout_s=0.05)
    a, ta = await _identified(hub, 1, "alice")
    _, tc = await _identified(hub, 3, "carol")
    _, slow = await _identified(hub, 2, "bob")

    slow.hang = True
    assert await hub.broadcast_chat(a, "ping")

    assert [m["text"] for m in ta.of_type("chat")] == ["ping"]
    assert [m["text"] for m in tc.of_type("chat")] == ["ping"]
    assert [uid for uid, _ in hub.online_users()] == [1, 3]


@pytest.mark.asyncio
async def test_messages_arrive_in_processing_order() -> None:
    hub = BroadcastHub()
    a, ta = await _identified(hub, 1, "alice")
    b, tb = await _identified(hub, 2, "bob")

    await asyncio.gather(*(hub.broadcast_chat(a if i % 2 else b, f"m{i}") for i in range(10)))

    assert [m["text"] for m in ta.of_type("chat")] == [m["text"] for m in tb.of_type("chat")]
    assert len(ta.of_type("chat")) == 10


@pytest.mark.asyncio
async def test_dropped_peer_transport_is_closed() -> None:
    hub = BroadcastHub(send_timeout_s=0.05)
    a, ta = await _identified(hub, 1, "alice")
    failing_id, failing = await _identified(hub, 2, "bob")
    slow_id, slow = await _identified(hub, 3, "carol")

    failing.fail = True
    slow.hang = True
    assert await hub.broadcast_chat(a, "anyone?")

    assert failing.closed and slow.closed
    assert not ta.closed
    assert not hub.is_connected(failing_id)
    assert not hub.is_connected(slow_id)
    assert hub.is_connected(a)


@pytest.mark.asyncio
async def test_publish_reaches_anonymous_connections() -> None:
    hub = BroadcastHub()
    _, ta = await _identified(hub, 1, "alice")
    anon = FakeTransport()
    await hub.connect(anon)

    await hub.publish({"type": "message", "user_id": "7", "from": "user", "text": "hi"})

    assert [m["text"] for m in ta.of_type("message")] == ["hi"]
    assert [m["text"] for m in anon.of_type("message")] == ["hi"]


def test_presence_phase_values() -> None:
    fsm = PresenceFSM()
    assert fsm.phase is PresencePhase.connected
    fsm.identify()
    assert fsm.phase is PresencePhase.identified
    assert fsm.is_identified
