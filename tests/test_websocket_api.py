from __future__ import annotations

import fakeredis
from fastapi.testclient import TestClient


def test_ws_chat_and_presence(client_and_redis: tuple[TestClient, fakeredis.FakeRedis]) -> None:
    client, _ = client_and_redis
    client.post("/api/users", json={"user_id": 1, "display_name": "alice"})

    with client.websocket_connect("/ws") as alice:
        alice.send_json({"type": "hello", "user_id": 1, "display_name": "alice"})
        alice.send_text("not json")
        alice.send_json({"type": "chat", "text": "hi"})

        echo = alice.receive_json()
        assert echo["type"] == "chat"
        assert (echo["author"], echo["text"]) == ("alice", "hi")

        with client.websocket_connect("/ws") as bob:
            bob.send_json({"type": "hello", "user_id": 2, "display_name": "bob"})

            join = alice.receive_json()
            assert join == {"type": "presence", "action": "join", "user_id": 2, "display_name": "bob", "online": 2}

            bob.send_json({"type": "chat", "text": "hey alice"})
            for ws in (alice, bob):
                msg = ws.receive_json()
                assert (msg["type"], msg["author"], msg["text"]) == ("chat", "bob", "hey alice")

            online = client.get("/api/online").json()
            assert online["online"] == 2
            assert sorted(u["user_id"] for u in online["users"]) == [1, 2]

        leave = alice.receive_json()
        assert leave["action"] == "leave"
        assert leave["user_id"] == 2
        assert leave["online"] == 1


def test_ws_chat_requires_hello(client_and_redis: tuple[TestClient, fakeredis.FakeRedis]) -> None:
    client, _ = client_and_redis

    with client.websocket_connect("/ws") as anon:
        anon.send_json({"type": "chat", "text": "who am i"})
        anon.send_json({"type": "hello", "user_id": 5, "display_name": "eve"})
        anon.send_json({"type": "chat", "text": "now you know"})

        msg = anon.receive_json()
        assert msg["text"] == "now you know"


def test_ws_receives_relayed_messages(client_and_redis: tuple[TestClient, fakeredis.FakeRedis]) -> None:
    client, _ = client_and_redis

    with client.websocket_connect("/ws") as alice:
        alice.send_json({"type": "hello", "user_id": 1, "display_name": "alice"})
        alice.send_json({"type": "chat", "text": "ready"})
        assert alice.receive_json()["type"] == "chat"

        client.post("/api/users/42/messages", json={"text": "hello from the bot chat"})
        inbound = alice.receive_json()
        assert inbound["type"] == "message"
        assert (inbound["from"], inbound["user_id"], inbound["text"]) == ("user", "42", "hello from the bot chat")
        assert inbound["id"]

        client.post("/api/send", json={"user_id": 42, "text": "reply"})
        reply = alice.receive_json()
        assert (reply["type"], reply["from"], reply["text"]) == ("message", "bot", "reply")
