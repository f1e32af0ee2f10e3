from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal, Protocol

from arcade.presence import PresenceFSM

logger = logging.getLogger(__name__)

PresenceAction = Literal["join", "leave"]


class Transport(Protocol):
    async def accept(self) -> None: ...

    async def send_json(self, data: Any) -> None: ...

    async def close(self) -> None: ...


@dataclass(slots=True)
class Connection:
    conn_id: int
    transport: Transport
    fsm: PresenceFSM = field(default_factory=PresenceFSM)
    user_id: int | None = None
    display_name: str | None = None


class BroadcastHub:
    """In-process chat and presence fan-out over live WebSocket connections.

    Connections live in a registry keyed by stable integer ids; handlers only
    hold the id. Delivery snapshots the registry and sends outside the registry
    lock. Deliveries are processed one event at a time, so every connection
    sees events in the order the hub handled them.

    A peer that fails or times out on send is dropped from the registry and its
    transport is closed, so its receive loop ends too; other peers are
    unaffected.
    """

    def __init__(self, *, send_timeout_s: float = 1.0) -> None:
        self._conns: dict[int, Connection] = {}
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()
        self._send_lock = asyncio.Lock()
        self._send_timeout_s = send_timeout_s

    async def connect(self, transport: Transport) -> int:
        await transport.accept()
        async with self._lock:
            conn_id = next(self._ids)
            self._conns[conn_id] = Connection(conn_id=conn_id, transport=transport)
        logger.debug("Connection %d opened", conn_id)
        return conn_id

    async def identify(self, conn_id: int, *, user_id: int, display_name: str) -> bool:
        async with self._lock:
            conn = self._conns.get(conn_id)
            if conn is None or conn.fsm.is_identified:
                return False
            conn.fsm.identify()
            conn.user_id = user_id
            conn.display_name = display_name

        logger.info("Connection %d identified as %s (%s)", conn_id, user_id, display_name)
        await self.announce_presence(conn_id, "join")
        return True

    async def disconnect(self, conn_id: int) -> None:
        async with self._lock:
            conn = self._conns.pop(conn_id, None)
            if conn is None:
                return
            was_identified = conn.fsm.is_identified
            conn.fsm.drop()

        logger.debug("Connection %d closed", conn_id)
        if was_identified:
            await self._fan_out(self._presence_payload(conn, "leave"), exclude=conn_id)

    async def broadcast_chat(self, conn_id: int, text: str) -> bool:
        """Send a chat line to everyone, the author included.

        Returns False when the message was dropped (unknown or anonymous
        connection, or blank text).
        """

        async with self._lock:
            conn = self._conns.get(conn_id)
            if conn is None or not conn.fsm.is_identified:
                logger.warning("Dropping chat from unidentified connection %d", conn_id)
                return False
            author, user_id = conn.display_name, conn.user_id

        text = text.strip()
        if not text:
            return False

        await self._fan_out(
            {
                "type": "chat",
                "author": author,
                "user_id": user_id,
                "text": text,
                "timestamp": datetime.now(tz=UTC).isoformat(),
            }
        )
        return True

    async def announce_presence(self, conn_id: int, action: PresenceAction) -> None:
        """Tell every other connection that `conn_id` joined or left."""

        async with self._lock:
            conn = self._conns.get(conn_id)
            if conn is None or not conn.fsm.is_identified:
                return
        await self._fan_out(self._presence_payload(conn, action), exclude=conn_id)

    def is_connected(self, conn_id: int) -> bool:
        return conn_id in self._conns

    async def publish(self, payload: dict[str, object]) -> None:
        """Deliver a server-originated event to every connection."""

        await self._fan_out(payload)

    def online_count(self) -> int:
        return sum(1 for c in self._conns.values() if c.fsm.is_identified)

    def online_users(self) -> list[tuple[int, str]]:
        return [
            (c.user_id, c.display_name or "")
            for c in list(self._conns.values())
            if c.fsm.is_identified and c.user_id is not None
        ]

    def _presence_payload(self, conn: Connection, action: PresenceAction) -> dict[str, object]:
        return {
            "type": "presence",
            "action": action,
            "user_id": conn.user_id,
            "display_name": conn.display_name,
            "online": self.online_count(),
        }

    async def _close(self, conn: Connection) -> None:
        try:
            await asyncio.wait_for(conn.transport.close(), timeout=self._send_timeout_s)
        except Exception as e:
            logger.warning("Closing connection %d failed: %r", conn.conn_id, e)

    async def _fan_out(self, payload: dict[str, object], *, exclude: int | None = None) -> None:
        pending: list[tuple[dict[str, object], int | None]] = [(payload, exclude)]

        async with self._send_lock:
            while pending:
                payload, exclude = pending.pop(0)
                async with self._lock:
                    targets = [c for c in self._conns.values() if c.conn_id != exclude]

                dead: list[Connection] = []
                for conn in targets:
                    try:
                        await asyncio.wait_for(conn.transport.send_json(payload), timeout=self._send_timeout_s)
                    except Exception as e:
                        logger.warning("Delivery to connection %d failed: %r", conn.conn_id, e)
                        dead.append(conn)

                if not dead:
                    continue

                async with self._lock:
                    removed = [c for c in dead if self._conns.pop(c.conn_id, None) is not None]
                    for c in removed:
                        was_identified = c.fsm.is_identified
                        c.fsm.drop()
                        if was_identified:
                            pending.append((self._presence_payload(c, "leave"), c.conn_id))

                for c in removed:
                    await self._close(c)
