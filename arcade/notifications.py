from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal, Mapping, cast

import redis

from arcade.errors import TransientStorageFailure

logger = logging.getLogger(__name__)

OUTBOX_MAXLEN = 200
INBOX_MAXLEN = 1000


@dataclass(frozen=True, slots=True)
class Outbox:
    """Pending messages for the bot to deliver to one external id."""

    user_id: int

    @property
    def key(self) -> str:
        return f"outbox:{self.user_id}"


def notify(*, r: redis.Redis, user_id: int, text: str, kind: str, extra: Mapping[str, str] | None = None) -> str | None:
    """Queue "deliver text to external id" for the messaging bot.

    Delivery is a side channel: a storage failure here is logged and dropped
    so it never undoes the ledger change that triggered it.
    """

    fields = {"type": kind, "user_id": str(user_id), "text": text, "ts": datetime.now(tz=UTC).isoformat()}
    if extra:
        fields.update({str(k): str(v) for k, v in extra.items()})

    try:
        # redis-py stubs expect field/value unions; we only use string fields/values.
        entry_id = r.xadd(Outbox(user_id).key, fields, maxlen=OUTBOX_MAXLEN, approximate=True)
    except redis.RedisError:
        logger.exception("Failed to queue %s notification for user %s", kind, user_id)
        return None
    return cast(str, entry_id)


def read_outbox(*, r: redis.Redis, user_id: int, count: int = 20) -> list[tuple[str, dict[str, str]]]:
    return cast(list[tuple[str, dict[str, str]]], r.xrange(Outbox(user_id).key, count=count))


@dataclass(frozen=True, slots=True)
class Inbox:
    """Conversation log with one external id: inbound texts and operator replies."""

    user_id: int

    @property
    def key(self) -> str:
        return f"inbox:{self.user_id}"


MessageSender = Literal["user", "bot"]


def record_message(*, r: redis.Redis, user_id: int, text: str, sender: MessageSender) -> tuple[str, dict[str, str]]:
    """Append one message to the user's conversation log.

    Unlike `notify`, this is the primary write of its request, so storage
    failures surface to the caller.
    """

    fields = {"from": sender, "user_id": str(user_id), "text": text, "ts": datetime.now(tz=UTC).isoformat()}
    try:
        entry_id = r.xadd(Inbox(user_id).key, fields, maxlen=INBOX_MAXLEN, approximate=True)
    except (redis.ConnectionError, redis.TimeoutError) as e:
        raise TransientStorageFailure("Storage unavailable, retry later") from e
    return cast(str, entry_id), fields


def read_messages(*, r: redis.Redis, user_id: int, count: int = 50) -> list[tuple[str, dict[str, str]]]:
    # Newest `count` entries, returned oldest first.
    entries = cast(list[tuple[str, dict[str, str]]], r.xrevrange(Inbox(user_id).key, count=count))
    return list(reversed(entries))
