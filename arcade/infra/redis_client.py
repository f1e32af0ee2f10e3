from __future__ import annotations

import redis

from arcade.config import load_settings


def create_redis(url: str | None = None) -> redis.Redis:
    """Build a client for the ledger store.

    Connection errors surface lazily on the first command, where the ledger
    turns them into `TransientStorageFailure`.
    """

    if url is None:
        url = load_settings(dotenv=False).redis_url
    # decode_responses=True => strings in/out instead of bytes
    return redis.Redis.from_url(url, decode_responses=True, socket_timeout=5)
