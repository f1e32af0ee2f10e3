from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

import redis

from arcade.errors import TransientStorageFailure

logger = logging.getLogger(__name__)

_POLL_S = 0.005


def _lock_key(user_id: int) -> str:
    return f"lock:user:{user_id}"


def _release(r: redis.Redis, key: str, token: str) -> None:
    # Compare-and-delete: never drop a lock that expired and now belongs to someone else.
    with r.pipeline() as pipe:
        try:
            pipe.watch(key)
            if pipe.get(key) != token:
                pipe.unwatch()
                logger.warning("Lock %s expired before release", key)
                return
            pipe.multi()
            pipe.delete(key)
            pipe.execute()
        except redis.WatchError:
            logger.warning("Lock %s changed during release", key)


@contextmanager
def user_lock(*, r: redis.Redis, user_id: int, ttl_ms: int = 5_000, wait_ms: int = 2_000) -> Iterator[None]:
    """Per-user mutual exclusion around ledger read-modify-write sequences.

    Waits up to `wait_ms` for the lock; the TTL bounds how long a crashed
    holder can block others. Locks for different users never contend.
    """

    key = _lock_key(user_id)
    token = uuid.uuid4().hex
    deadline = time.monotonic() + wait_ms / 1000

    while not r.set(key, token, nx=True, px=ttl_ms):
        if time.monotonic() >= deadline:
            logger.warning("Timed out waiting for %s", key)
            raise TransientStorageFailure(f"User {user_id} is busy, retry later")
        time.sleep(_POLL_S)

    try:
        yield
    finally:
        _release(r, key, token)
