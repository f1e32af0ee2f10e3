from __future__ import annotations

from collections.abc import Generator

import redis
from fastapi import Depends
from fastapi.requests import HTTPConnection

from arcade.catalog import Catalog, get_catalog
from arcade.config import Settings, load_settings
from arcade.infra.redis_client import create_redis
from arcade.ledger import UserLedger
from arcade.websocket_hub import BroadcastHub


def get_redis() -> Generator[redis.Redis, None, None]:
    client = create_redis()
    try:
        yield client
    finally:
        client.close()


def get_settings(conn: HTTPConnection) -> Settings:
    settings = getattr(conn.app.state, "settings", None)
    if settings is None:
        settings = load_settings(dotenv=False)
    return settings


def get_ledger(
    r: redis.Redis = Depends(get_redis),
    settings: Settings = Depends(get_settings),
) -> UserLedger:
    return UserLedger(r, lock_ttl_ms=settings.lock_ttl_ms, lock_wait_ms=settings.lock_wait_ms)


def get_hub(conn: HTTPConnection) -> BroadcastHub:
    return conn.app.state.hub


def get_catalog_dep() -> Catalog:
    return get_catalog()
