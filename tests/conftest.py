from __future__ import annotations

import os
from collections.abc import Generator
from datetime import UTC, datetime
from pathlib import Path

import fakeredis
import pytest


@pytest.fixture(scope="session", autouse=True)
def _init_catalog_from_test_fixtures() -> None:
    """Initialize the catalog from `tests/assets` and forbid the built-in fallback.

    This keeps tests hermetic and independent of the repo's real shop items.
    """

    os.environ["ARCADE_STRICT_CATALOG"] = "1"

    from arcade.catalog import init_catalog, reset_catalog_for_tests

    reset_catalog_for_tests()
    init_catalog(root=Path(__file__).resolve().parent, strict=True)


@pytest.fixture()
def redis_client() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture()
def ledger(redis_client: fakeredis.FakeRedis):
    from arcade.ledger import UserLedger

    fixed = datetime(2025, 1, 1, tzinfo=UTC)
    return UserLedger(redis_client, lock_wait_ms=2_000, clock=lambda: fixed)


@pytest.fixture()
def client_and_redis() -> Generator[tuple[object, fakeredis.FakeRedis], None, None]:
    """FastAPI TestClient wired to a fresh fakeredis instance."""

    from fastapi.testclient import TestClient

    from arcade.api.deps import get_redis
    from arcade.main import app

    r = fakeredis.FakeRedis(decode_responses=True)

    def _override() -> Generator[fakeredis.FakeRedis, None, None]:
        yield r

    app.dependency_overrides[get_redis] = _override
    with TestClient(app) as c:
        yield c, r
    app.dependency_overrides.clear()
