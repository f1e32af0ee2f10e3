from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from e


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in {"1", "true", "yes"}


@dataclass(frozen=True, slots=True)
class Settings:
    redis_url: str
    # Per-user lock: how long a holder may keep it, and how long a caller waits for it.
    lock_ttl_ms: int
    lock_wait_ms: int
    ws_send_timeout_ms: int
    log_level: str
    strict_catalog: bool


def load_settings(*, dotenv: bool = True) -> Settings:
    """Read settings from the environment.

    A `.env` file in the working directory is loaded first, without overriding
    variables that are already set.
    """

    if dotenv:
        load_dotenv(override=False)

    return Settings(
        redis_url=os.environ.get("REDIS_URL", "redis://localhost:6379/0"),
        lock_ttl_ms=_env_int("ARCADE_LOCK_TTL_MS", 5_000),
        lock_wait_ms=_env_int("ARCADE_LOCK_WAIT_MS", 2_000),
        ws_send_timeout_ms=_env_int("ARCADE_WS_SEND_TIMEOUT_MS", 1_000),
        log_level=os.environ.get("ARCADE_LOG_LEVEL", "INFO").upper(),
        strict_catalog=_env_flag("ARCADE_STRICT_CATALOG"),
    )
