from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime

import redis

from arcade.api.models import InventoryRecord, User
from arcade.catalog import CatalogItem
from arcade.errors import InsufficientFunds, InvalidInput, NotFound, TransientStorageFailure
from arcade.lock import user_lock
from arcade.rewards import compute_game_delta, compute_level, compute_purchase

logger = logging.getLogger(__name__)

USERS_SET_KEY = "arcade:users"
LEADERBOARD_KEY = "arcade:leaderboard"
USER_KEY_PREFIX = "arcade:user:"  # + {user_id}
INVENTORY_KEY_PREFIX = "arcade:inventory:"  # + {user_id}


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _user_key(user_id: int) -> str:
    return f"{USER_KEY_PREFIX}{user_id}"


def _inventory_key(user_id: int) -> str:
    return f"{INVENTORY_KEY_PREFIX}{user_id}"


@dataclass(frozen=True, slots=True)
class PurchaseResult:
    user: User
    item: CatalogItem
    record: InventoryRecord

    @property
    def new_balance(self) -> int:
        return getattr(self.user, self.item.currency.value)


@dataclass(frozen=True, slots=True)
class GameResult:
    user: User
    previous_level: int
    leveled_up: bool


def rank_users(users: list[User]) -> list[User]:
    """Leaderboard order: level desc, then xp desc."""

    return sorted(users, key=lambda u: (u.level, u.xp), reverse=True)


@contextmanager
def _storage() -> Iterator[None]:
    try:
        yield
    except (redis.ConnectionError, redis.TimeoutError) as e:
        logger.error("Ledger storage unavailable: %s", e)
        raise TransientStorageFailure("Storage unavailable, retry later") from e


class UserLedger:
    """Users, balances and the purchase log, persisted in Redis.

    Every mutation of an existing user runs under a per-user lock and commits
    with a single MULTI/EXEC, so a failed check never leaves partial writes and
    two concurrent mutations of the same user cannot lose an update.
    """

    def __init__(
        self,
        r: redis.Redis,
        *,
        lock_ttl_ms: int = 5_000,
        lock_wait_ms: int = 2_000,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self._r = r
        self._lock_ttl_ms = lock_ttl_ms
        self._lock_wait_ms = lock_wait_ms
        self._clock = clock

    @contextmanager
    def _locked(self, user_id: int) -> Iterator[None]:
        with user_lock(r=self._r, user_id=user_id, ttl_ms=self._lock_ttl_ms, wait_ms=self._lock_wait_ms):
            yield

    def _load(self, user_id: int) -> User | None:
        raw = self._r.get(_user_key(user_id))
        if not raw:
            return None
        return User.model_validate_json(raw)

    def _require(self, user_id: int) -> User:
        user = self._load(user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        return user

    def get_user(self, user_id: int) -> User:
        with _storage():
            return self._require(user_id)

    def upsert_user(self, user_id: int, display_name: str, avatar: str | None = None) -> User:
        display_name = display_name.strip()
        if not display_name:
            raise InvalidInput("display_name must not be blank")

        with _storage(), self._locked(user_id):
            now = self._clock()
            user = self._load(user_id)
            if user is None:
                user = User(user_id=user_id, display_name=display_name, avatar=avatar, created_at=now, last_active_at=now)
                logger.info("Registered user %s (%s)", user_id, display_name)
            else:
                user.display_name = display_name
                user.avatar = avatar
                user.last_active_at = now

            pipe = self._r.pipeline(transaction=True)
            pipe.set(_user_key(user_id), user.model_dump_json())
            pipe.sadd(USERS_SET_KEY, str(user_id))
            pipe.zadd(LEADERBOARD_KEY, {str(user_id): user.xp})
            pipe.execute()
            return user

    def touch(self, user_id: int) -> User | None:
        """Bump last-active for a presence heartbeat. Unknown users are ignored."""

        with _storage(), self._locked(user_id):
            user = self._load(user_id)
            if user is None:
                return None
            user.last_active_at = self._clock()
            self._r.set(_user_key(user_id), user.model_dump_json())
            return user

    def apply_purchase(self, user_id: int, item: CatalogItem) -> PurchaseResult:
        with _storage(), self._locked(user_id):
            user = self._require(user_id)
            field = item.currency.value
            balance: int = getattr(user, field)

            ok, new_balance = compute_purchase(balance, item.price)
            if not ok:
                raise InsufficientFunds(currency=field, balance=balance, price=item.price)

            now = self._clock()
            setattr(user, field, new_balance)
            user.last_active_at = now
            record = InventoryRecord(user_id=user_id, item_id=item.item_id, purchased_at=now)

            pipe = self._r.pipeline(transaction=True)
            pipe.set(_user_key(user_id), user.model_dump_json())
            pipe.rpush(_inventory_key(user_id), record.model_dump_json())
            pipe.execute()

        logger.info("User %s bought %s for %d %s", user_id, item.item_id, item.price, field)
        return PurchaseResult(user=user, item=item, record=record)

    def apply_game_result(self, user_id: int, *, won: bool, coins_earned: int, xp_earned: int) -> GameResult:
        if xp_earned < 0:
            raise InvalidInput("xp_earned must be >= 0")

        with _storage(), self._locked(user_id):
            user = self._require(user_id)
            previous_level = user.level

            user.coins = compute_game_delta(coins_earned, user.coins)
            user.xp += xp_earned
            if won:
                user.wins += 1
            else:
                user.losses += 1
            user.last_active_at = self._clock()

            pipe = self._r.pipeline(transaction=True)
            pipe.set(_user_key(user_id), user.model_dump_json())
            pipe.zadd(LEADERBOARD_KEY, {str(user_id): user.xp})
            pipe.execute()

        new_level = compute_level(user.xp)
        leveled_up = new_level > previous_level
        if leveled_up:
            logger.info("User %s reached level %d", user_id, new_level)
        return GameResult(user=user, previous_level=previous_level, leveled_up=leveled_up)

    def inventory(self, user_id: int) -> list[InventoryRecord]:
        with _storage():
            self._require(user_id)
            raw = self._r.lrange(_inventory_key(user_id), 0, -1)
        return [InventoryRecord.model_validate_json(x) for x in raw]

    def leaderboard(self, limit: int = 10) -> list[User]:
        if limit < 1:
            raise InvalidInput("limit must be >= 1")

        with _storage():
            ids = self._r.zrevrange(LEADERBOARD_KEY, 0, limit - 1)
            if not ids:
                return []
            raws = self._r.mget([_user_key(int(i)) for i in ids])

        users = [User.model_validate_json(raw) for raw in raws if raw]
        return rank_users(users)

    def count_users(self) -> int:
        with _storage():
            return int(self._r.scard(USERS_SET_KEY))
