from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, computed_field

from arcade.catalog import Currency
from arcade.rewards import GameName, compute_level

STARTING_COINS = 100
STARTING_GEMS = 10


class User(BaseModel):
    # External id as known to the messaging platform.
    user_id: int
    display_name: str
    avatar: str | None = None

    coins: int = Field(default=STARTING_COINS, ge=0)
    gems: int = Field(default=STARTING_GEMS, ge=0)
    xp: int = Field(default=0, ge=0)

    wins: int = Field(default=0, ge=0)
    losses: int = Field(default=0, ge=0)

    created_at: datetime
    last_active_at: datetime

    # Derived on every read; the stored copy is ignored when loading.
    @computed_field  # type: ignore[prop-decorator]
    @property
    def level(self) -> int:
        return compute_level(self.xp)


class InventoryRecord(BaseModel):
    user_id: int
    item_id: str
    purchased_at: datetime


class CatalogItemOut(BaseModel):
    item_id: str
    name: str
    description: str
    price: int
    currency: Currency


class UserUpsertRequest(BaseModel):
    user_id: int
    display_name: str = Field(..., min_length=1, max_length=128)
    avatar: str | None = Field(default=None, max_length=2048)


class PurchaseRequest(BaseModel):
    user_id: int
    item_id: str = Field(..., min_length=1)


class PurchaseResponse(BaseModel):
    user_id: int
    item_id: str
    currency: Currency
    new_balance: int


class GameResultRequest(BaseModel):
    user_id: int
    won: bool
    coins_earned: int
    # Negative xp is rejected by the ledger as InvalidInput (422), not by schema.
    xp_earned: int


class GameResultResponse(BaseModel):
    new_coins: int
    new_xp: int
    new_level: int
    leveled_up: bool


class GamePlayRequest(BaseModel):
    user_id: int
    game: GameName
    move: str = ""


class GamePlayResponse(GameResultResponse):
    game: GameName
    won: bool
    coins_earned: int
    xp_earned: int
    detail: dict[str, object] = Field(default_factory=dict)


class LeaderboardResponse(BaseModel):
    users: list[User]


class InventoryResponse(BaseModel):
    user_id: int
    items: list[InventoryRecord]


class OnlineUser(BaseModel):
    user_id: int
    display_name: str


class OnlineResponse(BaseModel):
    online: int
    users: list[OnlineUser]


class InboundMessageRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=4096)


class SendRequest(BaseModel):
    user_id: int
    text: str = Field(..., min_length=1, max_length=4096)
