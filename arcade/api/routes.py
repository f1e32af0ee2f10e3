from __future__ import annotations

import json
import logging

import redis
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ValidationError

from arcade.api.deps import get_catalog_dep, get_hub, get_ledger, get_redis
from arcade.api.models import (
    CatalogItemOut,
    GamePlayRequest,
    GamePlayResponse,
    GameResultRequest,
    GameResultResponse,
    InboundMessageRequest,
    InventoryResponse,
    LeaderboardResponse,
    OnlineResponse,
    OnlineUser,
    PurchaseRequest,
    PurchaseResponse,
    SendRequest,
    User,
    UserUpsertRequest,
)
from arcade.catalog import Catalog
from arcade.errors import ArcadeError, InsufficientFunds, InvalidInput, NotFound, TransientStorageFailure
from arcade.ledger import GameResult, UserLedger
from arcade.notifications import MessageSender, notify, read_messages, read_outbox, record_message
from arcade.rewards import play_game
from arcade.websocket_hub import BroadcastHub

logger = logging.getLogger(__name__)

router = APIRouter()


def _http_error(e: ArcadeError) -> HTTPException:
    if isinstance(e, NotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, InsufficientFunds):
        return HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=str(e))
    if isinstance(e, InvalidInput):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    if isinstance(e, TransientStorageFailure):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e),
            headers={"Retry-After": "1"},
        )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


def _result_response(result: GameResult) -> GameResultResponse:
    return GameResultResponse(
        new_coins=result.user.coins,
        new_xp=result.user.xp,
        new_level=result.user.level,
        leveled_up=result.leveled_up,
    )


def _notify_level_up(r: redis.Redis, result: GameResult) -> None:
    if not result.leveled_up:
        return
    level = result.user.level
    notify(
        r=r,
        user_id=result.user.user_id,
        text=f"Congratulations! You reached level {level}!",
        kind="level_up",
        extra={"level": str(level)},
    )


class _Hello(BaseModel):
    type: str
    user_id: int
    display_name: str


class _Chat(BaseModel):
    type: str
    text: str


@router.websocket("/ws")
async def presence_ws(
    websocket: WebSocket,
    hub: BroadcastHub = Depends(get_hub),
    ledger: UserLedger = Depends(get_ledger),
) -> None:
    conn_id = await hub.connect(websocket)

    try:
        while hub.is_connected(conn_id):
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                logger.warning("Ignoring non-JSON frame from connection %d", conn_id)
                continue
            kind = frame.get("type") if isinstance(frame, dict) else None
            try:
                if kind == "hello":
                    hello = _Hello.model_validate(frame)
                    if await hub.identify(conn_id, user_id=hello.user_id, display_name=hello.display_name):
                        # The per-user lock may wait; keep it off the event loop.
                        await run_in_threadpool(ledger.touch, hello.user_id)
                elif kind == "chat":
                    chat = _Chat.model_validate(frame)
                    await hub.broadcast_chat(conn_id, chat.text)
                else:
                    logger.warning("Ignoring frame of type %r from connection %d", kind, conn_id)
            except ValidationError as e:
                logger.warning("Malformed %s frame from connection %d: %s", kind, conn_id, e)
            except TransientStorageFailure:
                logger.warning("Presence heartbeat not recorded for connection %d", conn_id)
    except WebSocketDisconnect:
        await hub.disconnect(conn_id)
    except Exception:
        if not hub.is_connected(conn_id):
            # Dropped by the hub after a failed send; its transport is already closed.
            logger.debug("Receive loop for dropped connection %d ended", conn_id, exc_info=True)
            return
        await hub.disconnect(conn_id)
        raise


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/api/users", response_model=User)
def upsert_user_route(payload: UserUpsertRequest, ledger: UserLedger = Depends(get_ledger)) -> User:
    """Registration hook for the messaging bot; safe to call on every inbound message."""

    try:
        return ledger.upsert_user(payload.user_id, payload.display_name, payload.avatar)
    except ArcadeError as e:
        raise _http_error(e) from e


@router.get("/api/user/{user_id}", response_model=User)
def get_user_route(user_id: int, ledger: UserLedger = Depends(get_ledger)) -> User:
    try:
        return ledger.get_user(user_id)
    except ArcadeError as e:
        raise _http_error(e) from e


@router.get("/api/user/{user_id}/inventory", response_model=InventoryResponse)
def get_inventory_route(user_id: int, ledger: UserLedger = Depends(get_ledger)) -> InventoryResponse:
    try:
        items = ledger.inventory(user_id)
    except ArcadeError as e:
        raise _http_error(e) from e
    return InventoryResponse(user_id=user_id, items=items)


@router.get("/api/leaderboard", response_model=LeaderboardResponse)
def leaderboard_route(limit: int = 10, ledger: UserLedger = Depends(get_ledger)) -> LeaderboardResponse:
    if limit < 1 or limit > 100:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="limit must be between 1 and 100")
    try:
        return LeaderboardResponse(users=ledger.leaderboard(limit))
    except ArcadeError as e:
        raise _http_error(e) from e


@router.get("/api/shop", response_model=list[CatalogItemOut])
async def shop_route(catalog: Catalog = Depends(get_catalog_dep)) -> list[CatalogItemOut]:
    return [
        CatalogItemOut(item_id=i.item_id, name=i.name, description=i.description, price=i.price, currency=i.currency)
        for i in catalog.list_available()
    ]


@router.post("/api/purchase", response_model=PurchaseResponse)
def purchase_route(
    payload: PurchaseRequest,
    ledger: UserLedger = Depends(get_ledger),
    catalog: Catalog = Depends(get_catalog_dep),
    r: redis.Redis = Depends(get_redis),
) -> PurchaseResponse:
    item = catalog.get(payload.item_id)
    if item is None or not item.available:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Item {payload.item_id} not found")

    try:
        result = ledger.apply_purchase(payload.user_id, item)
    except ArcadeError as e:
        raise _http_error(e) from e

    notify(
        r=r,
        user_id=payload.user_id,
        text=f"You bought {item.name} for {item.price} {item.currency.value}.",
        kind="purchase",
        extra={"item_id": item.item_id},
    )
    return PurchaseResponse(
        user_id=payload.user_id,
        item_id=item.item_id,
        currency=item.currency,
        new_balance=result.new_balance,
    )


@router.post("/api/game/result", response_model=GameResultResponse)
def game_result_route(
    payload: GameResultRequest,
    ledger: UserLedger = Depends(get_ledger),
    r: redis.Redis = Depends(get_redis),
) -> GameResultResponse:
    """Credit a client-reported outcome. Amounts are deltas, not absolute values."""

    try:
        result = ledger.apply_game_result(
            payload.user_id,
            won=payload.won,
            coins_earned=payload.coins_earned,
            xp_earned=payload.xp_earned,
        )
    except ArcadeError as e:
        raise _http_error(e) from e

    _notify_level_up(r, result)
    return _result_response(result)


@router.post("/api/game/play", response_model=GamePlayResponse)
def game_play_route(
    payload: GamePlayRequest,
    ledger: UserLedger = Depends(get_ledger),
    r: redis.Redis = Depends(get_redis),
) -> GamePlayResponse:
    """Resolve a round on the server from the player's move and credit the reward."""

    try:
        outcome = play_game(payload.game, payload.move)
        result = ledger.apply_game_result(
            payload.user_id,
            won=outcome.won,
            coins_earned=outcome.coins,
            xp_earned=outcome.xp,
        )
    except ArcadeError as e:
        raise _http_error(e) from e

    _notify_level_up(r, result)
    return GamePlayResponse(
        **_result_response(result).model_dump(),
        game=payload.game,
        won=outcome.won,
        coins_earned=outcome.coins,
        xp_earned=outcome.xp,
        detail=outcome.detail,
    )


@router.get("/api/online", response_model=OnlineResponse)
async def online_route(hub: BroadcastHub = Depends(get_hub)) -> OnlineResponse:
    users = [OnlineUser(user_id=uid, display_name=name) for uid, name in hub.online_users()]
    return OnlineResponse(online=len(users), users=users)


@router.get("/api/users/{user_id}/outbox")
async def get_outbox_route(user_id: int, count: int = 20, r: redis.Redis = Depends(get_redis)) -> dict[str, object]:
    """Debug endpoint: read the notifications queued for the bot to deliver."""

    if count < 1 or count > 200:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="count must be between 1 and 200")

    try:
        entries = read_outbox(r=r, user_id=user_id, count=count)
    except redis.RedisError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    return {"user_id": user_id, "messages": [{"id": mid, "fields": fields} for mid, fields in entries]}


async def _relay_message(
    *, r: redis.Redis, hub: BroadcastHub, user_id: int, text: str, sender: MessageSender
) -> dict[str, object]:
    entry_id, fields = record_message(r=r, user_id=user_id, text=text, sender=sender)
    await hub.publish({"type": "message", "id": entry_id, **fields})
    return {"id": entry_id, "fields": fields}


@router.post("/api/users/{user_id}/messages", status_code=status.HTTP_201_CREATED)
async def inbound_message_route(
    user_id: int,
    payload: InboundMessageRequest,
    r: redis.Redis = Depends(get_redis),
    hub: BroadcastHub = Depends(get_hub),
) -> dict[str, object]:
    """Bot hook: a text arrived from `user_id` on the messaging platform."""

    try:
        return await _relay_message(r=r, hub=hub, user_id=user_id, text=payload.text, sender="user")
    except ArcadeError as e:
        raise _http_error(e) from e


@router.get("/api/users/{user_id}/messages")
async def list_messages_route(user_id: int, count: int = 50, r: redis.Redis = Depends(get_redis)) -> dict[str, object]:
    if count < 1 or count > 200:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="count must be between 1 and 200")

    try:
        entries = read_messages(r=r, user_id=user_id, count=count)
    except (redis.ConnectionError, redis.TimeoutError) as e:
        raise _http_error(TransientStorageFailure("Storage unavailable, retry later")) from e

    return {"user_id": user_id, "messages": [{"id": mid, "fields": fields} for mid, fields in entries]}


@router.post("/api/send")
async def send_route(
    payload: SendRequest,
    r: redis.Redis = Depends(get_redis),
    hub: BroadcastHub = Depends(get_hub),
) -> dict[str, object]:
    """Operator reply: queue `text` for the bot and record it in the conversation."""

    outbox_id = notify(r=r, user_id=payload.user_id, text=payload.text, kind="operator_message")
    if outbox_id is None:
        raise _http_error(TransientStorageFailure("Could not queue message, retry later"))

    try:
        message = await _relay_message(r=r, hub=hub, user_id=payload.user_id, text=payload.text, sender="bot")
    except ArcadeError as e:
        raise _http_error(e) from e
    return {"success": True, "outbox_id": outbox_id, "message": message}
