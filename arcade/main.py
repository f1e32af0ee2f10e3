from __future__ import annotations

import logging
from pathlib import Path

import redis
from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.responses import RedirectResponse
from fastapi.staticfiles import StaticFiles

from arcade.api.deps import get_ledger, get_redis
from arcade.api.routes import router
from arcade.catalog import init_catalog
from arcade.config import load_settings
from arcade.errors import TransientStorageFailure
from arcade.ledger import UserLedger
from arcade.websocket_hub import BroadcastHub

APP_NAME = "arcade"
APP_VERSION = "0.1.0"
VISITS_KEY = "arcade:visits"

app = FastAPI(title=APP_NAME, version=APP_VERSION)
app.include_router(router)

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

_project_root = Path(__file__).resolve().parent.parent

# Browser client (no build step). Absent in tests/CI; don't fail import.
_static_dir = _project_root / "static"
if _static_dir.exists():
    app.mount("/ui", StaticFiles(directory=str(_static_dir), html=True), name="ui")


@app.on_event("startup")
async def _startup() -> None:
    settings = load_settings()
    logging.getLogger().setLevel(settings.log_level)

    app.state.settings = settings
    app.state.hub = BroadcastHub(send_timeout_s=settings.ws_send_timeout_ms / 1000)
    init_catalog(root=_project_root, strict=settings.strict_catalog)
    logger.info("%s %s started", APP_NAME, APP_VERSION)


@app.get("/")
async def _root() -> RedirectResponse:
    return RedirectResponse(url="/ui/")


@app.get("/info")
def info(r: redis.Redis = Depends(get_redis), ledger: UserLedger = Depends(get_ledger)) -> dict[str, object]:
    try:
        visits = int(r.incr(VISITS_KEY))
        users = ledger.count_users()
    except (redis.ConnectionError, redis.TimeoutError, TransientStorageFailure) as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Storage unavailable") from e
    return {"name": APP_NAME, "version": APP_VERSION, "visits": visits, "users": users}
