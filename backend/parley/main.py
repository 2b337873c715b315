"""
parley: FastAPI backend entry point.

Realtime wiring lives in the lifespan: one ConnectionManager per process and
the RealtimeChannel picked for it (Redis relay when Redis answers, in-process
delivery otherwise), both kept on app.state.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from parley.api import auth, channels, dms, health, moderation, presence, roles, servers, users, voice
from parley.config import settings
from parley.core.errors import AuthorizationError, ParleyError
from parley.database import get_db
from parley.redis.client import close_redis, init_redis
from parley.services.realtime import build_realtime_channel
from parley.websocket.handlers import realtime_ws_handler
from parley.websocket.manager import ConnectionManager

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_redis()
    app.state.connections = ConnectionManager()
    app.state.realtime = build_realtime_channel(app.state.connections)
    await app.state.realtime.start()
    logger.info("Realtime channel: %s", type(app.state.realtime).__name__)
    yield
    await app.state.realtime.stop()
    await close_redis()


app = FastAPI(
    title="parley",
    description="Community chat backend: servers, roles, moderation, DMs and voice",
    version="1.0.0",
    debug=settings.DEBUG,
    lifespan=lifespan,
)


def _cors_options(origins: list[str]) -> dict:
    # Credentials cannot be combined with a literal "*" origin, so a wildcard
    # entry becomes a match-anything regex.
    explicit = [origin for origin in origins if origin != "*"]
    return {
        "allow_origins": explicit,
        "allow_origin_regex": ".*" if len(explicit) != len(origins) else None,
    }


app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    **_cors_options(settings.CORS_ORIGINS),
)

app.include_router(health.router)
for api_router in (
    auth.router,
    presence.router,
    presence.bulk_router,
    users.router,
    servers.router,
    moderation.router,
    roles.router,
    channels.router,
    dms.router,
    voice.router,
):
    app.include_router(api_router, prefix="/api")


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, db: Session = Depends(get_db)) -> None:
    state = websocket.app.state
    await realtime_ws_handler(websocket, db, state.connections, state.realtime)


@app.exception_handler(ParleyError)
async def parley_error_handler(request: Request, exc: ParleyError) -> JSONResponse:
    content = {"detail": exc.message, "code": exc.code}
    if isinstance(exc, AuthorizationError):
        content["reason"] = exc.reason.value
    return JSONResponse(status_code=exc.status_code, content=content)
