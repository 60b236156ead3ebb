"""
WebSocket Bridge Microservice

Subscribes to the order events Redis channel and pushes every event to the
staff screens allowed to see it:
- admin and cashier: everything
- kitchen and bar (KDS): new orders, status changes and stock changes

Run with: uvicorn orderflow.ws_bridge:app
"""
import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

import redis.asyncio as redis
from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from starlette.types import ASGIApp, Receive, Scope, Send

from .events import EventType
from .models import Role
from .security import decode_access_token
from .settings import Settings, settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

KDS_EVENTS = frozenset({
    EventType.new_order,
    EventType.order_status_update,
    EventType.stock_update,
})

# Event types each role receives; None means all of them
ROLE_EVENTS: dict[Role, frozenset[EventType] | None] = {
    Role.admin: None,
    Role.cashier: None,
    Role.kitchen: KDS_EVENTS,
    Role.bar: KDS_EVENTS,
}

# Store connected clients per role
role_connections: dict[Role, set[WebSocket]] = {}

RETRY_SECONDS = 5


def audience(event_type: str) -> list[Role]:
    """Roles that subscribe to `event_type`."""
    return [
        role for role, wanted in ROLE_EVENTS.items()
        if wanted is None or event_type in {e.value for e in wanted}
    ]


def validate_jwt_token(token: str, app_settings: Settings) -> Optional[dict]:
    """Validate JWT token and extract the role."""
    payload = decode_access_token(token, app_settings)
    if payload is None:
        return None
    try:
        role = Role(payload["role"])
    except ValueError:
        return None
    return {"role": role, "username": payload["sub"]}


async def broadcast_event(data: str | bytes) -> int:
    """Send a raw event to every socket whose role subscribes to it. Returns the number of sends."""
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    try:
        event_type = json.loads(data).get("type")
    except (json.JSONDecodeError, AttributeError):
        logger.warning(f"Dropping malformed event: {data[:200]}")
        return 0

    sent = 0
    for role in audience(event_type):
        sockets = role_connections.get(role)
        if not sockets:
            continue
        dead_connections = set()
        for ws in list(sockets):
            try:
                await ws.send_text(data)
                sent += 1
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                logger.info(f"Dropping dead {role.value} connection: {e}")
                dead_connections.add(ws)
        sockets -= dead_connections
    return sent


async def redis_listener(redis_url: str, channel: str):
    """Subscribe to Redis and broadcast to WebSocket clients."""
    while True:
        try:
            r = redis.from_url(redis_url)
            pubsub = r.pubsub()
            await pubsub.subscribe(channel)
            logger.info(f"Listening for events on {channel}")

            async for message in pubsub.listen():
                if message["type"] == "message":
                    await broadcast_event(message["data"])

        except redis.RedisError as e:
            logger.error(f"Redis connection error: {e}", exc_info=True)
            await asyncio.sleep(RETRY_SECONDS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Start Redis listener on startup
    app_settings: Settings = app.state.settings
    task = None
    if app_settings.redis_url:
        task = asyncio.create_task(redis_listener(app_settings.redis_url, app_settings.events_channel))
    else:
        logger.warning("REDIS_URL is empty, no events will be forwarded")
    yield
    if task is not None:
        task.cancel()


app_base = FastAPI(title="Order Flow WS Bridge", lifespan=lifespan)
app_base.state.settings = settings


class ASGIRequestLoggingMiddleware:
    """ASGI middleware logging every WebSocket handshake that reaches the app."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] == "websocket":
            client_host = scope["client"][0] if scope.get("client") else "unknown"
            logger.info(f"WebSocket Request: {scope.get('path', 'UNKNOWN')} from {client_host}")
        await self.app(scope, receive, send)


app_base.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app = ASGIRequestLoggingMiddleware(app_base)


@app_base.get("/health")
def health(request: Request):
    app_settings: Settings = request.app.state.settings
    return {
        "status": "ok",
        "connections": {role.value: len(sockets) for role, sockets in role_connections.items()},
        "total_connections": sum(len(sockets) for sockets in role_connections.values()),
        "config": {
            "redis_configured": bool(app_settings.redis_url),
            "secret_key_configured": app_settings.secret_key != "CHANGE_THIS_IN_PRODUCTION",
            "channel": app_settings.events_channel,
        },
    }


@app_base.websocket("/ws/staff")
async def websocket_staff_endpoint(websocket: WebSocket, token: Optional[str] = Query(None)):
    """WebSocket endpoint for staff screens - requires JWT authentication."""
    client_host = websocket.client.host if websocket.client else "unknown"
    await websocket.accept()

    if not token:
        logger.warning(f"WebSocket /ws/staff: Missing token from {client_host}")
        await websocket.close(code=1008, reason="Missing authentication token")
        return

    token_info = validate_jwt_token(token, websocket.app.state.settings)
    if not token_info:
        logger.warning(f"WebSocket /ws/staff: Invalid token from {client_host}")
        await websocket.close(code=1008, reason="Invalid authentication token")
        return

    role = token_info["role"]
    role_connections.setdefault(role, set()).add(websocket)
    logger.info(f"WebSocket /ws/staff: {token_info['username']} connected as {role.value} from {client_host}")
    await websocket.send_json({"type": "connected", "role": role.value})

    try:
        while True:
            # Keep connection alive; client messages are ignored
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        # Remove from connections
        if role in role_connections:
            role_connections[role].discard(websocket)
            if not role_connections[role]:
                del role_connections[role]
