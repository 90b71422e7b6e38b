# routers/websocket_router.py — Live notification channel
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from auth import ACCESS_COOKIE, AuthService, require_route
from database import get_db_session
from errors import AppError
from notifications import presence
from principals import CurrentUser

router = APIRouter(tags=["WebSocket"])
logger = logging.getLogger("teamhub.ws")

WS_AUTH_FAILED = 4001


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.websocket("/ws/notifications")
async def websocket_notifications(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db_session),
):
    """Push channel for notifications.

    Authenticated with an access token from `?token=` or the access cookie.
    The principal is re-read so inactive users cannot connect.
    """
    raw = token or websocket.cookies.get(ACCESS_COOKIE)
    if not raw:
        await websocket.close(code=WS_AUTH_FAILED, reason="Authentication required")
        return
    try:
        claims = AuthService.decode_access_token(raw)
        principal = await AuthService.resolve_principal(claims, db)
    except AppError as e:
        await websocket.close(code=WS_AUTH_FAILED, reason=e.detail["code"])
        return
    finally:
        # Release the pooled connection; the socket may stay open for hours.
        await db.close()

    await websocket.accept()
    connection_id = presence.register(principal.id, websocket)
    logger.info("WS connected: user=%s conn=%s", principal.id, connection_id)

    try:
        await websocket.send_json({"event": "connected", "userId": principal.id, "timestamp": _now()})
        while True:
            try:
                data = await websocket.receive_json()
            except ValueError:
                continue
            if isinstance(data, dict) and data.get("type") == "ping":
                await websocket.send_json({"event": "pong", "timestamp": _now()})
    except WebSocketDisconnect:
        pass
    finally:
        presence.unregister(principal.id, connection_id)
        logger.info("WS disconnected: user=%s conn=%s", principal.id, connection_id)


@router.get("/ws/stats")
async def websocket_stats(user: CurrentUser = Depends(require_route("ws.stats"))):
    """Connection statistics, for the OWNER only"""
    return {
        "onlineUsers": len(presence.online_users()),
        "connections": presence.connection_count(),
    }
