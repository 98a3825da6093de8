"""
WebSocket route: live alert events for the signed-in user.

    WS /emergency/live?token=<bearer token>

Server → client (JSON):
    {"event": "connected",            "data": {"userId": 42}}
    {"event": "alert_activated",      "data": {"alertId": ..., "notifiedContacts": 3, ...}}
    {"event": "alert_status_changed", "data": {"alertId": ..., "status": "resolved"}}

Client → server:
    "ping" → "pong"

Bad or missing token: the socket is closed with 1008 before accept.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from backend.app.api.deps import resolve_user
from backend.app.core.container import ServiceContainer
from backend.app.core.errors import EmergencyAPIError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/emergency", tags=["emergency-live"])


async def _forward(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        message = await queue.get()
        await websocket.send_json(message)


@router.websocket("/live")
async def live_alerts(websocket: WebSocket, token: Optional[str] = Query(None)):
    container: ServiceContainer = websocket.app.state.container

    try:
        async with container.database.session() as session:
            user = await resolve_user(container, session, token)
            user_id = user.id
    except EmergencyAPIError as e:
        logger.warning("Live connection refused: %s", e.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
        return

    # subscribe before accept so nothing published after the handshake is missed
    async with container.events.subscribe(user_id) as queue:
        await websocket.accept()
        await websocket.send_json({"event": "connected", "data": {"userId": user_id}})
        logger.info("Live listener connected for user %s", user_id, extra={"user_id": user_id})

        forward = asyncio.create_task(_forward(websocket, queue))
        try:
            while True:
                text = await websocket.receive_text()
                if text == "ping":
                    await websocket.send_text("pong")
        except WebSocketDisconnect:
            logger.info("Live listener disconnected for user %s", user_id, extra={"user_id": user_id})
        finally:
            forward.cancel()
            await asyncio.gather(forward, return_exceptions=True)
