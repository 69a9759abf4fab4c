from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from ..auth_utils import authenticate, decode_basic_token
from ..coordinator import ClientSession, RoomSessionCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["ws"])


@router.websocket("/ws/{room_id}")
async def websocket_endpoint(ws: WebSocket, room_id: int, auth: Optional[str] = Query(None)):
    await ws.accept()
    credentials = decode_basic_token(auth) if auth else None
    if credentials is None:
        await ws.close(code=4000)
        return

    user_id = await authenticate(credentials)
    if user_id is None:
        await ws.close(code=4001)
        return

    coordinator: RoomSessionCoordinator = ws.app.state.coordinator
    session = ClientSession(user_id=user_id, room_id=room_id, socket=ws)
    try:
        while True:
            message = await ws.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                try:
                    raw = (message.get("bytes") or b"").decode("utf-8")
                except UnicodeDecodeError:
                    logger.warning("Dropping undecodable binary frame from user %s", user_id)
                    continue
            await coordinator.handle_raw(session, raw)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("WebSocket error for user %s in room %s", user_id, room_id)
        if ws.application_state == WebSocketState.CONNECTED:
            await ws.close(code=1011)
    finally:
        await coordinator.disconnect(session)
