"""
Live billing events.

WS /ws/events?audience=operators|admins  readings, invoices, payments as they happen
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query
from fastapi.encoders import jsonable_encoder
from starlette.websockets import WebSocketState

from notifications import ADMINS, OPERATORS

router = APIRouter()
logger = logging.getLogger("aquabill.ws")


@router.websocket("/ws/events")
async def ws_events(
    websocket: WebSocket,
    audience: Optional[str] = Query(None, description="operators or admins; omit for every event"),
):
    if audience is not None and audience not in (OPERATORS, ADMINS):
        await websocket.close(code=1008)
        return

    broadcaster = websocket.app.state.events
    sub = broadcaster.subscribe(audience)
    try:
        await websocket.accept()
        logger.info("WS events connected: audience=%s", audience)
        while websocket.client_state == WebSocketState.CONNECTED:
            message = await sub.queue.get()
            await websocket.send_text(json.dumps(jsonable_encoder(message)))
    except WebSocketDisconnect:
        logger.info("WS events disconnected: audience=%s", audience)
    except Exception:
        logger.exception("WS events error: audience=%s", audience)
    finally:
        broadcaster.unsubscribe(sub)
