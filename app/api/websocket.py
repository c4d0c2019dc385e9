"""
WebSocket endpoint for pushed sync updates.

Messages in both directions are JSON objects ``{"event": ..., "data": ...}``.
A client sends ``authenticate`` with ``{"userId": ...}`` and gets
``authenticated`` back; after that it receives ``sync_update`` messages
for that user.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from app.core.notifications import ConnectionManager, get_connection_manager

logger = logging.getLogger(__name__)

router = APIRouter()


async def _send_error(websocket: WebSocket, message: str) -> None:
    await websocket.send_json({"event": "error", "data": {"message": message}})


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    manager: ConnectionManager = Depends(get_connection_manager),
):
    await websocket.accept()
    connection_id = str(uuid.uuid4())
    manager.connect(connection_id, websocket)

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                await _send_error(websocket, "Messages must be JSON")
                continue

            if not isinstance(message, dict):
                await _send_error(websocket, "Messages must be JSON objects")
                continue

            event = message.get("event")
            data = message.get("data") or {}

            if event == "authenticate":
                user_id = data.get("userId") if isinstance(data, dict) else None
                if not user_id:
                    await _send_error(websocket, "userId is required")
                    continue
                manager.authenticate(connection_id, str(user_id))
                await websocket.send_json(
                    {"event": "authenticated", "data": {"success": True, "userId": str(user_id)}}
                )
            elif event == "ping":
                await websocket.send_json({"event": "pong", "data": {}})
            else:
                await _send_error(websocket, f"Unknown event: {event}")
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(connection_id)
