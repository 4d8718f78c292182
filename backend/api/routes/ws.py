"""WebSocket endpoint for real-time execution updates."""

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from api.websockets.connection_manager import manager

logger = logging.getLogger(__name__)

router = APIRouter()

_ROOM_PREFIXES = ("workflow:", "execution:")


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for real-time execution updates.

    Client messages:
    - {"action": "subscribe", "room": "workflow:<id>" | "execution:<id>"}
    - {"action": "unsubscribe", "room": ...}
    - {"type": "ping"} -> {"type": "pong"}

    Server pushes events:
    - execution:started: {workflow_id, execution_id, timestamp}
    - execution:update: {execution_id, workflow_id, status, message, step_id, timestamp}
    - execution:log: {execution_id, level, message, step_id, timestamp}
    - execution:completed: {workflow_id, execution_id, status, timestamp}
    """
    await manager.connect(websocket)

    try:
        while True:
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_text(json.dumps({"type": "error", "message": "Invalid JSON"}))
                continue
            if not isinstance(msg, dict):
                continue

            if msg.get("type") == "ping":
                await websocket.send_text(json.dumps({"type": "pong"}))
                continue

            action = msg.get("action")
            room = msg.get("room")
            if action not in ("subscribe", "unsubscribe") or not isinstance(room, str) \
                    or not room.startswith(_ROOM_PREFIXES):
                await websocket.send_text(json.dumps({"type": "error", "message": "Unsupported message"}))
                continue

            if action == "subscribe":
                manager.join(websocket, room)
                await websocket.send_text(json.dumps({"type": "subscribed", "room": room}))
            else:
                manager.leave(websocket, room)
                await websocket.send_text(json.dumps({"type": "unsubscribed", "room": room}))
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        manager.disconnect(websocket)
