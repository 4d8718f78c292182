"""WebSocket connection manager for real-time execution updates."""

from fastapi import WebSocket
from typing import Dict, Set
import logging
import json

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Manages active WebSocket connections and their room subscriptions.

    Rooms are named ``workflow:<id>`` or ``execution:<id>``; a connection
    receives every message sent to a room it joined.
    """

    def __init__(self):
        """Initialize connection manager."""
        # Map of room -> set of WebSocket connections
        self.rooms: Dict[str, Set[WebSocket]] = {}

        # All accepted connections
        self.active_connections: Set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        """Accept and register a new WebSocket connection."""
        await websocket.accept()
        self.active_connections.add(websocket)
        logger.info(f"WebSocket connected - total: {len(self.active_connections)}")

    def disconnect(self, websocket: WebSocket) -> None:
        """Unregister a connection and drop it from every room."""
        self.active_connections.discard(websocket)
        for room in list(self.rooms):
            self.leave(websocket, room)
        logger.info(f"WebSocket disconnected - total: {len(self.active_connections)}")

    def join(self, websocket: WebSocket, room: str) -> None:
        """Subscribe a connection to a room."""
        self.rooms.setdefault(room, set()).add(websocket)
        logger.debug(f"WebSocket joined room {room}")

    def leave(self, websocket: WebSocket, room: str) -> None:
        """Unsubscribe a connection from a room."""
        members = self.rooms.get(room)
        if members is None:
            return
        members.discard(websocket)
        if not members:
            del self.rooms[room]

    async def send_to_room(self, room: str, message: dict) -> None:
        """
        Send message to every connection subscribed to a room.

        Args:
            room: Room name
            message: Message to send (will be JSON encoded)
        """
        members = self.rooms.get(room)
        if not members:
            return

        message_str = json.dumps(message, default=str)
        disconnected = set()

        for connection in list(members):
            try:
                await connection.send_text(message_str)
            except Exception as e:
                logger.error(f"Error sending message to room {room}: {str(e)}")
                disconnected.add(connection)

        # Clean up disconnected connections
        for connection in disconnected:
            self.disconnect(connection)


# Global connection manager instance
manager = ConnectionManager()
