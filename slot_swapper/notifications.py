# notifications.py
import json
import logging
from collections import defaultdict
from typing import Any, Dict, List

import fastapi
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)

EVENT_CREATED = "event:created"
EVENT_UPDATED = "event:updated"
EVENT_DELETED = "event:deleted"
SWAP_REQUEST_RECEIVED = "swap:request:received"
SWAP_REQUEST_ACCEPTED = "swap:request:accepted"
SWAP_REQUEST_REJECTED = "swap:request:rejected"


class NotificationFanout:
    """
    Pushes state changes to connected websocket clients.

    Every connection receives broadcasts; a connection that has joined a user's
    channel also receives that user's notifications. Delivery is best effort:
    nothing is queued for disconnected users and send failures never reach the
    command that triggered them.
    """

    def __init__(self):
        self.active_connections: List[fastapi.WebSocket] = []
        self.user_channels: Dict[int, List[fastapi.WebSocket]] = defaultdict(list)

    async def connect(self, websocket: fastapi.WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)

    def join(self, user_id: int, websocket: fastapi.WebSocket):
        channel = self.user_channels[user_id]
        if websocket not in channel:
            channel.append(websocket)
        logger.info(f"User {user_id} joined their channel")

    def disconnect(self, websocket: fastapi.WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
        for user_id in list(self.user_channels):
            channel = self.user_channels[user_id]
            if websocket in channel:
                channel.remove(websocket)
            if not channel:
                del self.user_channels[user_id]

    async def broadcast_all(self, event_name: str, payload: Any):
        message = self._encode(event_name, payload)
        for connection in list(self.active_connections):
            await self._send(connection, message)

    async def notify_user(self, user_id: int, event_name: str, payload: Any):
        message = self._encode(event_name, payload)
        for connection in list(self.user_channels.get(user_id, [])):
            await self._send(connection, message)

    @staticmethod
    def _encode(event_name: str, payload: Any) -> str:
        return json.dumps({"type": event_name, "data": jsonable_encoder(payload)})

    async def _send(self, connection: fastapi.WebSocket, message: str):
        try:
            await connection.send_text(message)
        except Exception as e:
            logger.warning(f"Dropping websocket after failed send: {e}")
            self.disconnect(connection)
