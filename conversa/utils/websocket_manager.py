import logging
from typing import Dict, List

from fastapi import WebSocket


logger = logging.getLogger(__name__)


class ConnectionManager:
    """Open sockets per user id for in-process delivery when no Redis bus is configured."""

    def __init__(self) -> None:
        self.active_connections: Dict[str, List[WebSocket]] = {}

    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections.setdefault(user_id, []).append(websocket)

    def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        if user_id in self.active_connections:
            try:
                self.active_connections[user_id].remove(websocket)
            except ValueError:
                pass
            if not self.active_connections[user_id]:
                del self.active_connections[user_id]

    async def send_personal_message(self, receiver_id: str, message: str) -> int:
        """Send to every socket of ``receiver_id``; sockets that fail are dropped.

        Returns the number of sockets the message reached.
        """
        delivered = 0
        for conn in list(self.active_connections.get(receiver_id, [])):
            try:
                await conn.send_text(message)
            except Exception as exc:
                logger.warning("Dropping dead socket for %s: %r", receiver_id, exc)
                self.disconnect(receiver_id, conn)
                continue
            delivered += 1
        return delivered
