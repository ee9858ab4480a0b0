import asyncio
import json
from typing import Any, Dict, Iterable

from fastapi import WebSocket

from logging_config import get_logger

logger = get_logger(__name__)


class ConnectionManager:
    """Tracks open WebSockets by connection id and sends JSON frames to them."""

    def __init__(self):
        # Format: {connection_id: websocket}
        self.connections: Dict[str, WebSocket] = {}

    def register(self, connection_id: str, websocket: WebSocket):
        self.connections[connection_id] = websocket
        logger.debug(f"Registered connection {connection_id} (total: {len(self.connections)})")

    def unregister(self, connection_id: str):
        if self.connections.pop(connection_id, None) is not None:
            logger.debug(f"Unregistered connection {connection_id} (remaining: {len(self.connections)})")

    async def send(self, connection_id: str, event: str, data: Any = None):
        websocket = self.connections.get(connection_id)
        if websocket is None:
            logger.debug(f"Dropping '{event}' for unknown connection {connection_id}")
            return
        try:
            await websocket.send_text(json.dumps({"event": event, "data": data}))
        except Exception as e:
            # The receive loop of that socket handles the disconnect
            logger.warning(f"Error sending '{event}' to connection {connection_id}: {e}")

    async def broadcast(self, connection_ids: Iterable[str], event: str, data: Any = None):
        send_tasks = [self.send(connection_id, event, data) for connection_id in connection_ids]
        if send_tasks:
            await asyncio.gather(*send_tasks)
