import asyncio
import json
from typing import Any, Dict, Iterable, List, NamedTuple

from fastapi import WebSocket

from logging_config import get_logger

logger = get_logger(__name__)


class Outbound(NamedTuple):
    connection_id: str
    event: str
    data: Any = None


Outbox = List[Outbound]


class ConnectionManager:
    """Maps connection ids to their WebSocket and delivers framed events.

    Delivery is best-effort: a failed send is logged and dropped, never retried.
    """

    def __init__(self):
        self._connections: Dict[str, WebSocket] = {}

    def add(self, connection_id: str, websocket: WebSocket):
        self._connections[connection_id] = websocket
        logger.debug(f"Tracking connection {connection_id} (connections: {len(self._connections)})")

    def remove(self, connection_id: str):
        if self._connections.pop(connection_id, None) is not None:
            logger.debug(f"Stopped tracking connection {connection_id} (connections: {len(self._connections)})")

    def __len__(self):
        return len(self._connections)

    async def send(self, connection_id: str, event: str, data: Any = None):
        websocket = self._connections.get(connection_id)
        if websocket is None:
            logger.debug(f"Dropping {event} for unknown connection {connection_id}")
            return
        try:
            await websocket.send_text(json.dumps({"event": event, "data": data}))
        except Exception as e:
            logger.warning(f"Error sending {event} to connection {connection_id}: {e}")

    async def _send_in_order(self, connection_id: str, items: List[Outbound]):
        for item in items:
            await self.send(connection_id, item.event, item.data)

    async def dispatch(self, outbox: Iterable[Outbound]):
        """Send concurrently across connections, in outbox order within each connection."""
        per_connection: Dict[str, List[Outbound]] = {}
        for item in outbox:
            per_connection.setdefault(item.connection_id, []).append(item)
        send_tasks = [self._send_in_order(conn_id, items) for conn_id, items in per_connection.items()]
        if send_tasks:
            await asyncio.gather(*send_tasks, return_exceptions=True)
            logger.debug(f"Dispatched outbound events to {len(send_tasks)} connections")
