import asyncio
import json
import uuid
from typing import Any, Optional

from fastapi import WebSocket
from pydantic import ValidationError

import event_keys
from backend import RoomRegistry, generate_passcode
from connections import ConnectionManager, Outbound, Outbox
from constants import (DELETE_EMPTY_ROOMS, DISCONNECT_GRACE_SECONDS, MAX_MESSAGE_LENGTH, MAX_OCCUPANTS,
                       ROOM_TTL_SECONDS, SWEEP_INTERVAL_SECONDS)
from errors import InvalidRequest, RelayError
from logging_config import get_logger
from messaging import MessageRelay
from presence import PresenceManager
from scheduler import ExpiryScheduler
from schemas.events import ClientFrame, CreateRoomRequest, JoinRoomRequest
from sessions import SessionStore

logger = get_logger(__name__)


class ChatRelay:
    """Room lifecycle and relay engine shared by all connections.

    All registry, session and presence state is read and written only while
    holding ``self.lock``. Outbound frames are collected under the lock and sent
    after it is released.
    """

    def __init__(self, ttl_seconds: float = ROOM_TTL_SECONDS,
                 grace_seconds: float = DISCONNECT_GRACE_SECONDS,
                 sweep_interval: float = SWEEP_INTERVAL_SECONDS,
                 max_occupants: int = MAX_OCCUPANTS,
                 delete_empty_rooms: bool = DELETE_EMPTY_ROOMS,
                 max_message_length: int = MAX_MESSAGE_LENGTH,
                 passcode_generator=generate_passcode):
        self.lock = asyncio.Lock()
        self.registry = RoomRegistry(ttl_seconds=ttl_seconds, passcode_generator=passcode_generator)
        self.sessions = SessionStore()
        self.connections = ConnectionManager()
        self.scheduler = ExpiryScheduler(on_expire=self.expire_room, on_grace=self.grace_elapsed,
                                         on_sweep=self.sweep, sweep_interval=sweep_interval)
        self.presence = PresenceManager(self.registry, self.sessions, self.scheduler,
                                        max_occupants=max_occupants, grace_seconds=grace_seconds,
                                        delete_empty_rooms=delete_empty_rooms)
        self.messages = MessageRelay(self.registry, self.sessions, max_message_length=max_message_length)
        self._handlers = {
            event_keys.CREATE_ROOM: self._create_room,
            event_keys.JOIN_ROOM: self._join_room,
            event_keys.SEND_MESSAGE: self._send_message,
            event_keys.TYPING: lambda connection_id, data: self.messages.typing(connection_id),
            event_keys.STOP_TYPING: lambda connection_id, data: self.messages.stop_typing(connection_id),
            event_keys.QUIT_ROOM: lambda connection_id, data: self.presence.quit_room(connection_id),
        }

    def start(self):
        self.scheduler.start()

    async def close(self):
        await self.scheduler.shutdown()

    async def connect(self, websocket: WebSocket) -> str:
        connection_id = str(uuid.uuid4())
        self.connections.add(connection_id, websocket)
        async with self.lock:
            self.sessions.create(connection_id)
        logger.info(f"Connection {connection_id} opened")
        return connection_id

    async def disconnect(self, connection_id: str):
        async with self.lock:
            outbox = self.presence.disconnect(connection_id)
            self.sessions.remove(connection_id)
        self.connections.remove(connection_id)
        logger.info(f"Connection {connection_id} closed")
        await self.connections.dispatch(outbox)

    async def handle_frame(self, connection_id: str, text: str):
        """Parse one ``{"event": ..., "data": ...}`` frame and handle it."""
        try:
            frame = ClientFrame.model_validate(json.loads(text))
        except (json.JSONDecodeError, ValidationError):
            logger.debug(f"Malformed frame from connection {connection_id}")
            await self.connections.send(connection_id, event_keys.SYSTEM_MESSAGE, InvalidRequest.default_message)
            return
        await self.handle_event(connection_id, frame.event, frame.data)

    async def handle_event(self, connection_id: str, event: str, data: Any = None):
        handler = self._handlers.get(event)
        if handler is None:
            logger.debug(f"Unknown event {event!r} from connection {connection_id}")
            await self.connections.send(connection_id, event_keys.SYSTEM_MESSAGE,
                                        event_keys.UNKNOWN_EVENT_NOTICE.format(event=event))
            return

        try:
            async with self.lock:
                outbox = handler(connection_id, data)
        except RelayError as e:
            logger.debug(f"{event} from connection {connection_id} rejected: {e.message}")
            outbox = [Outbound(connection_id, event_keys.SYSTEM_MESSAGE, e.message)]
        await self.connections.dispatch(outbox)

    async def expire_room(self, room_id: str):
        async with self.lock:
            outbox = self.presence.expire_room(room_id)
        await self.connections.dispatch(outbox)

    async def grace_elapsed(self, room_id: str, token: str):
        async with self.lock:
            outbox = self.presence.grace_elapsed(room_id, token)
        await self.connections.dispatch(outbox)

    async def sweep(self):
        async with self.lock:
            outbox = self.presence.sweep()
        await self.connections.dispatch(outbox)

    async def room_details(self, room_id: str) -> Optional[dict]:
        async with self.lock:
            room = self.registry.get_by_id(room_id)
            if room is None or room.is_expired():
                return None
            return {
                "room_id": room.room_id,
                "created_at": room.created_at,
                "expire_at": room.expire_at,
                "online_users_count": len(room.members),
                "max_users": self.presence.max_occupants,
            }

    def _create_room(self, connection_id: str, data: Any) -> Outbox:
        request = self._parse(CreateRoomRequest, data)
        return self.presence.create_room(connection_id, name=request.name)

    def _join_room(self, connection_id: str, data: Any) -> Outbox:
        request = self._parse(JoinRoomRequest, data)
        return self.presence.join_room(connection_id, passcode=request.passcode, room_id=request.room_id,
                                       name=request.name, token=request.token)

    def _send_message(self, connection_id: str, data: Any) -> Outbox:
        message = data.get("message") if isinstance(data, dict) else None
        return self.messages.send_message(connection_id, message)

    @staticmethod
    def _parse(model, data: Any):
        try:
            return model.model_validate(data or {})
        except ValidationError as e:
            raise InvalidRequest() from e
