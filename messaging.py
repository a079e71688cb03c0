from typing import Any

import event_keys
from backend import RoomRegistry
from connections import Outbound, Outbox
from constants import MAX_MESSAGE_LENGTH
from errors import InvalidMessage
from logging_config import get_logger
from schemas.events import NewMessage, TypingNotice
from sessions import SessionStore

logger = get_logger(__name__)


class MessageRelay:
    """Forwards opaque payloads and typing indicators to the other occupants of the sender's room."""

    def __init__(self, registry: RoomRegistry, sessions: SessionStore, max_message_length: int = MAX_MESSAGE_LENGTH):
        self.registry = registry
        self.sessions = sessions
        self.max_message_length = max_message_length

    def send_message(self, connection_id: str, message: Any) -> Outbox:
        session = self.sessions.get(connection_id)
        if session is None or session.room_id is None:
            logger.debug(f"Dropping message from connection {connection_id}: not in a room")
            return []
        if message is None or message == "":
            raise InvalidMessage()
        if not isinstance(message, str):
            raise InvalidMessage("Invalid message.")
        if len(message) > self.max_message_length:
            raise InvalidMessage("Message is too large.")

        payload = NewMessage(message=message, sender=session.name).model_dump(by_alias=True)
        outbox = self._to_peers(connection_id, session.room_id, event_keys.NEW_MESSAGE, payload)
        logger.debug(f"Relaying message from connection {connection_id} to {len(outbox)} peers")
        return outbox

    def typing(self, connection_id: str) -> Outbox:
        return self._indicator(connection_id, event_keys.SHOW_TYPING)

    def stop_typing(self, connection_id: str) -> Outbox:
        return self._indicator(connection_id, event_keys.HIDE_TYPING)

    def _indicator(self, connection_id: str, event: str) -> Outbox:
        session = self.sessions.get(connection_id)
        if session is None or session.room_id is None:
            return []
        payload = TypingNotice(sender=session.name).model_dump(by_alias=True)
        return self._to_peers(connection_id, session.room_id, event, payload)

    def _to_peers(self, connection_id: str, room_id: str, event: str, payload: dict) -> Outbox:
        room = self.registry.get_by_id(room_id)
        if room is None:
            return []
        return [Outbound(peer, event, payload) for peer in room.connection_ids() if peer != connection_id]
