from typing import Dict, Optional

from pydantic import BaseModel

from constants import DEFAULT_DISPLAY_NAME
from logging_config import get_logger

logger = get_logger(__name__)


class Session(BaseModel):
    connection_id: str
    name: str = DEFAULT_DISPLAY_NAME
    room_id: Optional[str] = None
    member_token: Optional[str] = None

    def clear_membership(self):
        self.room_id = None
        self.member_token = None


class SessionStore:
    """Per-connection state keyed by connection id."""

    def __init__(self):
        self._sessions: Dict[str, Session] = {}

    def create(self, connection_id: str) -> Session:
        session = Session(connection_id=connection_id)
        self._sessions[connection_id] = session
        logger.debug(f"Session created for connection {connection_id}")
        return session

    def get(self, connection_id: str) -> Optional[Session]:
        return self._sessions.get(connection_id)

    def remove(self, connection_id: str) -> Optional[Session]:
        session = self._sessions.pop(connection_id, None)
        if session:
            logger.debug(f"Session removed for connection {connection_id}")
        return session
