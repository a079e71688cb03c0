import secrets
import time
import uuid
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from constants import PASSCODE_MAX, PASSCODE_MIN, ROOM_TTL_SECONDS
from errors import RoomNotFound
from logging_config import get_logger

logger = get_logger(__name__)


def generate_passcode() -> str:
    return str(PASSCODE_MIN + secrets.randbelow(PASSCODE_MAX - PASSCODE_MIN + 1))


def generate_room_id() -> str:
    return uuid.uuid4().hex


class Room(BaseModel):
    passcode: str
    room_id: str
    created_at: float
    expire_at: float
    # member token -> live connection id
    members: Dict[str, str] = Field(default_factory=dict)
    # member token -> display name, while inside the disconnect grace window
    departed: Dict[str, str] = Field(default_factory=dict)

    @property
    def expire_at_ms(self) -> int:
        return int(self.expire_at * 1000)

    def is_expired(self, now: float = None) -> bool:
        return (now if now is not None else time.time()) >= self.expire_at

    def connection_ids(self) -> List[str]:
        return list(self.members.values())


class RoomRegistry:
    """In-memory store of live rooms keyed by passcode, with a room_id -> passcode reverse index.

    Not synchronized itself: every call must happen under the relay's lock.
    """

    def __init__(self, ttl_seconds: float = ROOM_TTL_SECONDS,
                 passcode_generator: Callable[[], str] = generate_passcode,
                 room_id_generator: Callable[[], str] = generate_room_id):
        self.ttl_seconds = ttl_seconds
        self._passcode_generator = passcode_generator
        self._room_id_generator = room_id_generator
        self._rooms: Dict[str, Room] = {}
        self._passcodes_by_id: Dict[str, str] = {}
        logger.info(f"Initializing RoomRegistry with TTL {ttl_seconds} seconds")

    def create_room(self) -> Room:
        passcode = self._passcode_generator()
        while passcode in self._rooms:
            logger.debug("Passcode collision, regenerating")
            passcode = self._passcode_generator()

        room_id = self._room_id_generator()
        while room_id in self._passcodes_by_id:
            room_id = self._room_id_generator()

        now = time.time()
        room = Room(passcode=passcode, room_id=room_id, created_at=now, expire_at=now + self.ttl_seconds)
        self._rooms[passcode] = room
        self._passcodes_by_id[room_id] = passcode
        logger.info(f"Room {room_id} created, expires in {self.ttl_seconds} seconds")
        return room

    def lookup(self, passcode: Optional[str] = None, room_id: Optional[str] = None) -> Room:
        """Resolve a room by passcode or room_id. Rooms past their expiry are reported as missing."""
        room = None
        if passcode:
            room = self._rooms.get(passcode)
        if room is None and room_id:
            room = self.get_by_id(room_id)
        if room is None:
            logger.debug("Room lookup failed: no live room for the given key")
            raise RoomNotFound()
        if room.is_expired():
            logger.debug(f"Room lookup failed: room {room.room_id} has expired")
            raise RoomNotFound()
        return room

    def get(self, passcode: str) -> Optional[Room]:
        return self._rooms.get(passcode)

    def get_by_id(self, room_id: str) -> Optional[Room]:
        passcode = self._passcodes_by_id.get(room_id)
        if passcode is None:
            return None
        return self._rooms.get(passcode)

    def delete(self, passcode: str) -> Optional[Room]:
        """Remove both mappings. Deleting an absent room returns None."""
        room = self._rooms.pop(passcode, None)
        if room is None:
            logger.debug("Delete skipped: room already gone")
            return None
        self._passcodes_by_id.pop(room.room_id, None)
        logger.info(f"Room {room.room_id} deleted")
        return room

    def expired(self, now: float = None) -> List[Room]:
        now = now if now is not None else time.time()
        return [room for room in self._rooms.values() if room.is_expired(now)]

    def __len__(self):
        return len(self._rooms)
