import secrets
from typing import Optional

import event_keys
from backend import Room, RoomRegistry
from connections import Outbound, Outbox
from constants import DEFAULT_DISPLAY_NAME, DELETE_EMPTY_ROOMS, DISCONNECT_GRACE_SECONDS, MAX_OCCUPANTS
from errors import NotInRoom, RoomFull, RoomNotFound
from logging_config import get_logger
from scheduler import ExpiryScheduler
from schemas.events import RoomCredentials
from sessions import Session, SessionStore

logger = get_logger(__name__)


def generate_member_token() -> str:
    return secrets.token_urlsafe(16)


class PresenceManager:
    """Room membership, capacity and presence announcements.

    Every method runs under the relay lock and never awaits, so each call is one
    atomic transition. Methods return the outbound events the transition produced;
    sending them is the caller's job.

    Reconnection is recognised by member token, issued on admission. A join that
    presents the token of a live member replaces that member's connection; a join
    that presents the token of a member inside its disconnect grace window is
    admitted without a "joined" announcement. A join without a known token made
    while some member is inside its grace window takes that member over the same way.
    """

    def __init__(self, registry: RoomRegistry, sessions: SessionStore, scheduler: ExpiryScheduler,
                 max_occupants: int = MAX_OCCUPANTS,
                 grace_seconds: float = DISCONNECT_GRACE_SECONDS,
                 delete_empty_rooms: bool = DELETE_EMPTY_ROOMS):
        self.registry = registry
        self.sessions = sessions
        self.scheduler = scheduler
        self.max_occupants = max_occupants
        self.grace_seconds = grace_seconds
        self.delete_empty_rooms = delete_empty_rooms

    def create_room(self, connection_id: str, name: Optional[str] = None) -> Outbox:
        session = self._session(connection_id)
        outbox = self._leave_current(session)

        room = self.registry.create_room()
        self.scheduler.arm_expiry(room)
        token = generate_member_token()
        self._admit(room, session, token, name or session.name)
        logger.info(f"Connection {connection_id} created room {room.room_id} as {session.name}")

        outbox.append(Outbound(connection_id, event_keys.ROOM_CREATED, self._credentials(room, token)))
        return outbox

    def join_room(self, connection_id: str, passcode: Optional[str] = None, room_id: Optional[str] = None,
                  name: Optional[str] = None, token: Optional[str] = None) -> Outbox:
        session = self._session(connection_id)
        if not passcode and not room_id:
            raise RoomNotFound()
        room = self.registry.lookup(passcode=passcode, room_id=room_id)

        if session.room_id == room.room_id:
            # same connection asking again
            if name:
                session.name = name
            logger.debug(f"Connection {connection_id} re-requested membership of room {room.room_id}")
            return [Outbound(connection_id, event_keys.JOIN_SUCCESS, self._credentials(room, session.member_token))]

        stale_connection_id = room.members.get(token) if token else None
        if stale_connection_id is None and token not in room.departed:
            token = self._departed_token(room, name)
        reconnecting = stale_connection_id is not None or token is not None

        if stale_connection_id is None and len(room.members) >= self.max_occupants:
            logger.warning(f"Join rejected for connection {connection_id}: room {room.room_id} is full "
                           f"({len(room.members)}/{self.max_occupants})")
            raise RoomFull()

        outbox = self._leave_current(session)

        previous_name = None
        if stale_connection_id is not None:
            stale = self.sessions.get(stale_connection_id)
            previous_name = stale.name if stale is not None else None
            outbox.extend(self._evict(room, stale_connection_id))

        if reconnecting:
            previous_name = room.departed.pop(token, None) or previous_name
            self.scheduler.cancel_grace(room.room_id, token)
            display_name = name or previous_name or DEFAULT_DISPLAY_NAME
        else:
            token = generate_member_token()
            display_name = name or DEFAULT_DISPLAY_NAME

        self._admit(room, session, token, display_name)
        logger.info(f"Connection {connection_id} ({display_name}) {'rejoined' if reconnecting else 'joined'} "
                    f"room {room.room_id} ({len(room.members)}/{self.max_occupants})")

        outbox.append(Outbound(connection_id, event_keys.JOIN_SUCCESS, self._credentials(room, token)))
        if not reconnecting:
            outbox.extend(self._notify_others(room, connection_id,
                                              event_keys.JOINED_NOTICE.format(name=display_name)))
        return outbox

    def quit_room(self, connection_id: str) -> Outbox:
        session = self._session(connection_id)
        if session.room_id is None:
            raise NotInRoom()
        return self._leave_current(session)

    def disconnect(self, connection_id: str) -> Outbox:
        """Connection closed. Peers are told only if the grace window passes without a reconnect."""
        session = self.sessions.get(connection_id)
        if session is None or session.room_id is None:
            return []
        room = self.registry.get_by_id(session.room_id)
        token = session.member_token
        session.clear_membership()
        if room is None:
            return []

        if room.members.get(token) == connection_id:
            del room.members[token]
            room.departed[token] = session.name
            self.scheduler.arm_grace(room.room_id, token, self.grace_seconds)
            logger.info(f"Connection {connection_id} ({session.name}) dropped from room {room.room_id}, "
                        f"waiting {self.grace_seconds} seconds before announcing")
        return []

    def grace_elapsed(self, room_id: str, token: str) -> Outbox:
        room = self.registry.get_by_id(room_id)
        if room is None:
            return []
        name = room.departed.pop(token, None)
        if name is None or token in room.members:
            logger.debug(f"Disconnect grace in room {room_id} ended after reconnect")
            return []

        outbox = []
        if room.members and len(room.members) < self.max_occupants:
            logger.info(f"{name} went offline in room {room_id}")
            outbox.extend(self._notify_others(room, None, event_keys.OFFLINE_NOTICE.format(name=name)))
        outbox.extend(self._cleanup_if_empty(room))
        return outbox

    def expire_room(self, room_id: str) -> Outbox:
        room = self.registry.get_by_id(room_id)
        if room is None:
            logger.debug("Expiry skipped: room already deleted")
            return []
        return self.teardown(room, event_keys.EXPIRED_NOTICE)

    def sweep(self, now: float = None) -> Outbox:
        outbox = []
        expired = self.registry.expired(now)
        for room in expired:
            logger.info(f"Sweep removing expired room {room.room_id}")
            outbox.extend(self.teardown(room, event_keys.EXPIRED_NOTICE))
        return outbox

    def teardown(self, room: Room, notice: Optional[str] = None) -> Outbox:
        """Delete a room and strip membership from its occupants. Safe to call twice."""
        if self.registry.delete(room.passcode) is None:
            return []
        self.scheduler.cancel_room(room.room_id)

        outbox = []
        for connection_id in room.connection_ids():
            session = self.sessions.get(connection_id)
            if session is not None and session.room_id == room.room_id:
                session.clear_membership()
            if notice:
                outbox.append(Outbound(connection_id, event_keys.SYSTEM_MESSAGE, notice))
        room.members.clear()
        room.departed.clear()
        return outbox

    def _session(self, connection_id: str) -> Session:
        session = self.sessions.get(connection_id)
        if session is None:
            # handlers only run for registered connections
            raise RuntimeError(f"No session for connection {connection_id}")
        return session

    def _admit(self, room: Room, session: Session, token: str, name: str):
        room.members[token] = session.connection_id
        session.room_id = room.room_id
        session.member_token = token
        session.name = name

    @staticmethod
    def _departed_token(room: Room, name: Optional[str]) -> Optional[str]:
        """Pick the member a tokenless join takes over while it is inside its grace window.

        A departed member with the same display name wins, otherwise the earliest departure.
        """
        if not room.departed:
            return None
        for token, departed_name in room.departed.items():
            if name and departed_name == name:
                return token
        return next(iter(room.departed))

    def _evict(self, room: Room, connection_id: str) -> Outbox:
        stale = self.sessions.get(connection_id)
        if stale is not None and stale.room_id == room.room_id:
            stale.clear_membership()
        logger.info(f"Connection {connection_id} replaced by a reconnect in room {room.room_id}")
        return [Outbound(connection_id, event_keys.SYSTEM_MESSAGE, event_keys.SESSION_MOVED_NOTICE)]

    def _leave_current(self, session: Session) -> Outbox:
        """Explicit leave: announce immediately to whoever remains."""
        if session.room_id is None:
            return []
        room = self.registry.get_by_id(session.room_id)
        token = session.member_token
        session.clear_membership()
        if room is None:
            return []

        if room.members.get(token) == session.connection_id:
            del room.members[token]
        logger.info(f"Connection {session.connection_id} ({session.name}) left room {room.room_id}")
        outbox = self._notify_others(room, session.connection_id, event_keys.LEFT_NOTICE.format(name=session.name))
        outbox.extend(self._cleanup_if_empty(room))
        return outbox

    def _cleanup_if_empty(self, room: Room) -> Outbox:
        if not self.delete_empty_rooms or room.members or room.departed:
            return []
        logger.info(f"Room {room.room_id} is empty, deleting it")
        return self.teardown(room)

    @staticmethod
    def _notify_others(room: Room, connection_id: Optional[str], text: str) -> Outbox:
        return [Outbound(other, event_keys.SYSTEM_MESSAGE, text)
                for other in room.connection_ids() if other != connection_id]

    @staticmethod
    def _credentials(room: Room, token: str) -> dict:
        return RoomCredentials(passcode=room.passcode, room_id=room.room_id,
                               expire_at=room.expire_at_ms, token=token).model_dump(by_alias=True)
