from datetime import datetime

from fastapi import APIRouter, HTTPException, Request

from logging_config import get_logger
from schemas.rooms import RoomDetailsResponse

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(room_id: str, request: Request):
    """
    Get room details including online user count.

    Looked up by the internal room id only; passcodes are short enough to guess
    and are accepted over the WebSocket alone.

    Returns:
    - room_id: Internal room identifier
    - created_at: Room creation timestamp
    - expires_at: Room expiration timestamp
    - max_users: Maximum users allowed
    - online_users_count: Current number of connected occupants
    - is_full: Whether room has reached max capacity
    """
    client_host = request.client.host if request.client else 'unknown'
    logger.info(f"Room details request for {room_id} from {client_host}")

    room = await request.app.state.relay.room_details(room_id)
    if not room:
        logger.warning(f"Room details failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")

    online_users_count = room["online_users_count"]
    max_users = room["max_users"]

    logger.info(f"Room details retrieved for {room_id}: {online_users_count}/{max_users} users online")

    return RoomDetailsResponse(
        room_id=room["room_id"],
        created_at=datetime.fromtimestamp(room["created_at"]).isoformat(),
        expires_at=datetime.fromtimestamp(room["expire_at"]).isoformat(),
        max_users=max_users,
        online_users_count=online_users_count,
        is_full=online_users_count >= max_users,
    )
