from pydantic import BaseModel


class RoomDetailsResponse(BaseModel):
    room_id: str
    created_at: str
    expires_at: str
    max_users: int
    online_users_count: int
    is_full: bool


class HealthResponse(BaseModel):
    status: str
    rooms: int
    connections: int
