from pydantic import BaseModel


class BroadcastResponse(BaseModel):
    couple_id: str
    type: str
    delivered: int

class RoomDetailsResponse(BaseModel):
    couple_id: str
    connection_count: int
    online_users_count: int
    online_user_ids: list[str]
    is_empty: bool

class HealthResponse(BaseModel):
    status: str
    rooms: int
    connections: int
