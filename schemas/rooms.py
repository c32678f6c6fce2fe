from pydantic import BaseModel


class RoomPresenceResponse(BaseModel):
    room_id: str
    members: list[str]
    online_count: int
