from fastapi import APIRouter, Depends, HTTPException
from auth import get_current_identity
from hub import session_hub
from registry import Identity
from schemas.rooms import RoomPresenceResponse
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


@rooms_router.get("/{room_id}", response_model=RoomPresenceResponse)
async def get_room_presence(room_id: str, identity: Identity = Depends(get_current_identity)):
    """
    Live presence of a consultation room on this server instance.

    Returns:
    - room_id: Room identifier
    - members: Connection ids in join order
    - online_count: Number of connections currently in the room
    """
    logger.info(f"Room presence request for {room_id} from user {identity.user_id}")
    rooms = session_hub.state.rooms
    if room_id not in rooms:
        logger.info(f"Room presence failed: Room {room_id} has no live members")
        raise HTTPException(status_code=404, detail="Room not found")

    members = rooms.members(room_id)
    return RoomPresenceResponse(room_id=room_id, members=members, online_count=len(members))
