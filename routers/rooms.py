import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from constants import INTERNAL_BROADCAST_TOKEN
from exceptions import FrameNotAllowedError, MalformedFrameError, UnknownFrameTypeError
from logging_config import get_logger
from registry import room_registry
from schemas.frames import parse_frame
from schemas.rooms import BroadcastResponse, RoomDetailsResponse

logger = get_logger(__name__)


def require_internal_token(x_internal_token: Optional[str] = Header(None)):
    # Internal routes are called by the trusted API layer only
    if not INTERNAL_BROADCAST_TOKEN:
        return
    if not x_internal_token or not hmac.compare_digest(x_internal_token, INTERNAL_BROADCAST_TOKEN):
        logger.warning("Internal route called without a valid internal token")
        raise HTTPException(status_code=401, detail="Invalid internal token")


rooms_router = APIRouter(prefix="/rooms", tags=["rooms"], dependencies=[Depends(require_internal_token)])


@rooms_router.post("/{couple_id}/broadcast", response_model=BroadcastResponse)
async def broadcast_to_room(couple_id: str, request: Request):
    # Body: a single wire frame, e.g.
    # { "type": "message:new", "payload": { "message": {...} }, "timestamp": 1731846896000 }
    body = await request.body()
    try:
        frame = parse_frame(body)
    except UnknownFrameTypeError as e:
        logger.warning(f"Broadcast to {couple_id} rejected: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except MalformedFrameError as e:
        logger.warning(f"Broadcast to {couple_id} rejected: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    room = room_registry.get_or_create(couple_id)
    try:
        delivered = room.external_broadcast(frame)
    except FrameNotAllowedError as e:
        logger.warning(f"Broadcast to {couple_id} rejected: {e}")
        raise HTTPException(status_code=422, detail=str(e))

    logger.info(f"External {frame.type} broadcast to couple {couple_id} delivered to {delivered} connections")
    return BroadcastResponse(couple_id=couple_id, type=frame.type, delivered=delivered)


@rooms_router.get("/{couple_id}", response_model=RoomDetailsResponse)
async def get_room_details(couple_id: str):
    """
    Live state of a couple's room.

    Returns:
    - couple_id: Couple identifier
    - connection_count: Number of live connections
    - online_users_count: Number of distinct users with at least one live connection
    - online_user_ids: Those users
    - is_empty: Whether nobody is connected (also true when no room exists yet)
    """
    room = room_registry.get(couple_id)
    if room is None:
        return RoomDetailsResponse(
            couple_id=couple_id, connection_count=0, online_users_count=0, online_user_ids=[], is_empty=True
        )

    online_user_ids = room.online_user_ids
    logger.debug(f"Room details for {couple_id}: {room.connection_count} connections")
    return RoomDetailsResponse(
        couple_id=couple_id,
        connection_count=room.connection_count,
        online_users_count=len(online_user_ids),
        online_user_ids=online_user_ids,
        is_empty=room.connection_count == 0,
    )
