"""Room lookup endpoint for viewers about to join."""

from fastapi import APIRouter, Request

from livecast.api.v1.schemas.base import ApiOut
from livecast.api.v1.schemas.room import GetRoomOut
from livecast.domain.signaling.registry import ROOM_NOT_FOUND_MESSAGE, SessionRegistry
from livecast.utils.app_errors import AppErrorCode, HttpStatusCode, SignalingError

router = APIRouter(prefix="/room")


@router.get("/{room_id}")
async def get_room(room_id: str, request: Request) -> ApiOut[GetRoomOut]:
    """Check that a room is live.

    Raises:
        404: Room not found
    """
    registry: SessionRegistry = request.app.state.registry
    room = registry.get_room(room_id)

    if room is None:
        raise SignalingError(
            AppErrorCode.E_ROOM_NOT_FOUND,
            ROOM_NOT_FOUND_MESSAGE,
            status_code=HttpStatusCode.NOT_FOUND,
        )

    return ApiOut[GetRoomOut](
        results=GetRoomOut(room_id=room.room_id, viewer_count=len(room.viewer_ids))
    )
