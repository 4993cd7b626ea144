from pydantic import BaseModel


class GetRoomOut(BaseModel):
    room_id: str
    viewer_count: int
