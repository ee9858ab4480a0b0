from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class RoomsModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateRoomRequest(RoomsModel):
    room_code: str = Field(min_length=1)


class CreateRoomResponse(RoomsModel):
    success: bool = True
    room_code: str


class RoomSummaryResponse(RoomsModel):
    exists: bool
    member_count: int = 0
    is_playing: bool = False
