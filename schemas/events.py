"""WebSocket message models.

Every frame is ``{"event": <name>, "data": <payload>}``. Inbound frames are
parsed into one model per event name through a discriminated union on
``event``; outbound payloads are serialized with camelCase keys.
"""
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ---------------------------------------------------------------------------
# Inbound payloads
# ---------------------------------------------------------------------------

class RoomPayload(CamelModel):
    room_code: str = Field(min_length=1)


class JoinRoomPayload(RoomPayload):
    username: Optional[str] = None


class SearchQueryPayload(CamelModel):
    text: str = Field(min_length=1)


class RequestSongPayload(RoomPayload):
    source_id: str = Field(min_length=1)
    title: Optional[str] = None
    thumbnail: Optional[str] = None


class SeekTrackPayload(RoomPayload):
    timestamp_seconds: float = Field(ge=0, allow_inf_nan=False)


class SongReportPayload(RoomPayload):
    song_id: str


class RemoveFromQueuePayload(RoomPayload):
    queue_entry_id: str


class JoinRoom(BaseModel):
    event: Literal["join_room"]
    data: JoinRoomPayload


class SearchQuery(BaseModel):
    event: Literal["search_query"]
    data: SearchQueryPayload


class RequestSong(BaseModel):
    event: Literal["request_song"]
    data: RequestSongPayload


class PlayTrack(BaseModel):
    event: Literal["play_track"]
    data: RoomPayload


class PauseTrack(BaseModel):
    event: Literal["pause_track"]
    data: RoomPayload


class SeekTrack(BaseModel):
    event: Literal["seek_track"]
    data: SeekTrackPayload


class SkipTrack(BaseModel):
    event: Literal["skip_track"]
    data: RoomPayload


class SongEnded(BaseModel):
    event: Literal["song_ended"]
    data: SongReportPayload


class SongLoadError(BaseModel):
    event: Literal["song_load_error"]
    data: SongReportPayload


class RemoveFromQueue(BaseModel):
    event: Literal["remove_from_queue"]
    data: RemoveFromQueuePayload


InboundEvent = Annotated[
    Union[
        JoinRoom,
        SearchQuery,
        RequestSong,
        PlayTrack,
        PauseTrack,
        SeekTrack,
        SkipTrack,
        SongEnded,
        SongLoadError,
        RemoveFromQueue,
    ],
    Field(discriminator="event"),
]

inbound_event_adapter = TypeAdapter(InboundEvent)


def parse_inbound(raw: Any) -> InboundEvent:
    """Validate a decoded frame. Raises ``pydantic.ValidationError``."""
    return inbound_event_adapter.validate_python(raw)


# ---------------------------------------------------------------------------
# Outbound payloads
# ---------------------------------------------------------------------------

class MemberOut(CamelModel):
    connection_id: str
    display_name: str


class QueueEntryOut(CamelModel):
    queue_entry_id: str
    source_ref: str
    title: str
    thumbnail: Optional[str] = None
    requested_by: Optional[str] = None


class PlaybackStateOut(CamelModel):
    queue_entry_id: str
    source_ref: str
    title: str
    thumbnail: Optional[str] = None
    requested_by: Optional[str] = None
    started_at_anchor: Optional[float] = None
    paused_at_anchor: Optional[float] = None
    is_playing: bool


class SyncSnapshotOut(CamelModel):
    room_code: str
    members: List[MemberOut]
    queue: List[QueueEntryOut]
    current_playback: Optional[PlaybackStateOut] = None
    is_playing: bool
    elapsed_seconds: float


class SearchResultOut(CamelModel):
    id: str
    title: str
    thumbnail: Optional[str] = None
    channel: Optional[str] = None
    duration: Optional[str] = None


def dump(model: BaseModel) -> dict:
    return model.model_dump(by_alias=True, mode="json")


def members_payload(members) -> List[dict]:
    return [dump(MemberOut.model_validate(m)) for m in members]


def queue_payload(queue) -> List[dict]:
    return [dump(QueueEntryOut.model_validate(e)) for e in queue]


def playback_payload(playback) -> dict:
    return dump(PlaybackStateOut.model_validate(playback))


def snapshot_payload(snapshot) -> dict:
    return dump(SyncSnapshotOut.model_validate(snapshot))


def search_results_payload(results) -> List[dict]:
    return [dump(SearchResultOut.model_validate(r)) for r in results]
