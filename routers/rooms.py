from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse

from backend import room_store
from logging_config import get_logger
from resolver import ResolutionError, SourceUnavailableError, audio_resolver
from schemas.rooms import CreateRoomRequest, CreateRoomResponse, RoomSummaryResponse

logger = get_logger(__name__)

rooms_router = APIRouter(tags=["rooms"])


@rooms_router.get("/")
async def index():
    return {"message": "Jam server is online"}


@rooms_router.post("/api/rooms", response_model=CreateRoomResponse, response_model_by_alias=True)
async def create_room(room: CreateRoomRequest, request: Request):
    client_host = request.client.host if request.client else "unknown"
    logger.info(f"Room creation request for {room.room_code} from {client_host}")
    created = room_store.get_or_create(room.room_code)
    return CreateRoomResponse(room_code=created.code)


@rooms_router.get("/api/rooms/{room_code}", response_model=RoomSummaryResponse, response_model_by_alias=True)
async def get_room_summary(room_code: str):
    room = room_store.get(room_code)
    if room is None:
        logger.debug(f"Room summary failed: room {room_code} not found")
        return JSONResponse(status_code=404, content={"exists": False})
    return RoomSummaryResponse(exists=True, member_count=len(room.members), is_playing=room.is_playing)


@rooms_router.get("/stream/{source_id}")
async def stream(source_id: str):
    """Redirect the player to a freshly resolved audio URL.

    Unavailable sources fail immediately; other lookup failures are retried once.
    """
    logger.info(f"Streaming request for {source_id}")
    for attempt in (1, 2):
        try:
            url = await audio_resolver.resolve_async(source_id)
            return RedirectResponse(url, status_code=307)
        except SourceUnavailableError as e:
            logger.warning(f"Source {source_id} unavailable: {e}")
            raise HTTPException(status_code=404, detail="Audio source not found")
        except ResolutionError as e:
            logger.warning(f"Resolving {source_id} failed (attempt {attempt}): {e}")
    raise HTTPException(status_code=502, detail="Streaming failed")
