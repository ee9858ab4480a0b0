from contextlib import asynccontextmanager
import json
import uuid

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from backend import room_store
from connections import ConnectionManager
from constants import CORS_ORIGINS, LOG_FILE, LOG_LEVEL
from logging_config import get_logger, setup_logging
from protocol import EventRouter
from reaper import IdleReaper
from resolver import audio_resolver
from routers.rooms import rooms_router

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)

connection_manager = ConnectionManager()
event_router = EventRouter(room_store, connection_manager, audio_resolver)
idle_reaper = IdleReaper(room_store, on_evict=event_router.forget)


@asynccontextmanager
async def lifespan(app: FastAPI):
    idle_reaper.start()
    try:
        yield
    finally:
        await idle_reaper.stop()
        await event_router.shutdown()


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rooms_router)

logger.info("FastAPI application initialized")


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Room protocol endpoint.

    Each socket gets a fresh connection id; it does not carry over to a
    new socket after a reconnect. Frames are JSON ``{"event", "data"}``.
    """
    await websocket.accept()
    connection_id = str(uuid.uuid4())
    connection_manager.register(connection_id, websocket)
    logger.info(f"User connected: {connection_id}")

    try:
        message_count = 0
        while True:
            data = await websocket.receive_text()
            message_count += 1
            logger.debug(f"Received message #{message_count} from connection {connection_id}")
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                logger.warning(f"Ignoring non-JSON frame from connection {connection_id}")
                continue
            await event_router.dispatch(connection_id, message)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected normally for connection {connection_id}")
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
    finally:
        connection_manager.unregister(connection_id)
        await event_router.disconnect(connection_id)
