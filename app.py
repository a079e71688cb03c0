from contextlib import asynccontextmanager
import os

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from constants import CORS_ORIGINS
from logging_config import get_logger, setup_logging
from relay import ChatRelay
from routers.rooms import rooms_router
from schemas.rooms import HealthResponse

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Room state lives in process memory only; a restart drops every room
    relay = ChatRelay()
    app.state.relay = relay
    relay.start()
    logger.info("Chat relay started")
    try:
        yield
    finally:
        await relay.close()
        logger.info("Chat relay stopped")


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)

app.include_router(rooms_router)

logger.info("FastAPI application initialized")


@app.get("/health", response_model=HealthResponse)
async def health_check():
    relay: ChatRelay = app.state.relay
    async with relay.lock:
        rooms = len(relay.registry)
    return HealthResponse(status="healthy", rooms=rooms, connections=len(relay.connections))


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Relay endpoint. Every frame is JSON ``{"event": ..., "data": ...}`` in both directions."""
    relay: ChatRelay = websocket.app.state.relay
    await websocket.accept()
    connection_id = await relay.connect(websocket)

    try:
        frame_count = 0
        while True:
            text = await websocket.receive_text()
            frame_count += 1
            logger.debug(f"Received frame #{frame_count} from connection {connection_id}")
            await relay.handle_frame(connection_id, text)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected normally for connection {connection_id}")
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
        try:
            await websocket.close()
        except Exception as close_error:
            logger.debug(f"Error closing WebSocket: {close_error}")
    finally:
        await relay.disconnect(connection_id)
