from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from routers.rooms import rooms_router
from backend import redis_backend
from registry import room_registry, run_idle_sweeper
from connection import WebSocketConnection
from auth import authenticate_connection
from exceptions import AuthError
from constants import WS_INTERNAL_ERROR, WS_POLICY_VIOLATION
from schemas.rooms import HealthResponse
from logging_config import get_logger, setup_logging
from typing import Optional
import asyncio
import redis
import os

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    redis_backend.ping()
    sweeper = asyncio.create_task(run_idle_sweeper(room_registry))
    yield
    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass


app = FastAPI(title="DuoChat realtime", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rooms_router)

logger.info("FastAPI application initialized")


@app.get("/health", response_model=HealthResponse)
async def health_check():
    return HealthResponse(status="healthy", rooms=len(room_registry), connections=room_registry.connection_count())


@app.websocket("/ws/{couple_id}")
async def websocket_endpoint(
    couple_id: str,
    websocket: WebSocket,
    user_id: Optional[str] = Query(None, alias="userId"),
    token: Optional[str] = Query(None),
):
    """Realtime room endpoint for one couple.

    Query parameters:
    - userId: Id of the connecting user
    - token: Bearer token whose subject must be userId
    """
    logger.info(f"WebSocket connection attempt for couple: {couple_id}, user: {user_id}")

    # Nothing is admitted to the room until the handshake checks out
    try:
        authenticate_connection(couple_id, user_id, token)
    except AuthError as e:
        logger.warning(f"WebSocket connection rejected for couple {couple_id}, user {user_id}: {e}")
        await websocket.close(code=WS_POLICY_VIOLATION, reason=str(e))
        return
    except redis.RedisError as e:
        logger.error(f"Membership lookup failed for couple {couple_id}: {e}", exc_info=True)
        await websocket.close(code=WS_INTERNAL_ERROR, reason="Authorization unavailable")
        return

    await websocket.accept()
    connection = WebSocketConnection(websocket)
    writer = asyncio.create_task(connection.run_writer())
    room = room_registry.get_or_create(couple_id)
    connection_id = room.accept(connection, user_id)

    message_count = 0
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info(f"WebSocket disconnected normally for connection {connection_id} in couple {couple_id}")
                break
            data = message.get("text")
            if data is None:
                data = message.get("bytes") or b""
            message_count += 1
            logger.debug(f"Received frame #{message_count} from connection {connection_id} in couple {couple_id}")
            room.handle_inbound_frame(connection_id, data)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for connection {connection_id} in couple {couple_id}")
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection_id} in couple {couple_id}: {e}", exc_info=True)
    finally:
        connection.close()
        room.disconnect(connection_id)
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass
        try:
            await websocket.close()
        except Exception as e:
            logger.debug(f"Error closing WebSocket: {e}")
