from contextlib import asynccontextmanager
import asyncio
import json
import os

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError

from backend import redis_backend
from broadcast import LocalBroadcaster, RedisBroadcaster
from connections import ConnectionRegistry, ConnectionSession
from constants import BROADCAST_BACKEND, CORS_ORIGINS
from engine import RoomSyncEngine
from execution import ExecutionRelay
from routers.rooms import rooms_router, users_router
from logging_config import get_logger, setup_logging

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


def build_engine(backend, relay=None, broadcast_backend: str = BROADCAST_BACKEND) -> RoomSyncEngine:
    registry = ConnectionRegistry()
    if broadcast_backend == "local":
        broadcaster = LocalBroadcaster(registry)
    elif broadcast_backend == "redis":
        broadcaster = RedisBroadcaster(backend, registry)
    else:
        raise ValueError(f"Unknown BROADCAST_BACKEND: {broadcast_backend}")
    logger.info(f"Using {broadcast_backend} broadcaster")
    return RoomSyncEngine(backend, registry, broadcaster, relay or ExecutionRelay())


def create_app(backend=None, relay=None, broadcast_backend: str = None) -> FastAPI:
    """Build the application. Passing a backend skips the Redis connectivity check and lets tests swap stores."""
    injected = backend is not None
    backend = backend if injected else redis_backend

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not injected:
            await backend.ping()
        app.state.engine = build_engine(backend, relay=relay, broadcast_backend=broadcast_backend or BROADCAST_BACKEND)
        yield
        await app.state.engine.close()
        if not injected:
            await backend.close()

    app = FastAPI(lifespan=lifespan)
    app.state.backend = backend

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(rooms_router)
    app.include_router(users_router)

    @app.get("/")
    async def root():
        return {"message": "Backend is running!"}

    app.add_api_websocket_route("/ws", websocket_endpoint)

    logger.info("FastAPI application initialized")
    return app


async def websocket_endpoint(websocket: WebSocket):
    """Event channel for one client.

    Frames are JSON text {"event": name, "data": payload} in both directions.
    Events are handled one at a time per connection (code runs are handed
    off to their own task); a store failure fails only the event that hit it.
    """
    engine: RoomSyncEngine = websocket.app.state.engine
    await websocket.accept()
    session = ConnectionSession(websocket)
    logger.info(f"User connected: {session.connection_id}")

    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                logger.debug(f"Dropping non-JSON frame from connection {session.connection_id}")
                continue
            if not isinstance(message, dict):
                logger.debug(f"Dropping non-object frame from connection {session.connection_id}")
                continue

            try:
                await engine.dispatch(session, message)
            except RedisError as e:
                logger.error(f"Store error handling {message.get('event')} for connection {session.connection_id}: {e}", exc_info=True)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected normally for connection {session.connection_id}")
    except Exception as e:
        logger.error(f"WebSocket error for connection {session.connection_id}: {e}", exc_info=True)
        try:
            await websocket.close(code=1011)
        except Exception as close_error:
            logger.debug(f"Error closing WebSocket: {close_error}")
    finally:
        try:
            # The server may cancel this handler right after the close frame;
            # presence cleanup has to finish regardless
            await asyncio.shield(engine.disconnect(session))
        except RedisError as e:
            logger.error(f"Store error cleaning up connection {session.connection_id}: {e}", exc_info=True)


app = create_app()
