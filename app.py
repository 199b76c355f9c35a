import asyncio
import json
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from auth import LocalIdentityProvider
from backend import RedisBackend
from constants import LOG_FILE, LOG_LEVEL
from logging_config import get_logger, setup_logging
from routers.games import games_router
from routers.rooms import rooms_router
from routers.session import session_router
from session import ClientSession

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def create_app(backend_factory: Callable[[], RedisBackend] = RedisBackend) -> FastAPI:
    """Build the local client API.

    The process serves a single client session; the UI drives it over HTTP and
    listens on /ws for a fresh state snapshot after every transition.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        backend = backend_factory()
        client = ClientSession(backend, LocalIdentityProvider())
        app.state.client = client
        await client.start()
        logger.info("Client API started")
        try:
            yield
        finally:
            await client.close()
            logger.info("Client API stopped")

    app = FastAPI(title="Chat rooms client", lifespan=lifespan)

    # Configure CORS to allow all origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(session_router)
    app.include_router(rooms_router)
    app.include_router(games_router)

    @app.get("/health")
    async def health():
        client: ClientSession = app.state.client
        return {"status": "ok" if client.backend.ping() else "degraded"}

    @app.websocket("/ws")
    async def state_stream(websocket: WebSocket):
        """Push the state tree to the UI after every dispatched action."""
        client: ClientSession = app.state.client
        await websocket.accept()
        logger.info("State stream connected")
        queue: asyncio.Queue = asyncio.Queue()
        unsubscribe = client.store.subscribe(lambda state, action: queue.put_nowait(action.type))

        async def send_snapshot(action_type):
            await websocket.send_text(json.dumps({
                "type": "state",
                "action": action_type,
                "state": client.state.model_dump(mode="json"),
            }))

        async def pump():
            while True:
                action_type = await queue.get()
                await send_snapshot(action_type)

        await send_snapshot(None)
        pump_task = asyncio.create_task(pump())
        try:
            while True:
                # Client frames are only keep-alives
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.info("State stream disconnected")
        finally:
            unsubscribe()
            pump_task.cancel()
            try:
                await pump_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug(f"State stream pump stopped: {e}")

    logger.info("FastAPI application initialized")
    return app


app = create_app()
