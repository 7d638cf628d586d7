"""
LAN Lobby: FastAPI application entry point.

Creates the dispatch queue and session state machine on startup, drains
network events on the event loop, and serves the REST API and WebSocket
endpoint for the UI.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket

from api.routes import init_routes, router
from api.websocket import SessionEventHub
from config import API_HOST, API_PORT, SERVER_NAME
from session.dispatch import Dispatcher
from session.machine import SessionStateMachine

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# --- Service singletons ---
dispatcher = Dispatcher()
session = SessionStateMachine(dispatcher)
event_hub = SessionEventHub()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start/stop the event pump and tear down any session on exit."""
    logger.info("Starting LAN Lobby services...")

    unsubscribe = session.subscribe(event_hub.publish)
    pump = asyncio.create_task(dispatcher.run(session.handle_event))
    logger.info(f"LAN Lobby ready. API: {API_HOST}:{API_PORT}, server name: {SERVER_NAME}")

    try:
        yield
    finally:
        logger.info("Shutting down LAN Lobby services...")
        await session.close()
        unsubscribe()
        pump.cancel()
        try:
            await pump
        except asyncio.CancelledError:
            pass


# --- FastAPI app ---
app = FastAPI(
    title="LAN Lobby",
    version="1.0.0",
    lifespan=lifespan,
)

# Inject services into routes
init_routes(session)
app.include_router(router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await event_hub.serve(websocket, session.describe)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=API_HOST,
        port=API_PORT,
        log_level="info",
    )
