"""WebSocket fan-out of session events to UI clients."""

import asyncio
import logging

from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)


class SessionEventHub:
    """Pushes session_state, roster_updated and message_received events."""

    def __init__(self) -> None:
        self._sockets: set[WebSocket] = set()
        self._lock = asyncio.Lock()

    @property
    def client_count(self) -> int:
        return len(self._sockets)

    async def serve(self, websocket: WebSocket, snapshot) -> None:
        """
        Hold one UI connection open until it goes away.

        snapshot() is sent first so a fresh UI does not have to wait for
        the next change to learn the current state.
        """
        await websocket.accept()
        await websocket.send_json({"event": "session_state", "data": snapshot()})
        async with self._lock:
            self._sockets.add(websocket)
        logger.info(f"UI client connected. Total: {self.client_count}")
        try:
            while True:
                # Nothing is expected from the UI; this just notices it leaving.
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            async with self._lock:
                self._sockets.discard(websocket)
            logger.info(f"UI client disconnected. Total: {self.client_count}")

    async def publish(self, event_type: str, data: dict) -> None:
        """Subscriber for SessionStateMachine; drops sockets that fail."""
        message = {"event": event_type, "data": data}
        async with self._lock:
            dead = []
            for websocket in self._sockets:
                try:
                    await websocket.send_json(message)
                except Exception as e:
                    logger.debug(f"Dropping UI client: {e}")
                    dead.append(websocket)
            self._sockets.difference_update(dead)
