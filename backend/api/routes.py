"""REST API routes for LAN Lobby."""

import logging

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from config import MAX_MESSAGE_LENGTH
from errors import DiscoveryStartFailed, HostStartFailed, NotConnected

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Injected by main.py at startup
_session = None


def init_routes(session) -> None:
    """Inject the session state machine into the routes module."""
    global _session
    _session = session


# --- Session ---

@router.get("/session")
async def get_session():
    """Current role, status and roster."""
    return _session.describe()


@router.post("/session/host")
async def start_hosting():
    try:
        await _session.start_hosting()
    except HostStartFailed as e:
        raise HTTPException(status_code=500, detail=f"Failed to start host: {e}")
    return _session.describe()


@router.post("/session/join")
async def join_session():
    """Search the LAN for a host; the connection follows asynchronously."""
    try:
        await _session.join()
    except DiscoveryStartFailed as e:
        raise HTTPException(status_code=500, detail=f"Failed to start discovery: {e}")
    return _session.describe()


@router.post("/session/leave")
async def leave_session():
    await _session.leave()
    return _session.describe()


@router.post("/session/discovery/stop")
async def stop_discovery():
    _session.stop_discovery()
    return _session.describe()


# --- Chat ---

class MessageBody(BaseModel):
    text: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)


@router.get("/messages")
async def list_messages():
    """Recently relayed messages, oldest first."""
    return {"messages": [m.model_dump() for m in _session.messages]}


@router.post("/messages")
async def send_message(body: MessageBody):
    try:
        request = _session.submit_message(body.text)
    except NotConnected as e:
        raise HTTPException(status_code=409, detail=str(e))
    if request is None:
        raise HTTPException(status_code=400, detail="Message is empty")
    return {"status": "submitted"}
