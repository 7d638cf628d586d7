"""Session roles, peer identities and the events fed through the dispatcher."""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel

from discovery.models import ServerAnnouncement


class SessionRole(str, Enum):
    """Role of this process in the current session."""
    IDLE = "idle"
    HOSTING = "hosting"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class PeerIdentity(BaseModel):
    client_id: int
    display_name: str


class ChatMessage(BaseModel):
    sender_id: int
    sender_name: str
    text: str


# --- Dispatcher events ---
# Posted by background listeners, applied by the session state machine.

@dataclass(frozen=True)
class ServerFound:
    announcement: ServerAnnouncement
    origin: Any = None  # requester that heard the answer


@dataclass(frozen=True)
class ClientConnected:
    client_id: int
    origin: Any = None  # transport that produced the signal


@dataclass(frozen=True)
class ClientDisconnected:
    client_id: int
    origin: Any = None


@dataclass(frozen=True)
class TransportFailure:
    reason: str
    origin: Any = None


@dataclass(frozen=True)
class RpcReceived:
    sender_id: int
    message: Any  # a relay.messages model
    origin: Any = None
