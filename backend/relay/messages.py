"""
Relay RPC messages and their framing on the reliable session stream.

Each frame is a 1-byte message type, a 4-byte big-endian payload length,
then the message as UTF-8 JSON.
"""

import struct

from pydantic import BaseModel, Field, ValidationError

from config import MAX_MESSAGE_LENGTH
from errors import MalformedMessage

HEADER_FORMAT = "!BI"  # 1-byte type + 4-byte length (big-endian)
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)


class MessageType:
    WELCOME = 0x01
    SUBMIT_MESSAGE = 0x02
    BROADCAST_MESSAGE = 0x03
    REQUEST_ROSTER = 0x04
    ROSTER_UPDATE = 0x05
    ROSTER_REMOVE = 0x06


class Welcome(BaseModel):
    """First frame on a new connection: the id the host assigned."""
    client_id: int = Field(ge=0)


# --- Host-bound ---

class SubmitMessage(BaseModel):
    """A peer asks the host to relay its text. Carries no trust."""
    sender_id: int = Field(ge=0)
    text: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)


class RequestRoster(BaseModel):
    requesting_id: int = Field(ge=0)


# --- Fan-out, host-stamped ---

class BroadcastMessage(BaseModel):
    sender_id: int = Field(ge=0)
    sender_name: str
    text: str


class RosterUpdate(BaseModel):
    client_id: int = Field(ge=0)
    name: str


class RosterRemove(BaseModel):
    client_id: int = Field(ge=0)


_MODELS: dict[int, type[BaseModel]] = {
    MessageType.WELCOME: Welcome,
    MessageType.SUBMIT_MESSAGE: SubmitMessage,
    MessageType.BROADCAST_MESSAGE: BroadcastMessage,
    MessageType.REQUEST_ROSTER: RequestRoster,
    MessageType.ROSTER_UPDATE: RosterUpdate,
    MessageType.ROSTER_REMOVE: RosterRemove,
}
_TYPES = {model: msg_type for msg_type, model in _MODELS.items()}

HOST_BOUND = (SubmitMessage, RequestRoster)
FAN_OUT = (BroadcastMessage, RosterUpdate, RosterRemove)


def encode_frame(message: BaseModel) -> bytes:
    msg_type = _TYPES[type(message)]
    payload = message.model_dump_json().encode("utf-8")
    return struct.pack(HEADER_FORMAT, msg_type, len(payload)) + payload


def decode_payload(msg_type: int, payload: bytes) -> BaseModel:
    """Rebuild a message from its frame. Raises MalformedMessage."""
    model = _MODELS.get(msg_type)
    if model is None:
        raise MalformedMessage(f"Unknown message type {msg_type:#x}")
    try:
        return model.model_validate_json(payload)
    except ValidationError as e:
        raise MalformedMessage(f"Invalid {model.__name__}: {e}") from e
