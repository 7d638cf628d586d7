"""
Host-mediated message relay.

Peers never talk to each other directly. A peer submits text to the host;
the host resolves the sender's name from its own roster and fans the
message out to every peer, itself included. Because fan-out happens
synchronously per accepted request, every peer sees broadcasts in the
order the host processed the requests.
"""

import logging
from collections import deque

from config import MAX_MESSAGES
from relay.messages import (
    BroadcastMessage,
    RequestRoster,
    RosterRemove,
    RosterUpdate,
    SubmitMessage,
)
from session.models import ChatMessage, PeerIdentity
from session.roster import SessionRoster, default_player_name

logger = logging.getLogger(__name__)


class ChatLog:
    """The most recent messages visible to this peer, oldest evicted first."""

    def __init__(self, max_messages: int = MAX_MESSAGES) -> None:
        self._messages: deque[ChatMessage] = deque(maxlen=max_messages)

    @property
    def max_messages(self) -> int:
        return self._messages.maxlen

    def __len__(self) -> int:
        return len(self._messages)

    def append(self, message: ChatMessage) -> None:
        self._messages.append(message)

    def clear(self) -> None:
        self._messages.clear()

    def snapshot(self) -> list[ChatMessage]:
        return list(self._messages)


class HostAuthority:
    """
    Capability to decide session truth: who is in the roster, and who
    said what.

    Only the session state machine creates one, when it enters the
    hosting role, and revokes it when the session ends.
    """

    def __init__(self, transport, roster: SessionRoster) -> None:
        self._transport = transport
        self._roster = roster
        self._revoked = False

    @property
    def revoked(self) -> bool:
        return self._revoked

    @property
    def local_client_id(self) -> int:
        return self._transport.local_client_id

    def revoke(self) -> None:
        self._revoked = True

    def _check(self) -> None:
        if self._revoked:
            raise RuntimeError("Host authority has been revoked")

    def admit(self, client_id: int) -> PeerIdentity | None:
        """Add a newly connected peer and announce it to everyone."""
        self._check()
        if client_id in self._roster:
            return None
        name = default_player_name(client_id)
        self._roster.apply_update(client_id, name)
        logger.info(f"{name} joined the session")
        self._transport.broadcast(RosterUpdate(client_id=client_id, name=name))
        return PeerIdentity(client_id=client_id, display_name=name)

    def dismiss(self, client_id: int) -> bool:
        """Drop a disconnected peer and announce it to everyone."""
        self._check()
        if not self._roster.remove(client_id):
            return False
        logger.info(f"Client {client_id} left the session")
        self._transport.broadcast(RosterRemove(client_id=client_id))
        return True

    def relay(self, sender_id: int, request: SubmitMessage) -> BroadcastMessage | None:
        """
        Validate a submission arriving on sender_id's connection and fan
        it out. Returns the broadcast, or None if the request was dropped.
        """
        self._check()
        if request.sender_id != sender_id:
            logger.debug(
                f"Dropping relay request from client {sender_id} "
                f"claiming to be client {request.sender_id}"
            )
            return None
        if not request.text.strip():
            logger.debug(f"Dropping empty relay request from client {sender_id}")
            return None

        broadcast = BroadcastMessage(
            sender_id=sender_id,
            sender_name=self._roster.name_of(sender_id),
            text=request.text,
        )
        self._transport.broadcast(broadcast)
        return broadcast

    def replay_roster(self, requesting_id: int) -> int:
        """Send the requesting peer one RosterUpdate per roster entry."""
        self._check()
        entries = self._roster.entries()
        for peer in entries:
            self._transport.send_to(
                requesting_id,
                RosterUpdate(client_id=peer.client_id, name=peer.display_name),
            )
        logger.debug(f"Replayed {len(entries)} roster entries to client {requesting_id}")
        return len(entries)


class MessageRelay:
    """One peer's end of the relay protocol."""

    def __init__(self, roster: SessionRoster, chat_log: ChatLog) -> None:
        self._roster = roster
        self._chat_log = chat_log

    def submit(self, transport, sender_id: int, text: str) -> SubmitMessage | None:
        """Send text to the host for relaying. Blank text is not sent."""
        if not text or not text.strip():
            return None
        request = SubmitMessage(sender_id=sender_id, text=text)
        transport.send_to_host(request)
        return request

    def request_roster(self, transport, client_id: int) -> None:
        transport.send_to_host(RequestRoster(requesting_id=client_id))

    def handle_request(self, authority: HostAuthority, sender_id: int, message) -> bool:
        """Apply a host-bound message. Returns False if it is not one."""
        if isinstance(message, SubmitMessage):
            authority.relay(sender_id, message)
        elif isinstance(message, RequestRoster):
            authority.replay_roster(sender_id)
        else:
            return False
        return True

    def apply(self, message) -> ChatMessage | bool:
        """
        Apply a fan-out message from the host to local state.

        Returns the ChatMessage for a broadcast, otherwise whether the
        roster changed.
        """
        if isinstance(message, BroadcastMessage):
            chat = ChatMessage(
                sender_id=message.sender_id,
                sender_name=message.sender_name,
                text=message.text,
            )
            self._chat_log.append(chat)
            return chat
        if isinstance(message, RosterUpdate):
            return self._roster.apply_update(message.client_id, message.name)
        if isinstance(message, RosterRemove):
            return self._roster.remove(message.client_id)

        logger.debug(f"Ignoring unexpected {type(message).__name__} from host")
        return False
