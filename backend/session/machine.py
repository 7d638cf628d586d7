"""
Session state machine.

Owns the local role, the roster and the visible chat. Commands come from
the control surface; everything the network reports arrives as an event
through the dispatcher and is applied by handle_event, one at a time, so
this object has a single writer and needs no locking of its own.
"""

import asyncio
import logging

from config import MAX_MESSAGES, SERVER_NAME, SESSION_HOST, SESSION_PORT
from discovery.channel import local_ip_address
from discovery.models import ServerAnnouncement
from discovery.requester import DiscoveryRequester
from discovery.responder import DiscoveryResponder
from errors import BindError, DiscoveryStartFailed, HostStartFailed, NotConnected
from relay.messages import FAN_OUT
from relay.protocol import ChatLog, HostAuthority, MessageRelay
from session.models import (
    ChatMessage,
    ClientConnected,
    ClientDisconnected,
    RpcReceived,
    ServerFound,
    SessionRole,
    TransportFailure,
)
from session.roster import SessionRoster
from session.transport import ClientTransport, HostTransport

logger = logging.getLogger(__name__)

# Roles from which a new hosting or joining attempt may start.
READY_ROLES = (SessionRole.IDLE, SessionRole.DISCONNECTED)


class SessionStateMachine:
    """Tracks this process's role in the session and applies network events."""

    def __init__(
        self,
        dispatcher,
        *,
        server_name: str = SERVER_NAME,
        session_host: str = SESSION_HOST,
        session_port: int = SESSION_PORT,
        advertised_address: str | None = None,
        max_messages: int = MAX_MESSAGES,
        host_transport_factory=HostTransport,
        client_transport_factory=ClientTransport,
        responder_factory=DiscoveryResponder,
        requester_factory=DiscoveryRequester,
    ) -> None:
        self._dispatcher = dispatcher
        self._server_name = server_name
        self._session_host = session_host
        self._session_port = session_port
        self._advertised_address = advertised_address
        self._host_transport_factory = host_transport_factory
        self._client_transport_factory = client_transport_factory
        self._responder_factory = responder_factory
        self._requester_factory = requester_factory

        self._role = SessionRole.IDLE
        self._status = "Idle"
        self._roster = SessionRoster()
        self._chat_log = ChatLog(max_messages)
        self._relay = MessageRelay(self._roster, self._chat_log)
        self._transport = None
        self._authority: HostAuthority | None = None
        self._responder: DiscoveryResponder | None = None
        self._requester: DiscoveryRequester | None = None
        self._target: tuple[str, int] | None = None
        self._starting = False  # a host or join start is awaiting its sockets
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list = []  # fn(event_type, data)

    # --- Snapshots ---

    @property
    def role(self) -> SessionRole:
        return self._role

    @property
    def status(self) -> str:
        return self._status

    @property
    def roster(self) -> dict[int, str]:
        return self._roster.snapshot()

    @property
    def messages(self) -> list[ChatMessage]:
        return self._chat_log.snapshot()

    @property
    def target(self) -> tuple[str, int] | None:
        return self._target

    @property
    def local_client_id(self) -> int | None:
        if self._transport is None:
            return None
        return self._transport.local_client_id

    @property
    def announcement(self) -> ServerAnnouncement | None:
        """What this host advertises, while it is discoverable."""
        if self._responder is None:
            return None
        return self._responder.announcement

    @property
    def discoverable(self) -> bool:
        return self._responder is not None and self._responder.running

    @property
    def searching(self) -> bool:
        return self._requester is not None and self._requester.running

    def describe(self) -> dict:
        return {
            "role": self._role.value,
            "status": self._status,
            "local_client_id": self.local_client_id,
            "target": list(self._target) if self._target else None,
            "discoverable": self.discoverable,
            "searching": self.searching,
            "roster": [
                {"client_id": cid, "name": name} for cid, name in self.roster.items()
            ],
        }

    # --- Observers ---

    def subscribe(self, callback):
        """Register fn(event_type, data). Returns a function that unregisters it."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _emit(self, event_type: str, data: dict) -> None:
        for cb in list(self._listeners):
            try:
                result = cb(event_type, data)
                if asyncio.iscoroutine(result):
                    asyncio.ensure_future(result)
            except Exception as e:
                logger.error(f"Event callback error: {e}")

    def _set_state(self, role: SessionRole, status: str) -> None:
        if role != self._role:
            logger.info(f"Session role {self._role.value} -> {role.value}")
        self._role = role
        self._status = status
        logger.info(f"Status: {status}")
        self._emit("session_state", {"role": role.value, "status": status})

    def _emit_roster(self) -> None:
        self._emit("roster_updated", {"roster": self.describe()["roster"]})

    # --- Commands ---

    async def start_hosting(self) -> None:
        """
        Idle -> Hosting. Opens the listen transport, then makes the
        session discoverable. Raises HostStartFailed and stays put if
        either step fails. A no-op if a session is already active or
        another start is still in progress.
        """
        if self._role not in READY_ROLES or self._starting:
            logger.debug(f"Ignoring host request while {self._role.value}")
            return
        self._stop_requester()

        self._starting = True
        try:
            await self._start_hosting()
        finally:
            self._starting = False

    async def _start_hosting(self) -> None:
        transport = self._host_transport_factory(
            self._dispatcher, host=self._session_host, port=self._session_port
        )
        try:
            await transport.start()
        except OSError as e:
            logger.error(f"Failed to start host: {e}")
            self._set_state(self._role, "Failed to start host")
            raise HostStartFailed(str(e)) from e

        announcement = ServerAnnouncement(
            address=self._advertised_address or local_ip_address(),
            port=transport.port,
            server_name=self._server_name,
        )
        responder = self._responder_factory(announcement)
        try:
            await responder.start()
        except BindError as e:
            logger.error(f"Failed to start discovery responder: {e}")
            await transport.close()
            self._set_state(self._role, "Failed to start host")
            raise HostStartFailed(str(e)) from e

        self._transport = transport
        self._responder = responder
        self._target = None
        self._roster.clear()
        self._chat_log.clear()
        self._authority = HostAuthority(transport, self._roster)
        self._set_state(SessionRole.HOSTING, "Hosting...")
        self._authority.admit(transport.local_client_id)
        self._emit_roster()

    async def join(self) -> None:
        """Start looking for a host. Raises DiscoveryStartFailed.

        A no-op while searching, in a session, or while another start is
        still in progress.
        """
        if self._role not in READY_ROLES or self.searching or self._starting:
            logger.debug(f"Ignoring join request while {self._role.value}")
            return

        def on_server_found(announcement: ServerAnnouncement) -> None:
            self._dispatcher.post(ServerFound(announcement, origin=requester))

        requester = self._requester_factory(on_server_found)
        self._starting = True
        try:
            await requester.start()
        except BindError as e:
            logger.error(f"Failed to start discovery: {e}")
            raise DiscoveryStartFailed(str(e)) from e
        finally:
            self._starting = False

        self._requester = requester
        self._set_state(self._role, "Searching for sessions...")

    def stop_discovery(self) -> None:
        """Stop advertising this host, e.g. once the session is full."""
        if self._responder is not None:
            self._responder.stop()
            self._responder = None
            logger.info("Host is no longer discoverable")

    async def leave(self) -> None:
        """Local shutdown of whatever session is active."""
        searching = self.searching
        self._stop_requester()
        if self._role in (SessionRole.HOSTING, SessionRole.CONNECTING, SessionRole.CONNECTED):
            self._end_session("Disconnected")
        elif searching:
            self._set_state(self._role, "Idle" if self._role == SessionRole.IDLE else "Disconnected")
        await self.wait_idle()

    def submit_message(self, text: str):
        """Send text to the host for relaying. Raises NotConnected."""
        if self._role not in (SessionRole.HOSTING, SessionRole.CONNECTED):
            raise NotConnected(f"Cannot send messages while {self._role.value}")
        return self._relay.submit(self._transport, self._transport.local_client_id, text)

    async def wait_idle(self) -> None:
        """Wait for background connect/teardown tasks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.leave()
        self._listeners.clear()

    # --- Events ---

    def handle_event(self, event) -> None:
        """Apply one dispatcher event. Only called from the owning context."""
        if isinstance(event, ServerFound):
            if self._requester is None or event.origin is not self._requester:
                logger.debug("Ignoring server answer heard by a stopped search")
                return
            self._on_server_found(event.announcement)
            return

        if self._transport is None or getattr(event, "origin", None) is not self._transport:
            logger.debug(f"Ignoring {type(event).__name__} from a stale transport")
            return

        if isinstance(event, ClientConnected):
            self._on_client_connected(event.client_id)
        elif isinstance(event, ClientDisconnected):
            self._on_client_disconnected(event.client_id)
        elif isinstance(event, TransportFailure):
            self._on_transport_failure(event.reason)
        elif isinstance(event, RpcReceived):
            self._on_rpc(event.sender_id, event.message)
        else:
            logger.warning(f"Unknown event {event!r}")

    def _on_server_found(self, announcement: ServerAnnouncement) -> None:
        if self._role not in READY_ROLES:
            logger.debug(f"Ignoring server {announcement.address} while {self._role.value}")
            return

        logger.info(f"Server found at {announcement.address}:{announcement.port}")
        self._stop_requester()
        self._target = (announcement.address, announcement.port)
        self._roster.clear()
        self._chat_log.clear()

        transport = self._client_transport_factory(self._dispatcher)
        self._transport = transport
        self._set_state(SessionRole.CONNECTING, f"Server found: {announcement.server_name}")
        self._spawn(transport.connect(announcement.address, announcement.port))
        self._set_state(SessionRole.CONNECTING, "Connecting...")

    def _on_client_connected(self, client_id: int) -> None:
        if self._role == SessionRole.HOSTING:
            if client_id != self._transport.local_client_id:
                if self._authority.admit(client_id) is not None:
                    self._emit_roster()
            return

        if self._role == SessionRole.CONNECTING and client_id == self._transport.local_client_id:
            self._set_state(SessionRole.CONNECTED, "Connected!")
            self._relay.request_roster(self._transport, client_id)

    def _on_client_disconnected(self, client_id: int) -> None:
        if self._role == SessionRole.HOSTING:
            if client_id != self._transport.local_client_id and self._authority.dismiss(client_id):
                self._emit_roster()
            return

        if client_id == self._transport.local_client_id:
            self._end_session("Disconnected")

    def _on_transport_failure(self, reason: str) -> None:
        logger.error(f"Transport failure: {reason}")
        if self._role in (SessionRole.HOSTING, SessionRole.CONNECTING, SessionRole.CONNECTED):
            self._end_session("Connection failed: Transport error")

    def _on_rpc(self, sender_id: int, message) -> None:
        if self._role == SessionRole.HOSTING:
            if self._relay.handle_request(self._authority, sender_id, message):
                return
            if sender_id != self._transport.local_client_id:
                logger.debug(f"Dropping {type(message).__name__} sent by client {sender_id}")
                return
        elif self._role not in (SessionRole.CONNECTING, SessionRole.CONNECTED):
            return

        if not isinstance(message, FAN_OUT):
            logger.debug(f"Dropping host-bound {type(message).__name__} on a peer")
            return

        result = self._relay.apply(message)
        if isinstance(result, ChatMessage):
            self._emit("message_received", {"message": result.model_dump()})
        elif result:
            self._emit_roster()

    # --- Teardown ---

    def _end_session(self, status: str) -> None:
        """Enter Disconnected; the session is over for this process."""
        if self._authority is not None:
            # The host is the session, so every peer loses it too.
            self._authority.revoke()
            self._authority = None
        self.stop_discovery()
        self._stop_requester()

        transport, self._transport = self._transport, None
        if transport is not None:
            self._spawn(transport.close())

        self._roster.clear()
        self._target = None
        self._set_state(SessionRole.DISCONNECTED, status)
        self._emit_roster()

    def _stop_requester(self) -> None:
        if self._requester is not None:
            self._requester.stop()
            self._requester = None

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
