"""
Reliable session transport over asyncio TCP streams.

The host listens on all interfaces and assigns each accepted connection
a client id; the host itself is client 0. Connection signals and
received messages are posted to the dispatcher, never applied here.
"""

import asyncio
import logging
import struct

from config import SESSION_HOST, SESSION_PORT
from errors import MalformedMessage
from relay.messages import (
    HEADER_FORMAT,
    HEADER_SIZE,
    Welcome,
    decode_payload,
    encode_frame,
)
from session.models import (
    ClientConnected,
    ClientDisconnected,
    RpcReceived,
    TransportFailure,
)

logger = logging.getLogger(__name__)

HOST_CLIENT_ID = 0


async def recv_message(reader: asyncio.StreamReader):
    """Receive one frame. Raises MalformedMessage for a bad body."""
    header = await reader.readexactly(HEADER_SIZE)
    msg_type, length = struct.unpack(HEADER_FORMAT, header)
    payload = b""
    if length > 0:
        payload = await reader.readexactly(length)
    return decode_payload(msg_type, payload)


async def _read_loop(reader: asyncio.StreamReader, on_message) -> None:
    """Feed decoded frames to on_message until the stream ends."""
    while True:
        try:
            message = await recv_message(reader)
        except MalformedMessage as e:
            logger.debug(f"Dropping malformed frame: {e}")
            continue
        on_message(message)


class HostTransport:
    """Listen side of the session; owns one stream per remote peer."""

    local_client_id = HOST_CLIENT_ID

    def __init__(self, dispatcher, host: str = SESSION_HOST, port: int = SESSION_PORT) -> None:
        self._dispatcher = dispatcher
        self._host = host
        self._port = port
        self._server: asyncio.Server | None = None
        self._writers: dict[int, asyncio.StreamWriter] = {}
        self._next_id = HOST_CLIENT_ID + 1

    @property
    def port(self) -> int:
        if self._server is None or not self._server.sockets:
            return self._port
        return self._server.sockets[0].getsockname()[1]

    @property
    def client_ids(self) -> list[int]:
        return list(self._writers)

    async def start(self) -> None:
        """Start listening. Raises OSError if the port cannot be bound."""
        self._server = await asyncio.start_server(
            self._handle_connection, self._host, self._port
        )
        logger.info(f"Session transport listening on {self._host}:{self.port}")

    async def close(self) -> None:
        if self._server is None:
            return
        self._server.close()
        for writer in list(self._writers.values()):
            writer.close()
        self._writers.clear()
        await self._server.wait_closed()
        self._server = None
        logger.info("Session transport stopped")

    def send_to(self, client_id: int, message) -> None:
        if client_id == HOST_CLIENT_ID:
            self.send_to_host(message)
            return
        writer = self._writers.get(client_id)
        if writer is None:
            logger.debug(f"No connection for client {client_id}, dropping {type(message).__name__}")
            return
        writer.write(encode_frame(message))

    def send_to_host(self, message) -> None:
        self._dispatcher.post(RpcReceived(HOST_CLIENT_ID, message, origin=self))

    def broadcast(self, message) -> None:
        """Send to every remote peer, then deliver to the host itself."""
        frame = encode_frame(message)
        for writer in self._writers.values():
            writer.write(frame)
        self.send_to_host(message)

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        client_id = self._next_id
        self._next_id += 1
        peer = writer.get_extra_info("peername")
        logger.info(f"Client {client_id} connected from {peer}")

        try:
            writer.write(encode_frame(Welcome(client_id=client_id)))
            await writer.drain()
            self._writers[client_id] = writer
            self._dispatcher.post(ClientConnected(client_id, origin=self))

            await _read_loop(
                reader,
                lambda msg: self._dispatcher.post(RpcReceived(client_id, msg, origin=self)),
            )
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Connection error for client {client_id}: {e}")
        finally:
            if self._writers.pop(client_id, None) is not None:
                logger.info(f"Client {client_id} disconnected")
                self._dispatcher.post(ClientDisconnected(client_id, origin=self))
            writer.close()


class ClientTransport:
    """Connecting side of the session; one stream to the host."""

    def __init__(self, dispatcher) -> None:
        self._dispatcher = dispatcher
        self._writer: asyncio.StreamWriter | None = None
        self._closing = False
        self._task: asyncio.Task | None = None
        self.local_client_id: int | None = None

    async def connect(self, address: str, port: int) -> None:
        """
        Connect and then read until the host goes away.

        Never raises; failures surface as TransportFailure events.
        """
        self._task = asyncio.current_task()
        try:
            reader, writer = await asyncio.open_connection(address, port)
            welcome = await recv_message(reader)
            if not isinstance(welcome, Welcome):
                raise ConnectionError(f"Expected Welcome, got {type(welcome).__name__}")
        except (OSError, asyncio.IncompleteReadError, MalformedMessage) as e:
            logger.error(f"Failed to connect to {address}:{port}: {e}")
            self._dispatcher.post(TransportFailure(str(e), origin=self))
            return

        self._writer = writer
        self.local_client_id = welcome.client_id
        logger.info(f"Connected to {address}:{port} as client {welcome.client_id}")
        self._dispatcher.post(ClientConnected(welcome.client_id, origin=self))

        try:
            await _read_loop(
                reader,
                lambda msg: self._dispatcher.post(RpcReceived(HOST_CLIENT_ID, msg, origin=self)),
            )
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()
            self._writer = None
            if not self._closing:
                logger.info("Host connection closed")
                self._dispatcher.post(ClientDisconnected(welcome.client_id, origin=self))

    def send_to_host(self, message) -> None:
        if self._writer is None:
            logger.debug(f"Not connected, dropping {type(message).__name__}")
            return
        self._writer.write(encode_frame(message))

    async def close(self) -> None:
        self._closing = True
        if self._writer is not None:
            self._writer.close()
        if self._task is not None and not self._task.done():
            self._task.cancel()
