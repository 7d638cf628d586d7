"""
Broadcast-capable UDP channel used by both sides of discovery.

Wraps an asyncio datagram endpoint behind a receive queue so callers can
await datagrams one at a time, and so closing the channel wakes up any
pending receive instead of leaving it suspended.
"""

import asyncio
import logging
import socket

from errors import BindError, ChannelClosed

logger = logging.getLogger(__name__)

_CLOSED = object()


def local_ip_address() -> str:
    """Return the IPv4 address of the interface used for outbound traffic."""
    try:
        # Connecting a UDP socket sends nothing; it just picks a route.
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
            probe.connect(("10.255.255.255", 1))
            return probe.getsockname()[0]
    except OSError:
        pass

    try:
        _, _, ips = socket.gethostbyname_ex(socket.gethostname())
        for ip in ips:
            if not ip.startswith("127."):
                return ip
    except OSError as e:
        logger.debug(f"Error resolving local IPs: {e}")
    return "127.0.0.1"


def subnet_broadcast_address() -> str:
    """Broadcast address of the local subnet, assuming a /24."""
    ip = local_ip_address()
    if ip.startswith("127."):
        return "255.255.255.255"
    parts = ip.split(".")
    parts[3] = "255"
    return ".".join(parts)


class _ChannelProtocol(asyncio.DatagramProtocol):
    """asyncio UDP protocol feeding received datagrams into the channel."""

    def __init__(self, channel: "BroadcastChannel"):
        self.channel = channel

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        self.channel._deliver(data, addr)

    def error_received(self, exc: Exception) -> None:
        logger.warning(f"Discovery UDP error: {exc}")

    def connection_lost(self, exc: Exception | None) -> None:
        self.channel.close()


class BroadcastChannel:
    """A UDP socket that can send to the subnet broadcast address."""

    def __init__(self, port: int = 0, host: str = "0.0.0.0") -> None:
        self._host = host
        self._port = port
        self._transport: asyncio.DatagramTransport | None = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def local_port(self) -> int:
        if self._transport is None:
            return 0
        return self._transport.get_extra_info("sockname")[1]

    def _create_socket(self) -> socket.socket:
        # SO_REUSEADDR before bind so a host can answer on the discovery
        # port while another process on the machine also listens there.
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.setblocking(False)
            sock.bind((self._host, self._port))
        except OSError:
            sock.close()
            raise
        return sock

    async def open(self) -> "BroadcastChannel":
        """Bind the socket and start receiving. Raises BindError on failure."""
        if self._closed:
            raise BindError("Channel was already closed")
        try:
            sock = self._create_socket()
        except OSError as e:
            raise BindError(f"Could not bind UDP {self._host}:{self._port}: {e}") from e

        loop = asyncio.get_running_loop()
        self._transport, _ = await loop.create_datagram_endpoint(
            lambda: _ChannelProtocol(self),
            sock=sock,
        )
        logger.debug(f"UDP channel bound on port {self.local_port}")
        return self

    def send_broadcast(self, payload: bytes, port: int, address: str | None = None) -> None:
        self.send_to(payload, (address or subnet_broadcast_address(), port))

    def send_to(self, payload: bytes, addr: tuple[str, int]) -> None:
        if self._transport is None or self._closed:
            raise ChannelClosed("Cannot send on a closed channel")
        self._transport.sendto(payload, addr)

    async def receive(self) -> tuple[bytes, tuple[str, int]]:
        """Wait for the next datagram. Raises ChannelClosed once closed."""
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for any other waiter.
            self._queue.put_nowait(_CLOSED)
            raise ChannelClosed("Channel closed")
        return item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._transport is not None:
            self._transport.close()
        self._queue.put_nowait(_CLOSED)

    def _deliver(self, data: bytes, addr: tuple[str, int]) -> None:
        if not self._closed:
            self._queue.put_nowait((data, addr))

    def __aiter__(self):
        return self

    async def __anext__(self) -> tuple[bytes, tuple[str, int]]:
        try:
            return await self.receive()
        except ChannelClosed:
            raise StopAsyncIteration
