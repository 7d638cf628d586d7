"""
Joining-peer discovery requester.

Broadcasts the sentinel request a few times and reports the first valid
ServerAnnouncement that comes back. Later answers, from retries or from
other hosts, are expected and ignored.
"""

import asyncio
import logging

from config import (
    DISCOVERY_ATTEMPTS,
    DISCOVERY_INTERVAL,
    DISCOVERY_PORT,
    DISCOVERY_REQUEST,
)
from discovery.channel import BroadcastChannel, subnet_broadcast_address
from discovery.models import ServerAnnouncement
from errors import ChannelClosed, MalformedMessage

logger = logging.getLogger(__name__)


class DiscoveryRequester:
    """Finds a host on the LAN via UDP broadcast."""

    def __init__(
        self,
        on_server_found,
        *,
        discovery_port: int = DISCOVERY_PORT,
        request_token: bytes = DISCOVERY_REQUEST,
        attempts: int = DISCOVERY_ATTEMPTS,
        interval: float = DISCOVERY_INTERVAL,
        broadcast_address: str | None = None,
        channel_factory=BroadcastChannel,
    ) -> None:
        self._on_server_found = on_server_found  # fn(ServerAnnouncement)
        self._discovery_port = discovery_port
        self._request_token = request_token
        self._attempts = attempts
        self._interval = interval
        self._broadcast_address = broadcast_address
        self._channel_factory = channel_factory
        self._channel = None
        self._send_task: asyncio.Task | None = None
        self._listen_task: asyncio.Task | None = None
        self._found = False

    @property
    def found(self) -> bool:
        return self._found

    @property
    def running(self) -> bool:
        return self._listen_task is not None and not self._listen_task.done()

    async def start(self) -> None:
        """Open an ephemeral port and begin broadcasting. Raises BindError."""
        if self.running:
            return
        channel = self._channel_factory(port=0)
        await channel.open()
        self._channel = channel
        self._found = False

        address = self._broadcast_address or subnet_broadcast_address()
        self._listen_task = asyncio.create_task(self._listen(channel))
        self._send_task = asyncio.create_task(self._send_requests(channel, address))
        logger.info(f"Discovery requester started, broadcasting to {address}:{self._discovery_port}")

    def stop(self) -> None:
        """Stop broadcasting and listening."""
        if self._send_task is not None:
            self._send_task.cancel()
        if self._channel is not None:
            self._channel.close()
            self._channel = None

    async def wait_closed(self) -> None:
        for task in (self._send_task, self._listen_task):
            if task is None:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _send_requests(self, channel, address: str) -> None:
        for attempt in range(1, self._attempts + 1):
            if self._found or channel.closed:
                return
            try:
                channel.send_broadcast(self._request_token, self._discovery_port, address)
                logger.debug(f"Sent discovery request {attempt}/{self._attempts}")
            except ChannelClosed:
                return
            except OSError as e:
                logger.warning(f"Error sending discovery request: {e}")
            await asyncio.sleep(self._interval)

        if not self._found:
            logger.info(f"No host answered after {self._attempts} discovery requests")

    async def _listen(self, channel) -> None:
        async for payload, addr in channel:
            try:
                announcement = ServerAnnouncement.decode(payload)
            except MalformedMessage as e:
                logger.debug(f"Ignoring invalid discovery response from {addr}: {e}")
                continue

            if self._found:
                logger.debug(f"Ignoring extra discovery response from {addr}")
                continue

            self._found = True
            if self._send_task is not None:
                self._send_task.cancel()
            logger.info(
                f"Received server info: {announcement.address}:{announcement.port} "
                f"('{announcement.server_name}')"
            )
            self._on_server_found(announcement)
