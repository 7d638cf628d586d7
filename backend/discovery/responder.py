"""
Host-side discovery responder.

Listens on the well-known discovery port and answers every exact
sentinel request with the host's connection info. It never stops on its
own; the session decides when the host is no longer discoverable.
"""

import asyncio
import logging

from config import DISCOVERY_PORT, DISCOVERY_REQUEST
from discovery.channel import BroadcastChannel
from discovery.models import ServerAnnouncement
from errors import ChannelClosed

logger = logging.getLogger(__name__)


class DiscoveryResponder:
    """Answers discovery requests with a ServerAnnouncement."""

    def __init__(
        self,
        announcement: ServerAnnouncement,
        *,
        discovery_port: int = DISCOVERY_PORT,
        request_token: bytes = DISCOVERY_REQUEST,
        channel_factory=BroadcastChannel,
    ) -> None:
        self._announcement = announcement
        self._discovery_port = discovery_port
        self._request_token = request_token
        self._channel_factory = channel_factory
        self._channel = None
        self._task: asyncio.Task | None = None

    @property
    def announcement(self) -> ServerAnnouncement:
        return self._announcement

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Bind the discovery port and start answering. Raises BindError."""
        if self.running:
            return
        channel = self._channel_factory(port=self._discovery_port)
        await channel.open()
        self._channel = channel
        self._task = asyncio.create_task(self._serve(channel))
        logger.info(
            f"Discovery responder listening on UDP port {self._discovery_port} "
            f"for '{self._announcement.server_name}'"
        )

    def stop(self) -> None:
        """Close the channel; the serve loop ends at its next receive."""
        if self._channel is not None:
            self._channel.close()
            self._channel = None

    async def wait_closed(self) -> None:
        if self._task is not None:
            await self._task

    async def _serve(self, channel) -> None:
        response = self._announcement.encode()
        async for payload, addr in channel:
            if payload != self._request_token:
                logger.debug(f"Ignoring non-discovery datagram from {addr}")
                continue

            logger.info(
                f"Sending server info to {addr[0]}: "
                f"{self._announcement.address}:{self._announcement.port}"
            )
            try:
                channel.send_to(response, addr)
            except ChannelClosed:
                break
            except OSError as e:
                logger.warning(f"Discovery reply to {addr} failed: {e}")

        logger.info("Discovery responder stopped")
