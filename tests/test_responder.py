import asyncio
import json

import pytest

from discovery.models import ServerAnnouncement
from discovery.responder import DiscoveryResponder
from errors import BindError
from fakes import Factory, FakeChannel

TOKEN = b"DISCOVER_LAN_LOBBY_SERVER"


def _responder(channels: Factory) -> DiscoveryResponder:
    announcement = ServerAnnouncement(address="192.168.1.10", port=7777, server_name="Local Game")
    return DiscoveryResponder(
        announcement,
        discovery_port=47777,
        request_token=TOKEN,
        channel_factory=channels,
    )


def test_answers_sentinel_with_host_info() -> None:
    async def scenario():
        channels = Factory(FakeChannel)
        responder = _responder(channels)
        await responder.start()
        channel = channels.last
        assert channel.port == 47777

        channel.feed(TOKEN, ("192.168.1.20", 50123))
        await asyncio.sleep(0.01)
        responder.stop()
        await asyncio.wait_for(responder.wait_closed(), timeout=1)

        assert len(channel.sent) == 1
        payload, addr = channel.sent[0]
        assert addr == ("192.168.1.20", 50123)
        assert json.loads(payload) == {
            "Address": "192.168.1.10",
            "Port": 7777,
            "ServerName": "Local Game",
        }

    asyncio.run(scenario())


@pytest.mark.parametrize(
    "payload",
    [
        b"",
        b"DISCOVER_LAN_LOBBY_SERVER\n",
        b" DISCOVER_LAN_LOBBY_SERVER",
        b"discover_lan_lobby_server",
        b"DISCOVER_LAN_LOBBY",
        b'{"Address": "1.2.3.4", "Port": 1, "ServerName": "x"}',
    ],
)
def test_ignores_anything_but_exact_sentinel(payload: bytes) -> None:
    async def scenario():
        channels = Factory(FakeChannel)
        responder = _responder(channels)
        await responder.start()

        channels.last.feed(payload)
        await asyncio.sleep(0.01)
        responder.stop()
        await asyncio.wait_for(responder.wait_closed(), timeout=1)

        assert channels.last.sent == []

    asyncio.run(scenario())


def test_answers_every_request() -> None:
    async def scenario():
        channels = Factory(FakeChannel)
        responder = _responder(channels)
        await responder.start()

        for port in (50001, 50002, 50001):
            channels.last.feed(TOKEN, ("192.168.1.30", port))
        await asyncio.sleep(0.01)

        assert [addr[1] for _, addr in channels.last.sent] == [50001, 50002, 50001]
        assert responder.running
        responder.stop()

    asyncio.run(scenario())


def test_stop_ends_loop_without_error() -> None:
    async def scenario():
        channels = Factory(FakeChannel)
        responder = _responder(channels)
        await responder.start()
        assert responder.running

        responder.stop()
        responder.stop()
        await asyncio.wait_for(responder.wait_closed(), timeout=1)

        assert not responder.running
        assert channels.last.closed

    asyncio.run(scenario())


def test_bind_failure_propagates() -> None:
    async def scenario():
        responder = _responder(Factory(FakeChannel, fail=True))
        with pytest.raises(BindError):
            await responder.start()
        assert not responder.running

    asyncio.run(scenario())
