import asyncio
import socket

import pytest

from discovery.channel import BroadcastChannel, subnet_broadcast_address
from errors import BindError, ChannelClosed


class _UnbindableChannel(BroadcastChannel):
    def _create_socket(self) -> socket.socket:
        raise OSError(98, "Address already in use")


def test_open_failure_raises_bind_error() -> None:
    async def scenario():
        with pytest.raises(BindError):
            await _UnbindableChannel(port=47777).open()

    asyncio.run(scenario())


def test_close_unblocks_pending_receive() -> None:
    async def scenario():
        channel = await BroadcastChannel(host="127.0.0.1").open()
        pending = asyncio.create_task(channel.receive())
        await asyncio.sleep(0)

        channel.close()
        channel.close()  # idempotent

        with pytest.raises(ChannelClosed):
            await asyncio.wait_for(pending, timeout=1)
        with pytest.raises(ChannelClosed):
            await channel.receive()

    asyncio.run(scenario())


def test_iteration_ends_cleanly_on_close() -> None:
    async def scenario():
        channel = await BroadcastChannel(host="127.0.0.1").open()
        received = []

        async def consume():
            async for payload, _ in channel:
                received.append(payload)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        channel.close()
        await asyncio.wait_for(task, timeout=1)
        assert received == []

    asyncio.run(scenario())


def test_loopback_datagram_round_trip() -> None:
    async def scenario():
        server = await BroadcastChannel(host="127.0.0.1").open()
        client = await BroadcastChannel(host="127.0.0.1").open()
        try:
            client.send_to(b"ping", ("127.0.0.1", server.local_port))
            payload, addr = await asyncio.wait_for(server.receive(), timeout=2)
            assert payload == b"ping"
            assert addr[1] == client.local_port

            server.send_to(b"pong", addr)
            payload, _ = await asyncio.wait_for(client.receive(), timeout=2)
            assert payload == b"pong"
        finally:
            server.close()
            client.close()

    asyncio.run(scenario())


def test_send_after_close_raises() -> None:
    async def scenario():
        channel = await BroadcastChannel(host="127.0.0.1").open()
        channel.close()
        with pytest.raises(ChannelClosed):
            channel.send_to(b"late", ("127.0.0.1", 9))

    asyncio.run(scenario())


def test_broadcast_address_is_dotted_quad() -> None:
    parts = subnet_broadcast_address().split(".")

    assert len(parts) == 4
    assert parts[3] == "255"
