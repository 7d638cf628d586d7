import asyncio
import struct

from discovery.models import ServerAnnouncement
from relay.messages import HEADER_FORMAT, SubmitMessage, Welcome, encode_frame
from session.dispatch import Dispatcher
from session.machine import SessionStateMachine
from session.models import (
    ClientConnected,
    ClientDisconnected,
    RpcReceived,
    SessionRole,
    TransportFailure,
)
from session.transport import ClientTransport, HostTransport, recv_message
from fakes import Factory, FakeRequester, FakeResponder


async def _settle(pairs, condition, timeout=3.0):
    """Drain every (dispatcher, machine) pair until condition() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        for dispatcher, machine in pairs:
            dispatcher.drain(machine.handle_event)
        if condition():
            return
        assert loop.time() < deadline, "timed out waiting for session to settle"
        await asyncio.sleep(0.01)


def _collect(dispatcher):
    events = []
    dispatcher.drain(events.append)
    return events


def test_host_assigns_ids_and_drops_malformed_frames() -> None:
    async def scenario():
        dispatcher = Dispatcher()
        host = HostTransport(dispatcher, host="127.0.0.1", port=0)
        await host.start()
        try:
            reader, writer = await asyncio.open_connection("127.0.0.1", host.port)
            welcome = await asyncio.wait_for(recv_message(reader), timeout=2)
            assert welcome == Welcome(client_id=1)

            writer.write(struct.pack(HEADER_FORMAT, 0x7F, 2) + b"{}")
            writer.write(encode_frame(SubmitMessage(sender_id=1, text="hi")))
            await writer.drain()
            await asyncio.sleep(0.1)

            events = _collect(dispatcher)
            assert events[0] == ClientConnected(1, origin=host)
            assert events[1:] == [RpcReceived(1, SubmitMessage(sender_id=1, text="hi"), origin=host)]

            writer.close()
            await asyncio.sleep(0.1)
            assert _collect(dispatcher) == [ClientDisconnected(1, origin=host)]
        finally:
            await host.close()

    asyncio.run(scenario())


def test_connect_refused_posts_failure() -> None:
    async def scenario():
        probe = HostTransport(Dispatcher(), host="127.0.0.1", port=0)
        await probe.start()
        port = probe.port
        await probe.close()

        dispatcher = Dispatcher()
        client = ClientTransport(dispatcher)
        await asyncio.wait_for(client.connect("127.0.0.1", port), timeout=5)

        events = _collect(dispatcher)
        assert len(events) == 1
        assert isinstance(events[0], TransportFailure)
        assert events[0].origin is client

    asyncio.run(scenario())


def test_full_session_over_loopback() -> None:
    async def scenario():
        def machine(dispatcher, requesters=None):
            return SessionStateMachine(
                dispatcher,
                session_host="127.0.0.1",
                session_port=0,
                advertised_address="127.0.0.1",
                responder_factory=Factory(FakeResponder),
                requester_factory=requesters or Factory(FakeRequester),
            )

        host_dispatcher = Dispatcher()
        host = machine(host_dispatcher)
        finders = [Factory(FakeRequester), Factory(FakeRequester)]
        peers = [(d, machine(d, f)) for d, f in zip((Dispatcher(), Dispatcher()), finders)]
        pairs = [(host_dispatcher, host)] + peers

        await host.start_hosting()
        port = host.announcement.port
        for (_, peer), finder in zip(peers, finders):
            await peer.join()
            finder.last.find(
                ServerAnnouncement(address="127.0.0.1", port=port, server_name="Local Game")
            )

        everyone = [host] + [m for _, m in peers]
        await _settle(pairs, lambda: all(len(m.roster) == 3 for m in everyone))
        assert [m.role for _, m in peers] == [SessionRole.CONNECTED] * 2
        assert host.roster == {0: "Player 0", 1: "Player 1", 2: "Player 2"}
        assert all(m.roster == host.roster for m in everyone)

        peers[0][1].submit_message("hi")
        peers[1][1].submit_message("yo")
        host.submit_message("welcome")
        await _settle(pairs, lambda: all(len(m.messages) == 3 for m in everyone))

        transcripts = [[(msg.sender_name, msg.text) for msg in m.messages] for m in everyone]
        assert transcripts[0] == transcripts[1] == transcripts[2]
        assert set(transcripts[0]) == {
            (f"Player {peers[0][1].local_client_id}", "hi"),
            (f"Player {peers[1][1].local_client_id}", "yo"),
            ("Player 0", "welcome"),
        }

        await host.leave()
        await _settle(pairs, lambda: all(m.role == SessionRole.DISCONNECTED for m in everyone))
        for _, m in peers:
            await m.wait_idle()
            assert m.roster == {}

    asyncio.run(scenario())
