import json

import pytest

from discovery.models import ServerAnnouncement
from errors import MalformedMessage


def test_encode_uses_wire_field_names() -> None:
    announcement = ServerAnnouncement(address="192.168.1.10", port=7777, server_name="Local Game")

    assert json.loads(announcement.encode()) == {
        "Address": "192.168.1.10",
        "Port": 7777,
        "ServerName": "Local Game",
    }


def test_decode_reads_wire_payload() -> None:
    payload = b'{"Address": "10.0.0.4", "Port": 9000, "ServerName": "Attic"}'

    announcement = ServerAnnouncement.decode(payload)

    assert announcement.address == "10.0.0.4"
    assert announcement.port == 9000
    assert announcement.server_name == "Attic"


@pytest.mark.parametrize(
    "payload",
    [
        b"DISCOVER_LAN_LOBBY_SERVER",
        b"\xff\xfe",
        b'{"Address": "10.0.0.4", "ServerName": "Attic"}',
        b'{"Address": "10.0.0.4", "Port": 0, "ServerName": "Attic"}',
        b'{"Address": "10.0.0.4", "Port": 70000, "ServerName": "Attic"}',
        b'{"Address": "not-an-ip", "Port": 7777, "ServerName": "Attic"}',
    ],
)
def test_decode_rejects_malformed_payloads(payload: bytes) -> None:
    with pytest.raises(MalformedMessage):
        ServerAnnouncement.decode(payload)
