"""Roster of connected peers, keyed by client id."""

from session.models import PeerIdentity


def default_player_name(client_id: int) -> str:
    return f"Player {client_id}"


class SessionRoster:
    """
    Mapping of client id to PeerIdentity.

    Authoritative on the host, a read-only mirror on joining peers. Updates
    are idempotent, so replays and duplicates are harmless.
    """

    def __init__(self) -> None:
        self._peers: dict[int, PeerIdentity] = {}

    def __contains__(self, client_id: int) -> bool:
        return client_id in self._peers

    def __len__(self) -> int:
        return len(self._peers)

    def apply_update(self, client_id: int, name: str) -> bool:
        """Set client_id's name. Returns True if anything changed."""
        current = self._peers.get(client_id)
        if current is not None and current.display_name == name:
            return False
        self._peers[client_id] = PeerIdentity(client_id=client_id, display_name=name)
        return True

    def remove(self, client_id: int) -> bool:
        return self._peers.pop(client_id, None) is not None

    def clear(self) -> None:
        self._peers.clear()

    def name_of(self, client_id: int) -> str:
        peer = self._peers.get(client_id)
        if peer is None:
            return f"Unknown Player ({client_id})"
        return peer.display_name

    def entries(self) -> list[PeerIdentity]:
        return list(self._peers.values())

    def snapshot(self) -> dict[int, str]:
        return {cid: peer.display_name for cid, peer in self._peers.items()}
