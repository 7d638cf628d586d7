"""Exceptions raised by the discovery, session and relay layers."""


class LobbyError(Exception):
    pass


class BindError(LobbyError):
    """Raised when a UDP channel cannot be opened or bound."""


class ChannelClosed(LobbyError):
    """Raised by a pending or later receive once the channel is closed."""


class HostStartFailed(LobbyError):
    """Raised when the listen transport or the discovery responder fails to start."""


class DiscoveryStartFailed(LobbyError):
    """Raised when the discovery requester cannot open its channel."""


class MalformedMessage(LobbyError):
    """Raised when an announcement or relay frame cannot be decoded."""


class NotConnected(LobbyError):
    """Raised when a chat message is submitted outside an active session."""
