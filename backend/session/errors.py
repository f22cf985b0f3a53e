"""Exception hierarchy surfaced by the session controller."""


class PeerDropError(Exception):
    """Base error for session and transfer failures."""


class ChannelConnectionError(PeerDropError, ConnectionError):
    """Adapter or channel failed; the session is unusable."""


class RoomNotFoundError(ChannelConnectionError):
    """The room code did not resolve to a listening initiator."""


class SessionValidationError(PeerDropError, ValueError):
    """Input rejected before any state was changed."""


class TransferError(PeerDropError):
    """The current transfer failed; the channel stays up."""
