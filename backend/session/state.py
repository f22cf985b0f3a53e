"""The one live session and everything it owns."""

from channel.base import Channel, ChannelAdapter
from transfer.models import ConnectionStatus, Role, SessionInfo, TransferState


class Session:
    """
    Role, token and connection status for the lifetime of one channel.

    A session is never resumed: teardown clears ``active`` and the
    controller builds a new one. Continuations compare against
    ``active`` (and ``transfer`` identity) before touching state.
    """

    def __init__(self, role: Role, token: str = "") -> None:
        self.role = role
        self.token = token
        self.status = ConnectionStatus.DISCONNECTED
        self.active = True
        self.adapter: ChannelAdapter | None = None
        self.channel: Channel | None = None
        self.transfer = TransferState()

    @property
    def is_connected(self) -> bool:
        return (
            self.active
            and self.status == ConnectionStatus.CONNECTED
            and self.channel is not None
            and self.channel.is_open
        )

    def owns(self, transfer: TransferState) -> bool:
        """True while ``transfer`` is still this live session's transfer."""
        return self.active and self.transfer is transfer

    def info(self, queued_file: str | None = None) -> SessionInfo:
        return SessionInfo(
            role=self.role,
            token=self.token,
            status=self.status,
            transfer=self.transfer.model_copy(),
            queued_file=queued_file,
        )
