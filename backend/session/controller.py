"""
Session Controller: owns the one live session.

Drives the connection state machine from channel events, routes inbound
messages to the sender or receiver, and turns every outcome into events
for the WebSocket layer.

Initiator: disconnected -> waiting -> connecting -> connected -> disconnected|error
Responder: disconnected -> connecting -> connected -> disconnected|error
"""

import asyncio
import logging
import os
import uuid

from channel.base import (
    CLOSE,
    DATA,
    ERROR,
    OPEN,
    AdapterError,
    Channel,
    PeerUnavailableError,
)
from config import (
    AUTO_SEND_DELAY,
    CHUNK_SIZE,
    COMPLETE_MARKER_DELAY,
    DEFAULT_SAVE_DIR,
    FINALIZE_WATCHDOG_DELAY,
    TOKEN_LENGTH,
)
from session.errors import (
    ChannelConnectionError,
    RoomNotFoundError,
    SessionValidationError,
    TransferError,
)
from session.state import Session
from transfer.models import (
    FILE_RECEIVED_SUCCESSFULLY,
    ConnectionStatus,
    ReceivedFile,
    Role,
    SessionInfo,
    TransferDirection,
    TransferPhase,
    TransferState,
)
from transfer.receiver import TransferReceiver
from transfer.sender import TransferSender
from transfer.source import FileSource
from transfer.storage import save_received_file

logger = logging.getLogger(__name__)

_IN_FLIGHT = (TransferPhase.PREPARING, TransferPhase.SENDING, TransferPhase.RECEIVING)


def generate_token() -> str:
    """Short room code cut from a random 128-bit identifier."""
    return str(uuid.uuid4())[:TOKEN_LENGTH]


class SessionController:
    """Manages the active session and its single transfer."""

    def __init__(
        self,
        adapter_factory,
        role: Role = Role.INITIATOR,
        save_dir: str = DEFAULT_SAVE_DIR,
        chunk_size: int = CHUNK_SIZE,
        auto_send_delay: float = AUTO_SEND_DELAY,
        complete_delay: float = COMPLETE_MARKER_DELAY,
        watchdog_delay: float = FINALIZE_WATCHDOG_DELAY,
    ) -> None:
        self._adapter_factory = adapter_factory  # () -> ChannelAdapter
        self._save_dir = save_dir
        self._chunk_size = chunk_size
        self._auto_send_delay = auto_send_delay
        self._complete_delay = complete_delay
        self._watchdog_delay = watchdog_delay
        self._event_callbacks: list = []  # async fn(event_type, data)
        self._queued_file: FileSource | None = None
        self._send_task: asyncio.Task | None = None
        self._session = Session(role)
        self._bind(self._session)

    # --- Properties ---

    @property
    def session(self) -> Session:
        return self._session

    @property
    def sender(self) -> TransferSender:
        return self._sender

    @property
    def receiver(self) -> TransferReceiver:
        return self._receiver

    @property
    def save_dir(self) -> str:
        return self._save_dir

    @save_dir.setter
    def save_dir(self, path: str) -> None:
        os.makedirs(path, exist_ok=True)
        self._save_dir = path

    def info(self) -> SessionInfo:
        queued = self._queued_file.name if self._queued_file else None
        return self._session.info(queued_file=queued)

    # --- Events ---

    def on_event(self, callback) -> None:
        """Register callback: async fn(event_type: str, data: dict)."""
        self._event_callbacks.append(callback)

    async def _emit(self, event_type: str, data: dict) -> None:
        """Emit an event to all registered callbacks."""
        for cb in self._event_callbacks:
            try:
                await cb(event_type, data)
            except Exception as e:
                logger.error(f"Event callback error: {e}")

    async def _notify(self, kind: str, message: str) -> None:
        await self._emit("notification", {"type": kind, "message": message})

    # --- Session lifecycle ---

    async def create_session(self) -> str:
        """
        Open a room as the initiator and return its code.

        Raises ChannelConnectionError if the adapter cannot start; the
        session is then in ``error``.
        """
        if self._session.role != Role.INITIATOR:
            raise SessionValidationError("Only the sending side can create a room")

        await self._replace_session(Session(Role.INITIATOR, token=generate_token()))
        session = self._session
        adapter = self._adapter_factory()
        session.adapter = adapter
        adapter.on_connection(lambda channel: self._on_peer_connection(session, channel))

        try:
            await adapter.start(session.token)
        except AdapterError as e:
            await self._connection_failed(session, f"Connection error: {e}")
            raise ChannelConnectionError(str(e)) from e

        if session.active:
            logger.info(f"Room {session.token} created")
            await self._set_status(session, ConnectionStatus.WAITING)
            await self._notify("success", "Room created! Share the room code with the receiver.")
        return session.token

    async def join_session(self, token: str) -> None:
        """
        Dial the room ``token`` as the responder.

        Raises SessionValidationError for a blank code, RoomNotFoundError
        when nobody listens under it, ChannelConnectionError otherwise.
        """
        token = (token or "").strip()
        if not token:
            raise SessionValidationError("Please enter a valid room code")
        if self._session.role != Role.RESPONDER:
            raise SessionValidationError("Switch to receive mode to join a room")

        await self._replace_session(Session(Role.RESPONDER, token=token))
        session = self._session
        adapter = self._adapter_factory()
        session.adapter = adapter

        try:
            await adapter.start()
            await self._set_status(session, ConnectionStatus.CONNECTING)
            channel = await adapter.connect(token)
        except PeerUnavailableError as e:
            await self._connection_failed(session, "Room not found. Please check the room code.")
            raise RoomNotFoundError(f"Room {token} not found") from e
        except AdapterError as e:
            await self._connection_failed(session, f"Connection error: {e}")
            raise ChannelConnectionError(str(e)) from e

        if not session.active:
            await channel.close()
            return
        self._attach_channel(session, channel)
        await channel.start()

    async def switch_role(self) -> Role:
        """Tear everything down and flip role. Safe from any state."""
        new_role = Role.RESPONDER if self._session.role == Role.INITIATOR else Role.INITIATOR
        self._queued_file = None
        await self._replace_session(Session(new_role))
        logger.info(f"Switched role to {new_role.value}")
        return new_role

    async def shutdown(self) -> None:
        """Release the channel and adapter for process exit."""
        await self._teardown(self._session)
        logger.info("Session controller stopped")

    async def _replace_session(self, session: Session) -> None:
        await self._teardown(self._session)
        self._session = session
        self._bind(session)
        await self._set_status(session, session.status)

    def _bind(self, session: Session) -> None:
        self._sender = TransferSender(
            session,
            state_callback=self._on_state_change,
            progress_callback=self._on_progress,
            chunk_size=self._chunk_size,
            complete_delay=self._complete_delay,
        )
        self._receiver = TransferReceiver(
            session,
            state_callback=self._on_state_change,
            progress_callback=self._on_progress,
            deliver_callback=self._deliver,
            watchdog_delay=self._watchdog_delay,
        )

    async def _teardown(self, session: Session) -> None:
        """Close then destroy; every later continuation becomes a no-op."""
        session.active = False
        self._cancel_send()
        self._receiver.cancel()
        await self._release(session)

    async def _release(self, session: Session) -> None:
        """Detach the channel and adapter from ``session`` and shut them down."""
        channel, adapter = session.channel, session.adapter
        session.channel = None
        session.adapter = None
        try:
            if channel is not None:
                await channel.close()
            if adapter is not None:
                await adapter.destroy()
        except (AdapterError, OSError) as e:
            logger.warning(f"Error while closing session {session.token or '-'}: {e}")

    async def _connection_failed(self, session: Session, message: str) -> None:
        if not session.active:
            return
        logger.error(f"Session {session.token}: {message}")
        await self._set_status(session, ConnectionStatus.ERROR)
        session.active = False
        await self._release(session)
        await self._notify("error", message)

    async def _set_status(self, session: Session, status: ConnectionStatus) -> None:
        session.status = status
        await self._emit("session_state", self.info().model_dump(mode="json"))

    # --- Channel events ---

    def _is_live(self, session: Session) -> bool:
        return session is self._session and session.active

    async def _on_peer_connection(self, session: Session, channel: Channel) -> None:
        """A responder attached to our room."""
        if not self._is_live(session) or session.channel is not None:
            logger.warning("Ignoring extra or stale peer connection")
            await channel.close()
            return
        self._attach_channel(session, channel)
        await self._set_status(session, ConnectionStatus.CONNECTING)

    def _attach_channel(self, session: Session, channel: Channel) -> None:
        session.channel = channel

        async def handler(event: str, payload) -> None:
            await self._on_channel_event(session, event, payload)

        channel.on_event(handler)

    async def _on_channel_event(self, session: Session, event: str, payload) -> None:
        if not self._is_live(session):
            return

        if event == OPEN:
            await self._set_status(session, ConnectionStatus.CONNECTED)
            if session.role == Role.INITIATOR:
                await self._notify("success", "Receiver connected! You can now send files.")
                if self._queued_file is not None:
                    self._start_send(session, self._queued_file, delay=self._auto_send_delay)
            else:
                await self._notify("success", "Connected to sender! Waiting for files...")
        elif event == DATA:
            await self._dispatch(session, payload)
        elif event == ERROR:
            logger.error(f"Connection error: {payload}")
            await self._end_session(session, ConnectionStatus.ERROR)
            await self._notify("error", f"Connection error: {payload or 'Unknown error'}")
        elif event == CLOSE:
            logger.info(f"Channel for session {session.token} closed")
            await self._end_session(session, ConnectionStatus.DISCONNECTED)
            await self._notify("error", "Connection closed")

    async def _dispatch(self, session: Session, message) -> None:
        """Route one inbound message by role and tag."""
        if session.role == Role.RESPONDER:
            await self._receiver.on_message(message)
        elif message == FILE_RECEIVED_SUCCESSFULLY:
            await self._sender.handle_ack()
        else:
            logger.warning(f"Sender ignoring unexpected message: {message!r:.80}")

    async def _end_session(self, session: Session, status: ConnectionStatus) -> None:
        """Terminal transition: abort the transfer, then retire the session."""
        self._cancel_send()
        self._receiver.cancel()
        transfer = session.transfer
        if transfer.phase in _IN_FLIGHT:
            transfer.phase = TransferPhase.ERROR
            transfer.error_message = "Connection lost during transfer"
            await self._on_state_change(transfer)
        await self._set_status(session, status)
        session.active = False
        await self._release(session)

    # --- Sending ---

    async def select_file(self, source: FileSource) -> None:
        """
        Queue a file for sending; send at once if connected.

        A new selection supersedes a transfer still in flight.
        """
        session = self._session
        if session.role != Role.INITIATOR:
            raise SessionValidationError("Only the sending side can select a file")
        if source.size == 0:
            raise SessionValidationError(f"'{source.name}' is empty; nothing to send")

        self._cancel_send()
        self._queued_file = source

        if session.is_connected:
            self._start_send(session, source)
        elif session.status != ConnectionStatus.CONNECTED:
            await self._notify("info", "File selected. It will be sent when the receiver connects.")
        else:
            await self._notify("info", "File selected. Waiting for connection to be ready...")

    async def reset_file_selection(self) -> None:
        """Forget the selected file and clear the transfer state."""
        self._cancel_send()
        self._queued_file = None
        self._session.transfer = TransferState()
        await self._on_state_change(self._session.transfer)

    def _start_send(self, session: Session, source: FileSource, delay: float = 0) -> None:
        self._cancel_send()
        self._send_task = asyncio.create_task(self._send_file_task(session, source, delay))

    async def _send_file_task(self, session: Session, source: FileSource, delay: float) -> None:
        """Task wrapper for sending a single file."""
        try:
            if delay:
                await asyncio.sleep(delay)
            if not self._is_live(session):
                return
            await self._sender.send(source)
        except (TransferError, SessionValidationError) as e:
            logger.error(f"Cannot send {source.name}: {e}")
            await self._notify("error", str(e))
        finally:
            if self._send_task is asyncio.current_task():
                self._send_task = None

    def _cancel_send(self) -> None:
        task = self._send_task
        self._send_task = None
        if task and task is not asyncio.current_task():
            task.cancel()

    async def wait_for_send(self) -> None:
        """Wait until the current send task (if any) has finished."""
        task = self._send_task
        if task:
            await asyncio.gather(task, return_exceptions=True)

    # --- Receiving ---

    async def _deliver(self, received: ReceivedFile) -> None:
        path = await save_received_file(self._save_dir, received)
        await self._emit("file_received", {
            "name": received.name,
            "mime_type": received.mime_type,
            "size": len(received.data),
            "path": path,
        })

    # --- Transfer callbacks ---

    async def _on_progress(self, transfer: TransferState) -> None:
        """Called by sender/receiver on progress updates."""
        await self._emit("transfer_progress", transfer.model_dump(mode="json"))

    async def _on_state_change(self, transfer: TransferState) -> None:
        """Called by sender/receiver on phase changes."""
        await self._emit("transfer_state", transfer.model_dump(mode="json"))

        # Generate user-facing notifications
        notification = None
        if transfer.phase == TransferPhase.COMPLETED:
            if transfer.direction == TransferDirection.SENDING:
                message = "File successfully received by the receiver!"
            else:
                message = "File downloaded successfully!"
            notification = {"type": "success", "message": message}
        elif transfer.phase == TransferPhase.RECEIVING:
            notification = {"type": "info", "message": f"Receiving file: {transfer.file_name}"}
        elif transfer.phase == TransferPhase.ERROR:
            notification = {
                "type": "error",
                "message": f"Transfer of '{transfer.file_name}' failed: {transfer.error_message}",
            }

        if notification:
            await self._emit("notification", notification)
