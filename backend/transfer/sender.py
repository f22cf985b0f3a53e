"""
Transfer sender.

Streams one file over the session's channel: metadata, then chunks
strictly one at a time, then the completion marker.
"""

import asyncio
import logging
import math

from config import CHUNK_SIZE, COMPLETE_MARKER_DELAY
from session.errors import SessionValidationError, TransferError
from session.state import Session
from transfer.models import (
    FileChunk,
    FileMetadata,
    TransferDirection,
    TransferPhase,
    TransferState,
    complete_message,
    percent,
)
from transfer.source import FileSource

logger = logging.getLogger(__name__)


def total_chunks(size: int, chunk_size: int = CHUNK_SIZE) -> int:
    return math.ceil(size / chunk_size)


class TransferSender:
    """Sends files for one session."""

    def __init__(
        self,
        session: Session,
        state_callback,
        progress_callback,
        chunk_size: int = CHUNK_SIZE,
        complete_delay: float = COMPLETE_MARKER_DELAY,
    ) -> None:
        self._session = session
        self._state_callback = state_callback  # async fn(transfer)
        self._progress_callback = progress_callback  # async fn(transfer)
        self._chunk_size = chunk_size
        self._complete_delay = complete_delay

    async def send(self, source: FileSource) -> None:
        """
        Send ``source`` to the peer.

        Raises TransferError if the session is not connected and
        SessionValidationError for an empty file. Failures once the
        transfer has started are recorded on the transfer state instead.
        """
        session = self._session
        if not session.is_connected:
            raise TransferError("No active connection. Wait for the receiver to connect.")
        if source.size == 0:
            raise SessionValidationError(f"'{source.name}' is empty; nothing to send")

        transfer = TransferState(
            phase=TransferPhase.PREPARING,
            direction=TransferDirection.SENDING,
            file_name=source.name,
            file_size=source.size,
        )
        session.transfer = transfer
        await self._state_callback(transfer)

        try:
            await self._stream(source, transfer)
        except Exception as e:
            if not session.owns(transfer):
                return
            logger.error(f"Send error for {source.name}: {e}")
            transfer.phase = TransferPhase.ERROR
            transfer.error_message = str(e)
            await self._state_callback(transfer)

    async def _stream(self, source: FileSource, transfer: TransferState) -> None:
        session = self._session
        channel = session.channel

        metadata = FileMetadata(name=source.name, size=source.size, mime_type=source.mime_type)
        await channel.send(metadata.to_message())

        total = total_chunks(source.size, self._chunk_size)
        logger.info(f"Sending {source.name} ({source.size} bytes, {total} chunks)")

        for index in range(total):
            offset = index * self._chunk_size
            expected = min(self._chunk_size, source.size - offset)
            data = await source.read(offset, expected)
            if not session.owns(transfer):
                return
            if len(data) != expected:
                raise TransferError(
                    f"Short read at chunk {index}: got {len(data)} of {expected} bytes"
                )

            chunk = FileChunk(data=data, chunk_index=index, total_chunks=total)
            await channel.send(chunk.to_message())
            if not session.owns(transfer):
                return

            transfer.phase = TransferPhase.SENDING
            transfer.progress_percent = percent(index + 1, total)
            await self._progress_callback(transfer)

        # Ordering is already guaranteed; this only lets the transport flush.
        if self._complete_delay:
            await asyncio.sleep(self._complete_delay)
        if not session.owns(transfer):
            return

        # SENT before the marker goes out, so an immediate ack is accepted
        transfer.phase = TransferPhase.SENT
        await channel.send(complete_message())
        await self._state_callback(transfer)
        logger.info(f"All chunks of {source.name} sent")

    async def handle_ack(self) -> None:
        """The receiver confirmed it assembled the file."""
        transfer = self._session.transfer
        if transfer.phase != TransferPhase.SENT:
            logger.warning(f"Ignoring receipt confirmation in phase {transfer.phase.value}")
            return
        transfer.phase = TransferPhase.COMPLETED
        transfer.progress_percent = 100
        await self._state_callback(transfer)
