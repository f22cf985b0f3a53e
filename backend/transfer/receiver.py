"""
Transfer receiver.

Accumulates chunks into an index-addressed buffer, reassembles them in
order and hands the file to the delivery callback. Completion is decided
by exact chunk count, never by the rounded percentage.
"""

import asyncio
import logging

from pydantic import ValidationError

from channel.base import AdapterError
from config import CHUNK_SIZE, FINALIZE_WATCHDOG_DELAY
from session.errors import TransferError
from session.state import Session
from transfer.models import (
    FILE_RECEIVED_SUCCESSFULLY,
    FileChunk,
    FileMetadata,
    MessageTag,
    ReceivedFile,
    TransferDirection,
    TransferPhase,
    TransferState,
    percent,
)

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


class ChunkBuffer:
    """Fixed-capacity store for one transfer's chunks."""

    def __init__(self, total: int) -> None:
        self.total = total
        self._chunks: list[bytes | None] = [None] * total
        self.received = 0

    def put(self, index: int, data: bytes) -> bool:
        """Store a chunk. Returns False if ``index`` was already filled."""
        if not 0 <= index < self.total:
            raise TransferError(f"Chunk index {index} outside 0..{self.total - 1}")
        if self._chunks[index] is not None:
            return False
        self._chunks[index] = data
        self.received += 1
        return True

    @property
    def is_complete(self) -> bool:
        return self.received == self.total

    def missing(self) -> list[int]:
        return [i for i, chunk in enumerate(self._chunks) if chunk is None]

    def assemble(self) -> bytes:
        return b"".join(chunk for chunk in self._chunks if chunk is not None)


class TransferReceiver:
    """Receives files for one session."""

    def __init__(
        self,
        session: Session,
        state_callback,
        progress_callback,
        deliver_callback,
        watchdog_delay: float = FINALIZE_WATCHDOG_DELAY,
    ) -> None:
        self._session = session
        self._state_callback = state_callback  # async fn(transfer)
        self._progress_callback = progress_callback  # async fn(transfer)
        self._deliver_callback = deliver_callback  # async fn(ReceivedFile)
        self._watchdog_delay = watchdog_delay
        self._metadata: FileMetadata | None = None
        self._buffer: ChunkBuffer | None = None
        self._watchdog_task: asyncio.Task | None = None
        self._finalizing = False

    @property
    def buffer(self) -> ChunkBuffer | None:
        return self._buffer

    async def on_message(self, message) -> None:
        """Single dispatch entry point for tagged messages."""
        if not isinstance(message, dict):
            logger.warning(f"Received invalid data format: {type(message).__name__}")
            return

        tag = message.get("type")
        if tag == MessageTag.FILE_METADATA:
            await self._on_metadata(message)
        elif tag == MessageTag.FILE_CHUNK:
            await self._on_chunk(message)
        elif tag == MessageTag.FILE_COMPLETE:
            self._cancel_watchdog()
            await self._finalize()
        else:
            logger.warning(f"Unexpected message type: {tag!r}")

    async def _on_metadata(self, message: dict) -> None:
        # New metadata always supersedes whatever was accumulating.
        self._cancel_watchdog()
        self._buffer = None
        try:
            metadata = FileMetadata.model_validate(message)
        except ValidationError as e:
            self._metadata = None
            transfer = TransferState(direction=TransferDirection.RECEIVING)
            self._session.transfer = transfer
            await self._fail(transfer, TransferError(f"Malformed file metadata: {e}"))
            return

        self._metadata = metadata
        transfer = TransferState(
            phase=TransferPhase.RECEIVING,
            direction=TransferDirection.RECEIVING,
            file_name=metadata.name,
            file_size=metadata.size,
        )
        self._session.transfer = transfer
        logger.info(f"Receiving file: {metadata.name} ({metadata.size} bytes)")
        await self._state_callback(transfer)

    async def _on_chunk(self, message: dict) -> None:
        if not message.get("data"):
            logger.warning("Received chunk without data")
            return

        transfer = self._session.transfer
        if transfer.phase != TransferPhase.RECEIVING:
            logger.debug(f"Dropping chunk in phase {transfer.phase.value}")
            return

        try:
            chunk = FileChunk.model_validate(message)
            if len(chunk.data) > CHUNK_SIZE:
                raise TransferError(
                    f"Chunk {chunk.chunk_index} is {len(chunk.data)} bytes, over the {CHUNK_SIZE}-byte limit"
                )
            if self._buffer is None:
                self._buffer = ChunkBuffer(chunk.total_chunks)
            elif chunk.total_chunks != self._buffer.total:
                raise TransferError(
                    f"Chunk count changed mid-transfer: {self._buffer.total} -> {chunk.total_chunks}"
                )
            stored = self._buffer.put(chunk.chunk_index, chunk.data)
        except ValidationError as e:
            await self._fail(transfer, TransferError(f"Malformed chunk: {e}"))
            return
        except TransferError as e:
            await self._fail(transfer, e)
            return

        if not stored:
            logger.warning(f"Duplicate chunk {chunk.chunk_index} ignored")
            return

        transfer.progress_percent = percent(self._buffer.received, self._buffer.total)
        await self._progress_callback(transfer)

        if self._buffer.is_complete:
            self._arm_watchdog(transfer)

    def _arm_watchdog(self, transfer: TransferState) -> None:
        self._cancel_watchdog()
        self._watchdog_task = asyncio.create_task(self._watchdog(transfer))

    async def _watchdog(self, transfer: TransferState) -> None:
        """Finalize if FILE_COMPLETE never shows up."""
        await asyncio.sleep(self._watchdog_delay)
        self._watchdog_task = None
        if not self._session.owns(transfer) or transfer.phase != TransferPhase.RECEIVING:
            return
        logger.warning(f"No completion marker for {transfer.file_name}; finalizing anyway")
        await self._finalize()

    def _cancel_watchdog(self) -> None:
        task = self._watchdog_task
        self._watchdog_task = None
        if task and task is not asyncio.current_task():
            task.cancel()

    def cancel(self) -> None:
        """Drop pending work; called when the session is torn down."""
        self._cancel_watchdog()
        self._buffer = None
        self._metadata = None

    async def _finalize(self) -> None:
        transfer = self._session.transfer
        if transfer.phase != TransferPhase.RECEIVING or self._finalizing:
            logger.debug(f"Ignoring finalize in phase {transfer.phase.value}")
            return
        try:
            await self.assemble_and_finalize()
        except TransferError:
            # Already recorded on the transfer state and notified.
            pass

    async def assemble_and_finalize(self) -> ReceivedFile:
        """
        Concatenate the chunks in index order and deliver the file.

        Raises TransferError (after marking the transfer failed) when no
        data arrived, chunks are missing, or the length is wrong.
        """
        transfer = self._session.transfer
        try:
            received = self._assemble()
        except TransferError as e:
            await self._fail(transfer, e)
            raise

        self._finalizing = True
        try:
            await self._deliver_callback(received)
        except OSError as e:
            error = TransferError(f"Could not save {received.name}: {e}")
            await self._fail(transfer, error)
            raise error from e
        finally:
            self._finalizing = False

        if not self._session.owns(transfer):
            return received

        self._buffer = None
        transfer.phase = TransferPhase.COMPLETED
        transfer.progress_percent = 100
        await self._state_callback(transfer)

        if self._session.is_connected:
            try:
                await self._session.channel.send(FILE_RECEIVED_SUCCESSFULLY)
            except AdapterError as e:
                logger.warning(f"Could not confirm receipt to sender: {e}")
        return received

    def _assemble(self) -> ReceivedFile:
        buffer, metadata = self._buffer, self._metadata
        if buffer is None or metadata is None or buffer.received == 0:
            raise TransferError("No data received")
        missing = buffer.missing()
        if missing:
            raise TransferError(f"Missing {len(missing)} of {buffer.total} chunks (first: {missing[0]})")

        data = buffer.assemble()
        if len(data) == 0:
            raise TransferError("Empty file")
        if len(data) != metadata.size:
            raise TransferError(f"Size mismatch: expected {metadata.size} bytes, got {len(data)}")

        return ReceivedFile(
            name=metadata.name,
            mime_type=metadata.mime_type or DEFAULT_MIME_TYPE,
            data=data,
        )

    async def _fail(self, transfer: TransferState, error: TransferError) -> None:
        if not self._session.owns(transfer):
            return
        logger.error(f"Receive error: {error}")
        self._cancel_watchdog()
        self._buffer = None
        transfer.phase = TransferPhase.ERROR
        transfer.error_message = str(error)
        await self._state_callback(transfer)
