"""Pydantic models for sessions and file transfer."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    INITIATOR = "initiator"
    RESPONDER = "responder"


class ConnectionStatus(str, Enum):
    """Connection lifecycle of one session."""
    DISCONNECTED = "disconnected"
    WAITING = "waiting"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class TransferPhase(str, Enum):
    """All possible phases of the single live transfer."""
    IDLE = "idle"
    PREPARING = "preparing"
    SENDING = "sending"
    SENT = "sent"
    RECEIVING = "receiving"
    COMPLETED = "completed"
    ERROR = "error"


class TransferDirection(str, Enum):
    SENDING = "sending"
    RECEIVING = "receiving"


class TransferState(BaseModel):
    """State of the transfer in flight, exposed to the frontend."""
    phase: TransferPhase = TransferPhase.IDLE
    progress_percent: int = 0
    direction: TransferDirection | None = None
    file_name: str = ""
    file_size: int = 0
    error_message: str | None = None


class SessionInfo(BaseModel):
    """Snapshot of the active session."""
    role: Role
    token: str
    status: ConnectionStatus
    transfer: TransferState
    queued_file: str | None = None


class ReceivedFile(BaseModel):
    """A fully reassembled file, ready to be saved."""
    name: str
    mime_type: str
    data: bytes


# --- Wire protocol messages ---

class MessageTag:
    FILE_METADATA = "FILE_METADATA"
    FILE_CHUNK = "FILE_CHUNK"
    FILE_COMPLETE = "FILE_COMPLETE"


# Receiver -> sender acknowledgement, sent as a bare string.
FILE_RECEIVED_SUCCESSFULLY = "FILE_RECEIVED_SUCCESSFULLY"


class FileMetadata(BaseModel):
    """Metadata sent before file data."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = "unknown"
    size: int = Field(default=0, ge=0)
    mime_type: str = Field(default="", alias="fileType")

    def to_message(self) -> dict:
        return {"type": MessageTag.FILE_METADATA, **self.model_dump(by_alias=True)}


class FileChunk(BaseModel):
    """One slice of file bytes. ``data`` is None when the peer omitted it."""
    model_config = ConfigDict(populate_by_name=True)

    data: bytes | None = None
    chunk_index: int = Field(alias="chunkIndex", ge=0)
    total_chunks: int = Field(alias="totalChunks", gt=0)

    def to_message(self) -> dict:
        return {"type": MessageTag.FILE_CHUNK, **self.model_dump(by_alias=True)}


def complete_message() -> dict:
    return {"type": MessageTag.FILE_COMPLETE}


def percent(done: int, total: int) -> int:
    """Integer percentage rounded half up, as the UI displays it."""
    if total <= 0:
        return 0
    return (done * 200 + total) // (total * 2)
