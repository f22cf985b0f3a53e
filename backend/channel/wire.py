"""
Frame codec for stream transports.

Every message travels as a type-length-payload frame:

    +------------+--------------+-----------------+
    | kind (1B)  | length (4B)  | payload         |
    +------------+--------------+-----------------+

Chunk payloads start with a fixed ``!II`` header (index, total) followed
by the raw bytes, so binary data never goes through JSON.
"""

import asyncio
import json
import struct

from transfer.models import MessageTag

HEADER_FORMAT = "!BI"  # 1-byte kind + 4-byte length (big-endian)
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)
CHUNK_HEADER_FORMAT = "!II"
CHUNK_HEADER_SIZE = struct.calcsize(CHUNK_HEADER_FORMAT)
MAX_FRAME_SIZE = 16 * 1024 * 1024


class FrameKind:
    METADATA = 0x01
    CHUNK = 0x02
    COMPLETE = 0x03
    TEXT = 0x04


class WireError(Exception):
    """A frame could not be encoded or decoded."""


def encode_message(message) -> bytes:
    """Encode a tagged dict or a plain string into one frame."""
    if isinstance(message, str):
        return _frame(FrameKind.TEXT, message.encode("utf-8"))
    if not isinstance(message, dict):
        raise WireError(f"Cannot encode {type(message).__name__}")

    tag = message.get("type")
    if tag == MessageTag.FILE_METADATA:
        body = {k: v for k, v in message.items() if k != "type"}
        return _frame(FrameKind.METADATA, json.dumps(body).encode("utf-8"))
    if tag == MessageTag.FILE_CHUNK:
        data = message.get("data") or b""
        header = struct.pack(
            CHUNK_HEADER_FORMAT,
            message.get("chunkIndex", 0),
            message.get("totalChunks", 0),
        )
        # A chunk without data is still framed; the receiver decides what to do.
        return _frame(FrameKind.CHUNK, header + bytes(data))
    if tag == MessageTag.FILE_COMPLETE:
        return _frame(FrameKind.COMPLETE)
    raise WireError(f"Unknown message type: {tag!r}")


def decode_frame(kind: int, payload: bytes):
    """Turn one frame back into the message the sender passed in."""
    if kind == FrameKind.TEXT:
        return payload.decode("utf-8")
    if kind == FrameKind.METADATA:
        try:
            body = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise WireError(f"Malformed metadata frame: {e}") from e
        return {"type": MessageTag.FILE_METADATA, **body}
    if kind == FrameKind.CHUNK:
        if len(payload) < CHUNK_HEADER_SIZE:
            raise WireError("Truncated chunk frame")
        index, total = struct.unpack_from(CHUNK_HEADER_FORMAT, payload)
        message = {
            "type": MessageTag.FILE_CHUNK,
            "chunkIndex": index,
            "totalChunks": total,
        }
        data = payload[CHUNK_HEADER_SIZE:]
        if data:
            message["data"] = data
        return message
    if kind == FrameKind.COMPLETE:
        return {"type": MessageTag.FILE_COMPLETE}
    raise WireError(f"Unknown frame kind: {kind:#x}")


def _frame(kind: int, payload: bytes = b"") -> bytes:
    return struct.pack(HEADER_FORMAT, kind, len(payload)) + payload


async def send_message(writer: asyncio.StreamWriter, message) -> None:
    """Write one message and wait for the transport buffer to drain."""
    writer.write(encode_message(message))
    await writer.drain()


async def recv_message(reader: asyncio.StreamReader):
    """Read one frame and decode it. Raises IncompleteReadError on EOF."""
    header = await reader.readexactly(HEADER_SIZE)
    kind, length = struct.unpack(HEADER_FORMAT, header)
    if length > MAX_FRAME_SIZE:
        raise WireError(f"Frame too large: {length}")
    payload = b""
    if length > 0:
        payload = await reader.readexactly(length)
    return decode_frame(kind, payload)
