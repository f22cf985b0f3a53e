"""File-like byte sources the sender reads chunks from."""

import asyncio
import mimetypes
import os

DEFAULT_MIME_TYPE = "application/octet-stream"


class FileSource:
    """A named, sized byte source read one slice at a time."""

    name: str
    size: int
    mime_type: str

    async def read(self, offset: int, length: int) -> bytes:
        raise NotImplementedError


class LocalFileSource(FileSource):
    """A file on disk. Reads run in a worker thread."""

    def __init__(self, path: str, mime_type: str | None = None) -> None:
        self.path = path
        self.name = os.path.basename(path)
        self.size = os.path.getsize(path)
        self.mime_type = mime_type or mimetypes.guess_type(path)[0] or DEFAULT_MIME_TYPE

    def _read_slice(self, offset: int, length: int) -> bytes:
        with open(self.path, "rb") as f:
            f.seek(offset)
            return f.read(length)

    async def read(self, offset: int, length: int) -> bytes:
        return await asyncio.to_thread(self._read_slice, offset, length)


class BytesFileSource(FileSource):
    """An in-memory file."""

    def __init__(self, name: str, data: bytes, mime_type: str = DEFAULT_MIME_TYPE) -> None:
        self.name = name
        self.size = len(data)
        self.mime_type = mime_type
        self._data = data

    async def read(self, offset: int, length: int) -> bytes:
        return self._data[offset:offset + length]
