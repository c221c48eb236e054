"""
"Read next chunk or end-of-stream" sources for the transfer engine.

Anything with `async read(size) -> bytes` returning b"" at EOF works as an
upload source (Starlette's UploadFile already does). The adapters below
cover in-memory bytes, async iterators, and blocking file objects.
"""
from __future__ import annotations

import asyncio
from typing import AsyncIterable, AsyncIterator, BinaryIO, Optional, Protocol, runtime_checkable


@runtime_checkable
class ChunkSource(Protocol):
    async def read(self, size: int = -1) -> bytes: ...


def human_bytes(n: int) -> str:
    units = ["B","KB","MB","GB","TB"]
    x = float(n)
    for u in units:
        if x < 1024 or u == units[-1]:
            return f"{x:.1f} {u}"
        x /= 1024.0

def declared_size(source) -> Optional[int]:
    """Size the client announced for this part, if any. Never trusted for enforcement."""
    size = getattr(source, "size", None)
    if isinstance(size, int) and size >= 0:
        return size
    return None


class BytesSource:
    def __init__(self, data: bytes):
        self._data = memoryview(bytes(data))
        self._pos = 0
        self.size = len(self._data)

    async def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            size = len(self._data) - self._pos
        chunk = self._data[self._pos:self._pos + size]
        self._pos += len(chunk)
        return bytes(chunk)


class IterSource:
    """Adapts an async iterator of arbitrary-sized byte blocks to read(size)."""
    def __init__(self, chunks: AsyncIterable[bytes], size: Optional[int] = None):
        self._it: AsyncIterator[bytes] = chunks.__aiter__()
        self._buf = bytearray()
        self._eof = False
        self.size = size

    async def read(self, size: int = -1) -> bytes:
        while not self._eof and (size is None or size < 0 or len(self._buf) < size):
            try:
                block = await self._it.__anext__()
            except StopAsyncIteration:
                self._eof = True
                break
            if block:
                self._buf.extend(block)
        if size is None or size < 0:
            size = len(self._buf)
        out = bytes(self._buf[:size])
        del self._buf[:size]
        return out


class FileObjSource:
    """Blocking binary file object read on a worker thread."""
    def __init__(self, fobj: BinaryIO, size: Optional[int] = None):
        self._f = fobj
        self.size = size

    async def read(self, size: int = -1) -> bytes:
        return await asyncio.to_thread(self._f.read, size)
