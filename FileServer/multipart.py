# FileServer/multipart.py
"""
Incremental multipart/form-data reading for uploads.

The request body is fed to python-multipart's push parser one network chunk
at a time, and each `file` part is handed to the storage engine as a chunk
source while it is still arriving. Nothing is spooled to temporary files:
a part the engine refuses (bad extension, over the size limit) is drained
and its bytes are dropped as they come in.

Plain form fields must precede the first file part; that is the order
browsers, requests and httpx send them in.
"""
from __future__ import annotations

from collections import deque
from typing import AsyncIterator, Deque, Dict, Optional, Tuple

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header
from starlette.requests import ClientDisconnect, Request

from core.storage.errors import BadRequest, TransferAborted
from core.storage.transfer import ABORT_MESSAGE

from .logutil import get_logger

logger = get_logger("filedash.multipart", file_basename="files_api")

MAX_FIELD_SIZE = 64 * 1024
MAX_FIELDS = 16


class StreamedPart:
    """One form part; readable with `await read(n)` while the body streams in."""

    def __init__(self, reader: "MultipartReader", name: str, filename: Optional[str], content_type: str):
        self._reader = reader
        self.name = name
        self.filename = filename
        self.content_type = content_type
        # clients do not announce per-part sizes; the engine counts bytes itself
        self.size = None
        self.complete = False
        self._buf = bytearray()
        self._discard = False

    @property
    def is_file(self) -> bool:
        return self.filename is not None

    @property
    def buffered(self) -> int:
        return len(self._buf)

    def _feed(self, data: bytes) -> None:
        if self._discard:
            return
        if not self.is_file and len(self._buf) + len(data) > MAX_FIELD_SIZE:
            raise BadRequest(f"Form field {self.name!r} exceeds {MAX_FIELD_SIZE} bytes")
        self._buf.extend(data)

    async def read(self, size: int = -1) -> bytes:
        """
        Up to `size` bytes, returning as soon as any are available, so at
        most one network chunk is held per part. b"" once the part ends.
        """
        if size is None or size < 0:
            while not self.complete:
                await self._reader._pull()
            size = len(self._buf)
        else:
            while not self._buf and not self.complete:
                await self._reader._pull()
        out = bytes(self._buf[:size])
        del self._buf[:size]
        return out

    async def drain(self) -> None:
        """Skip whatever is left of this part without keeping it."""
        self._discard = True
        self._buf.clear()
        while not self.complete:
            await self._reader._pull()


class MultipartReader:
    def __init__(self, request: Request, *, max_files: int):
        ctype, params = parse_options_header(request.headers.get("content-type", ""))
        if ctype != b"multipart/form-data" or not params.get(b"boundary"):
            raise BadRequest("Expected a multipart/form-data body with a boundary")
        self.max_files = max_files
        self.file_count = 0
        self._stream = request.stream().__aiter__()
        self._parser = MultipartParser(params[b"boundary"], callbacks={
            "on_part_begin": self._on_part_begin,
            "on_part_data": self._on_part_data,
            "on_part_end": self._on_part_end,
            "on_header_field": self._on_header_field,
            "on_header_value": self._on_header_value,
            "on_header_end": self._on_header_end,
            "on_headers_finished": self._on_headers_finished,
            "on_end": self._on_end,
        })
        self._ready: Deque[StreamedPart] = deque()
        self._current: Optional[StreamedPart] = None
        self._headers: Dict[bytes, bytes] = {}
        self._field = b""
        self._value = b""
        self._finished = False
        self._eof = False
        self._broken = False

    # ---------- parser callbacks ----------
    def _on_part_begin(self) -> None:
        self._headers = {}
        self._field = b""
        self._value = b""

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._field += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._value += data[start:end]

    def _on_header_end(self) -> None:
        self._headers[self._field.lower()] = self._value
        self._field = b""
        self._value = b""

    def _on_headers_finished(self) -> None:
        disposition = self._headers.get(b"content-disposition")
        if disposition is None:
            raise BadRequest("Form part is missing its Content-Disposition header")
        _kind, options = parse_options_header(disposition)
        name = options.get(b"name", b"").decode("utf-8", errors="replace")
        filename = options.get(b"filename")
        part = StreamedPart(
            self,
            name,
            filename.decode("utf-8", errors="replace") if filename is not None else None,
            self._headers.get(b"content-type", b"application/octet-stream").decode("latin-1"),
        )
        self._current = part
        self._ready.append(part)

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        if self._current is not None:
            self._current._feed(data[start:end])

    def _on_part_end(self) -> None:
        if self._current is not None:
            self._current.complete = True
            self._current = None

    def _on_end(self) -> None:
        self._finished = True

    # ---------- body ----------
    async def _pull(self) -> None:
        """Feed the next network chunk to the parser."""
        if self._broken:
            raise BadRequest("Malformed multipart body")
        if self._eof:
            raise BadRequest("Multipart body ended before the closing boundary")
        try:
            chunk = await self._stream.__anext__()
        except StopAsyncIteration:
            self._eof = True
            return
        except ClientDisconnect:
            self._broken = True
            raise TransferAborted(ABORT_MESSAGE)
        if not chunk:
            return
        try:
            self._parser.write(chunk)
        except MultipartParseError as e:
            self._broken = True
            raise BadRequest(f"Malformed multipart body: {e}")
        except BadRequest:
            self._broken = True
            raise

    async def _next_part(self) -> Optional[StreamedPart]:
        while not self._ready and not self._finished:
            await self._pull()
        return self._ready.popleft() if self._ready else None

    # ---------- public ----------
    async def read_fields(self) -> Dict[str, str]:
        """Collect the plain form fields that come before the first file part."""
        fields: Dict[str, str] = {}
        while True:
            part = await self._next_part()
            if part is None:
                return fields
            if part.is_file:
                self._ready.appendleft(part)
                return fields
            if len(fields) >= MAX_FIELDS:
                raise BadRequest(f"Too many form fields (limit {MAX_FIELDS})")
            fields[part.name] = (await part.read()).decode("utf-8", errors="replace")

    async def files(self) -> AsyncIterator[Tuple[str, StreamedPart]]:
        """
        Yield (filename, part) for every `file` part in arrival order. The
        previous part is drained before the next one is looked for.
        """
        while True:
            part = await self._next_part()
            if part is None:
                return
            if not part.is_file or part.name != "file":
                logger.warning(f"upload: ignoring form part {part.name!r} after the first file part")
                await part.drain()
                continue
            self.file_count += 1
            if self.file_count > self.max_files:
                raise BadRequest(f"Too many files in one upload (limit {self.max_files})")
            yield part.filename, part
            await part.drain()
