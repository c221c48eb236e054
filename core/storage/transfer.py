"""
Byte movement between clients and the storage root.

Uploads are written chunk by chunk against a running byte counter, so an
oversized payload is cut off as soon as it crosses the limit instead of
after it has been buffered. Destinations are opened with exclusive-create:
an existing file is never truncated, and two racing uploads to the same
path produce one success and one FileExists.

Partial files left by a failed write are removed on a best-effort basis
only. A failed upload may still leave bytes on disk if the cleanup itself
fails.
"""
from __future__ import annotations

import asyncio
import functools
import os
import stat
from dataclasses import dataclass, field
from typing import (
    AsyncIterable, AsyncIterator, Awaitable, BinaryIO, Callable, Iterable, List, Optional, Set, Tuple, Union,
)

from .chunker import ChunkSource, declared_size, human_bytes
from .config import StorageConfig
from .errors import (
    BadRequest, FileExists, FileTooLarge, InvalidFileType, InvalidPath,
    NotFound, StorageError, TransferAborted, INTERNAL_ERROR, from_os_error,
)
from .metadata import FileDescriptor, describe
from .paths import PathResolver, join_logical, split_logical
from .logutil import get_logger

logger = get_logger("transfer")

AbortCheck = Callable[[], Awaitable[bool]]

TIMEOUT_MESSAGE = "Upload timed out"
ABORT_MESSAGE = "Upload aborted"


@dataclass
class UploadFailure:
    filename: str
    error: str
    kind: str = INTERNAL_ERROR

    def to_dict(self):
        return {"filename": self.filename, "error": self.error, "kind": self.kind}


@dataclass
class DirectoryLedger:
    """
    Directories touched by one batch. `created` lists, in order, the ones
    that did not exist before; `ensured` only saves repeated mkdir calls.
    Scoped to a single request and never shared between batches.
    """
    created: List[str] = field(default_factory=list)
    ensured: Set[str] = field(default_factory=set)

    def record(self, logical_dir: str) -> None:
        if logical_dir not in self.created:
            self.created.append(logical_dir)

    def __contains__(self, logical_dir: str) -> bool:
        return logical_dir in self.ensured


@dataclass
class BatchResult:
    uploaded: List[FileDescriptor] = field(default_factory=list)
    failed: List[UploadFailure] = field(default_factory=list)
    ledger: DirectoryLedger = field(default_factory=DirectoryLedger)

    @property
    def created_directories(self) -> List[str]:
        return list(self.ledger.created)


@dataclass
class DownloadHandle:
    """
    An already-open file plus the size taken from that descriptor. The
    stream never yields more than `size` bytes, so it always agrees with a
    Content-Length built from it even if the file grows or is replaced
    after opening.
    """
    path: str
    filename: str
    size: int
    file: BinaryIO = field(repr=False)
    chunk_size: int = 1024 * 1024

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """
        Yield the file in chunks, reading on a worker thread. Closing the
        generator early (client disconnect) closes the file.
        """
        remaining = self.size
        try:
            while remaining > 0:
                chunk = await asyncio.to_thread(self.file.read, min(self.chunk_size, remaining))
                if not chunk:
                    logger.warning(f"download: {self.path!r} shrank while streaming, {remaining} byte(s) short")
                    break
                remaining -= len(chunk)
                yield chunk
        except OSError as e:
            raise from_os_error(e, self.path, "read file") from e
        finally:
            self.close()

    def close(self) -> None:
        if not self.file.closed:
            self.file.close()


class _PendingItems:
    """
    Feeds (relative_path, source) pairs to a batch from a list or an async
    iterator, and knows which ones have not finished yet.
    """
    def __init__(self, items):
        if hasattr(items, "__aiter__"):
            self._stream = items.__aiter__()
            self._queue = []
        else:
            self._stream = None
            self._queue = list(items)
        self._current = None

    def __aiter__(self):
        return self

    async def __anext__(self):
        self._current = None
        if self._stream is None:
            if not self._queue:
                raise StopAsyncIteration
            self._current = self._queue.pop(0)
        else:
            self._current = await self._stream.__anext__()
        return self._current

    def unfinished(self) -> list:
        # items a stream has not produced yet are unknown and not listed
        head = [self._current] if self._current is not None else []
        return head + self._queue


class TransferEngine:
    def __init__(self, resolver: PathResolver, config: Optional[StorageConfig] = None):
        self.resolver = resolver
        self.config = config or resolver.config

    # ---------- policy ----------
    def check_extension(self, filename: str) -> str:
        ext = os.path.splitext(filename)[1].lstrip(".").lower()
        if self.config.allows_any_extension:
            return ext
        if ext not in self.config.allowed_extensions:
            raise InvalidFileType(filename, ext)
        return ext

    def check_declared_size(self, filename: str, size: Optional[int]) -> None:
        if size is not None and size > self.config.max_upload_size:
            raise FileTooLarge(size, self.config.max_upload_size, filename)

    @staticmethod
    def _validate_filename(filename: str) -> str:
        name = (filename or "").strip()
        if not name:
            raise BadRequest("Missing file name")
        if "/" in name or "\\" in name:
            raise BadRequest(f"File name must not contain path separators: {name}")
        if name in (".", ".."):
            raise InvalidPath(name, "Invalid file name")
        if "\x00" in name:
            raise InvalidPath(name.replace("\x00", "\\0"), "File name contains a NUL byte")
        return name

    # ---------- download ----------
    def open_download(self, logical_path: str) -> DownloadHandle:
        rel, target = self.resolver.resolve_pair(logical_path)
        if os.path.isdir(target):
            raise BadRequest(f"Path is a directory, not a file: {rel or '/'}", path=rel)
        try:
            f = open(target, "rb")
        except FileNotFoundError:
            raise NotFound(rel or "/", what="File")
        except IsADirectoryError:
            raise BadRequest(f"Path is a directory, not a file: {rel or '/'}", path=rel)
        except OSError as e:
            raise from_os_error(e, rel, "open file") from e
        try:
            st = os.fstat(f.fileno())
        except OSError as e:
            f.close()
            raise from_os_error(e, rel, "stat file") from e
        if stat.S_ISDIR(st.st_mode):
            f.close()
            raise BadRequest(f"Path is a directory, not a file: {rel or '/'}", path=rel)
        return DownloadHandle(
            path=rel,
            filename=os.path.basename(target),
            size=int(st.st_size),
            file=f,
            chunk_size=self.config.chunk_size,
        )

    # ---------- upload ----------
    async def upload(
        self,
        target_dir: str,
        filename: str,
        source: ChunkSource,
        *,
        ledger: Optional[DirectoryLedger] = None,
        abort_check: Optional[AbortCheck] = None,
    ) -> FileDescriptor:
        name = self._validate_filename(filename)
        self.check_extension(name)
        size = declared_size(source)
        self.check_declared_size(name, size)

        dir_rel, dir_abs = self.resolver.resolve_pair(target_dir)
        dest_rel = join_logical(dir_rel, name)
        dest_abs = self.resolver.resolve(dest_rel)

        ledger = ledger if ledger is not None else DirectoryLedger()
        if dir_rel not in ledger:
            await asyncio.to_thread(self._ensure_dir, dir_rel, ledger)

        written = await self._write(source, dest_abs, dest_rel, name, size, abort_check)
        logger.info(f"upload: stored {dest_rel!r} ({human_bytes(written)})")
        return describe(dest_abs, dest_rel)

    async def upload_batch(
        self,
        target_dir: str,
        items: Union[Iterable[Tuple[str, ChunkSource]], AsyncIterable[Tuple[str, ChunkSource]]],
        *,
        ledger: Optional[DirectoryLedger] = None,
        abort_check: Optional[AbortCheck] = None,
        timeout: Optional[float] = None,
    ) -> BatchResult:
        """
        Upload every (relative_path, source) pair under `target_dir`.
        Relative paths may carry sub-directories, which are created on
        demand. One file failing never stops the others; only the deadline
        or an abort ends the batch early, and then every unfinished file
        is reported as failed.

        `items` may also be an async iterator, so files are stored while a
        request body is still arriving. The deadline then covers waiting
        for each next file too. Errors raised by the iterator itself, other
        than an abort, fail the whole batch.
        """
        base_rel = self.resolver.normalize(target_dir)
        result = BatchResult(ledger=ledger if ledger is not None else DirectoryLedger())
        pending = _PendingItems(items)
        budget = timeout if timeout is not None else self.config.request_timeout

        try:
            await asyncio.wait_for(self._run_batch(base_rel, pending, result, abort_check), timeout=budget)
        except asyncio.TimeoutError:
            rest = pending.unfinished()
            logger.warning(f"batch: deadline hit; {len(rest)} known file(s) unfinished")
            self._fail_rest(result, rest, TIMEOUT_MESSAGE)
        except TransferAborted as e:
            self._fail_rest(result, pending.unfinished(), e.message)

        logger.info(
            f"batch: {base_rel or '/'} uploaded={len(result.uploaded)} failed={len(result.failed)} "
            f"new_dirs={len(result.ledger.created)}"
        )
        return result

    async def _run_batch(self, base_rel, pending: _PendingItems, result: BatchResult, abort_check) -> None:
        async for relative_path, source in pending:
            if abort_check is not None and await abort_check():
                raise TransferAborted(ABORT_MESSAGE, filename=relative_path)
            try:
                desc = await self._upload_relative(base_rel, relative_path, source, result.ledger, abort_check)
            except TransferAborted:
                raise
            except StorageError as e:
                logger.info(f"batch: {relative_path!r} failed ({e.kind}): {e.message}")
                result.failed.append(UploadFailure(relative_path, e.message, e.kind))
                continue
            except Exception as e:
                logger.exception(f"batch: unexpected failure for {relative_path!r}")
                result.failed.append(UploadFailure(relative_path, f"Upload failed: {e}", INTERNAL_ERROR))
                continue
            result.uploaded.append(desc)

    async def _upload_relative(self, base_rel, relative_path, source, ledger, abort_check) -> FileDescriptor:
        sub_dir, name = split_logical(relative_path or "")
        return await self.upload(
            join_logical(base_rel, sub_dir), name, source,
            ledger=ledger, abort_check=abort_check,
        )

    @staticmethod
    def _fail_rest(result: BatchResult, rest, message: str) -> None:
        for relative_path, _src in rest:
            result.failed.append(UploadFailure(relative_path, message, TransferAborted.kind))

    # ---------- disk ----------
    def _ensure_dir(self, dir_rel: str, ledger: DirectoryLedger) -> None:
        """Create `dir_rel` and any missing ancestors, noting each one created."""
        cur_rel = ""
        for part in [p for p in dir_rel.split("/") if p]:
            cur_rel = join_logical(cur_rel, part)
            if cur_rel in ledger:
                continue
            cur_abs = self.resolver.resolve(cur_rel)
            try:
                os.mkdir(cur_abs)
                ledger.record(cur_rel)
                logger.debug(f"mkdir: created {cur_rel!r}")
            except FileExistsError:
                if not os.path.isdir(cur_abs):
                    raise BadRequest(f"Parent path is not a directory: {cur_rel}", path=cur_rel)
            except OSError as e:
                raise from_os_error(e, cur_rel, "create directory") from e
            ledger.ensured.add(cur_rel)
        ledger.ensured.add(dir_rel)

    async def _write(self, source, dest_abs, dest_rel, name, size, abort_check) -> int:
        opening = asyncio.ensure_future(asyncio.to_thread(open, dest_abs, "xb"))
        try:
            f = await asyncio.shield(opening)
        except asyncio.CancelledError:
            # the worker thread still creates the file after we stop waiting
            opening.add_done_callback(functools.partial(self._drop_orphan, dest_abs, dest_rel))
            raise
        except FileExistsError:
            raise FileExists(dest_rel)
        except OSError as e:
            raise from_os_error(e, dest_rel, "create file") from e

        total = 0
        try:
            if size is not None and size <= self.config.buffer_threshold:
                buf, done = await self._slurp(source, name)
                total = len(buf)
                if buf:
                    await asyncio.to_thread(f.write, bytes(buf))
                if not done:
                    total = await self._pump(source, f, name, total, abort_check)
            else:
                total = await self._pump(source, f, name, 0, abort_check)
            await asyncio.to_thread(f.close)
        except BaseException as e:
            f.close()
            self._discard_partial(dest_abs, dest_rel)
            if isinstance(e, OSError):
                raise from_os_error(e, dest_rel, "write file") from e
            raise
        return total

    async def _slurp(self, source, name) -> Tuple[bytearray, bool]:
        """
        Read a small file fully. Stops early, returning done=False, if the
        payload turns out bigger than the buffering threshold.
        """
        buf = bytearray()
        limit = self.config.max_upload_size
        while True:
            chunk = await source.read(self.config.chunk_size)
            if not chunk:
                return buf, True
            buf.extend(chunk)
            if len(buf) > limit:
                raise FileTooLarge(len(buf), limit, name)
            if len(buf) > self.config.buffer_threshold:
                return buf, False

    async def _pump(self, source, f, name, total, abort_check) -> int:
        limit = self.config.max_upload_size
        every = max(1, self.config.abort_check_every)
        n = 0
        while True:
            chunk = await source.read(self.config.chunk_size)
            if not chunk:
                return total
            total += len(chunk)
            if total > limit:
                raise FileTooLarge(total, limit, name)
            await asyncio.to_thread(f.write, chunk)
            n += 1
            if abort_check is not None and n % every == 0 and await abort_check():
                raise TransferAborted(ABORT_MESSAGE, filename=name)

    @classmethod
    def _drop_orphan(cls, dest_abs: str, dest_rel: str, opening: asyncio.Future) -> None:
        if opening.cancelled() or opening.exception() is not None:
            return
        opening.result().close()
        cls._discard_partial(dest_abs, dest_rel)

    @staticmethod
    def _discard_partial(dest_abs: str, dest_rel: str) -> None:
        try:
            os.unlink(dest_abs)
            logger.info(f"upload: removed partial file {dest_rel!r}")
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning(f"upload: could not remove partial file {dest_rel!r}", exc_info=True)
