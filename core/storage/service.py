"""
FileStore: one storage root, every engine component wired to it.

Built from a single StorageConfig value so that two stores (say, one per
test) never share state. Filesystem-bound calls are synchronous; uploads
are coroutines because they consume network streams.
"""
from __future__ import annotations

import os
from typing import AsyncIterable, Iterable, List, Optional, Tuple, Union

from .chunker import ChunkSource
from .config import StorageConfig
from .listing import DirectoryLister
from .metadata import FileDescriptor, describe
from .mutations import MutationOps
from .paths import PathResolver
from .search import SearchHit, SearchWalker
from .transfer import AbortCheck, BatchResult, DownloadHandle, TransferEngine
from .logutil import get_logger

logger = get_logger("service")


class FileStore:
    def __init__(self, config: StorageConfig):
        self.config = config
        self.resolver = PathResolver(config)
        self.lister = DirectoryLister(self.resolver)
        self.transfers = TransferEngine(self.resolver, config)
        self.mutations = MutationOps(self.resolver)
        self.searcher = SearchWalker(self.resolver, config.max_search_results)

    def ensure_root(self) -> None:
        if not os.path.isdir(self.config.root):
            os.makedirs(self.config.root, exist_ok=True)
            logger.info(f"created storage root {self.config.root}")

    # ---- reads ----
    def stat(self, logical_path: str) -> FileDescriptor:
        rel, target = self.resolver.resolve_pair(logical_path)
        return describe(target, rel)

    def list(self, logical_path: str | None = "") -> List[FileDescriptor]:
        return self.lister.list(logical_path)

    def open_download(self, logical_path: str) -> DownloadHandle:
        return self.transfers.open_download(logical_path)

    def search(self, query: str, logical_path: str | None = "") -> List[SearchHit]:
        return self.searcher.search(query, logical_path)

    # ---- writes ----
    async def upload(self, target_dir: str, filename: str, source: ChunkSource,
                     abort_check: Optional[AbortCheck] = None) -> FileDescriptor:
        return await self.transfers.upload(target_dir, filename, source, abort_check=abort_check)

    async def upload_batch(self, target_dir: str,
                           items: Union[Iterable[Tuple[str, ChunkSource]], AsyncIterable[Tuple[str, ChunkSource]]],
                           abort_check: Optional[AbortCheck] = None,
                           timeout: Optional[float] = None) -> BatchResult:
        return await self.transfers.upload_batch(target_dir, items, abort_check=abort_check, timeout=timeout)

    def rename(self, logical_path: str, new_name: str) -> FileDescriptor:
        return self.mutations.rename(logical_path, new_name)

    def move(self, src: str, dest: str) -> FileDescriptor:
        return self.mutations.move(src, dest)

    def delete(self, logical_path: str) -> str:
        return self.mutations.delete(logical_path)

    def mkdir(self, logical_path: str, recursive: bool = True) -> FileDescriptor:
        return self.mutations.mkdir(logical_path, recursive)
