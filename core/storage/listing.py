from __future__ import annotations

import os
from typing import List

from .errors import BadRequest, NotFound, from_os_error
from .metadata import FileDescriptor, describe
from .paths import PathResolver, join_logical
from .logutil import get_logger

logger = get_logger("listing")


def sort_key(d: FileDescriptor):
    # directories first, then case-sensitive code-point order on the name
    return (not d.is_dir, d.name)


class DirectoryLister:
    def __init__(self, resolver: PathResolver):
        self.resolver = resolver

    def list(self, logical_path: str | None) -> List[FileDescriptor]:
        """
        Direct children of one directory, directories before files.

        Entries that disappear (or can't be stat'ed) between enumeration and
        describe are skipped; the listing as a whole still succeeds.
        """
        rel, target = self.resolver.resolve_pair(logical_path)
        if not os.path.exists(target):
            raise NotFound(rel or "/", what="Directory")
        if not os.path.isdir(target):
            raise BadRequest(f"Path is not a directory: {rel}", path=rel)

        allow_links = self.resolver.config.allow_symlinks
        out: List[FileDescriptor] = []
        try:
            with os.scandir(target) as it:
                entries = list(it)
        except OSError as e:
            raise from_os_error(e, rel or "/", "read directory") from e

        for entry in entries:
            child = join_logical(rel, entry.name)
            try:
                if not allow_links and entry.is_symlink():
                    logger.debug(f"list: skipping symlink {child!r}")
                    continue
                out.append(describe(entry.path, child))
            except (NotFound, OSError):
                logger.info(f"list: entry vanished or unreadable, skipped: {child!r}")
                continue

        out.sort(key=sort_key)
        logger.debug(f"list: {rel or '/'} -> {len(out)} entries")
        return out
