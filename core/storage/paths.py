"""
Client paths -> filesystem paths, confined to the storage root.

Logical paths are slash-separated and relative to the root. They are
normalized lexically (no filesystem access, symlinks are never consulted
while collapsing '..') and the joined result is prefix-checked against the
root. Either a path at or below the root comes back, or InvalidPath is
raised.
"""
from __future__ import annotations

import os
import posixpath
import stat

from .config import StorageConfig
from .errors import InvalidPath
from .logutil import get_logger

logger = get_logger("paths")

SEP = "/"


def _preview(p: str, limit: int = 80) -> str:
    p = p.replace("\x00", "\\0")
    return p if len(p) <= limit else p[:limit] + "..."


def join_logical(*parts: str) -> str:
    """Join logical fragments without normalizing; empty fragments vanish."""
    cleaned = [p.replace("\\", SEP).strip(SEP) for p in parts if p]
    return SEP.join(c for c in cleaned if c)


def split_logical(path: str) -> tuple[str, str]:
    """'a/b/c.txt' -> ('a/b', 'c.txt'); 'c.txt' -> ('', 'c.txt')."""
    path = path.replace("\\", SEP).strip(SEP)
    head, _, tail = path.rpartition(SEP)
    return head, tail


class PathResolver:
    def __init__(self, config: StorageConfig):
        self.config = config
        self.root = config.root
        self._prefix = self.root if self.root.endswith(os.sep) else self.root + os.sep

    def normalize(self, logical: str | None) -> str:
        """
        Canonical logical form: no leading slash, no '.', no '..', '' for
        the root. Raises InvalidPath for NUL bytes, over-long input, or any
        '..' that would climb above the root.
        """
        if logical is None:
            return ""
        if not isinstance(logical, str):
            raise InvalidPath(repr(logical), "Path must be a string")
        if "\x00" in logical:
            raise InvalidPath(_preview(logical), "Path contains a NUL byte")
        if len(logical) > self.config.max_path_length:
            raise InvalidPath(_preview(logical), "Path is too long")

        p = logical.replace("\\", SEP).lstrip(SEP)
        if not p:
            return ""
        rel = posixpath.normpath(p)
        if rel == ".":
            return ""
        if rel == ".." or rel.startswith("../"):
            logger.warning(f"traversal attempt rejected: {_preview(logical)!r}")
            raise InvalidPath(_preview(logical), "Path escapes the storage root")
        return rel

    def resolve(self, logical: str | None) -> str:
        rel = self.normalize(logical)
        candidate = os.path.normpath(os.path.join(self.root, *rel.split(SEP))) if rel else self.root
        if candidate != self.root and not candidate.startswith(self._prefix):
            logger.warning(f"traversal attempt rejected after join: {_preview(logical or '')!r}")
            raise InvalidPath(_preview(logical or ""), "Path escapes the storage root")
        if rel and not self.config.allow_symlinks:
            self._reject_symlinks(rel, logical or "")
        return candidate

    def resolve_pair(self, logical: str | None) -> tuple[str, str]:
        """(normalized logical, absolute path) in one go."""
        rel = self.normalize(logical)
        return rel, self.resolve(rel)

    def to_logical(self, abs_path: str) -> str:
        abs_path = os.path.normpath(abs_path)
        if abs_path == self.root:
            return ""
        if not abs_path.startswith(self._prefix):
            raise InvalidPath(_preview(abs_path), "Path is outside the storage root")
        return abs_path[len(self._prefix):].replace(os.sep, SEP)

    def is_root(self, abs_path: str) -> bool:
        return os.path.normpath(abs_path) == self.root

    def _reject_symlinks(self, rel: str, original: str) -> None:
        cur = self.root
        for part in rel.split(SEP):
            cur = os.path.join(cur, part)
            try:
                st = os.lstat(cur)
            except OSError:
                # The rest of the path does not exist yet; nothing to follow.
                return
            if stat.S_ISLNK(st.st_mode):
                logger.warning(f"symlink component rejected: {_preview(original)!r}")
                raise InvalidPath(_preview(original), "Symbolic links are not allowed")
