from __future__ import annotations

import mimetypes
import os
import stat
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .errors import NotFound

DEFAULT_MIME = "application/octet-stream"


@dataclass(frozen=True)
class FileDescriptor:
    name: str
    path: str               # logical path, relative to the storage root
    size: int
    is_dir: bool
    modified: datetime      # always UTC
    mime_type: Optional[str] = None
    permissions: str = ""

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["modified"] = self.modified.isoformat()
        return d


def guess_mime_type(filename: str) -> str:
    """
    Extension-based guess only; contents are never sniffed. Unknown
    extensions map to application/octet-stream.
    """
    mime_type, _ = mimetypes.guess_type(filename, strict=False)
    return mime_type or DEFAULT_MIME


def describe_stat(st: os.stat_result, logical_path: str) -> FileDescriptor:
    is_dir = stat.S_ISDIR(st.st_mode)
    name = logical_path.rsplit("/", 1)[-1] if logical_path else ""
    return FileDescriptor(
        name=name,
        path=logical_path,
        size=0 if is_dir else int(st.st_size),
        is_dir=is_dir,
        modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
        mime_type=None if is_dir else guess_mime_type(name),
        permissions=stat.filemode(st.st_mode),
    )


def describe(resolved_path: str, logical_path: str) -> FileDescriptor:
    """
    Stat `resolved_path` into a descriptor. Any stat failure, including an
    entry vanishing between enumeration and stat, surfaces as NotFound.
    """
    try:
        st = os.stat(resolved_path)
    except OSError as e:
        raise NotFound(logical_path or "/") from e
    return describe_stat(st, logical_path)
