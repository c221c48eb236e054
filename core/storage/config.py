from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Iterable, Tuple

MB = 1024 * 1024
GB = 1024 * MB

WILDCARD = "*"


def normalize_extensions(exts: Iterable[str]) -> Tuple[str, ...]:
    """
    '.JPG', 'jpg', ' jpg ' all mean the same thing. A lone '*' anywhere
    in the list means every extension is allowed.
    """
    out = []
    for e in exts:
        e = (e or "").strip().lower().lstrip(".")
        if not e:
            continue
        if e == WILDCARD:
            return (WILDCARD,)
        if e not in out:
            out.append(e)
    return tuple(out)


@dataclass(frozen=True)
class StorageConfig:
    root: str
    allowed_extensions: Tuple[str, ...] = (WILDCARD,)
    max_upload_size: int = 10 * GB
    request_timeout: float = 24 * 60 * 60.0
    chunk_size: int = 1 * MB
    buffer_threshold: int = 1 * MB
    max_path_length: int = 1000
    allow_symlinks: bool = False
    max_search_results: int = 100
    max_files_per_upload: int = 10000
    # How many chunks pass between abort_check polls during a streamed write.
    abort_check_every: int = field(default=16)

    def __post_init__(self):
        if not self.root:
            raise ValueError("storage root is required")
        object.__setattr__(self, "root", os.path.normpath(os.path.abspath(os.path.expanduser(self.root))))
        object.__setattr__(self, "allowed_extensions", normalize_extensions(self.allowed_extensions) or (WILDCARD,))
        if self.max_upload_size <= 0:
            raise ValueError("max_upload_size must be positive")
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")

    @property
    def allows_any_extension(self) -> bool:
        return self.allowed_extensions == (WILDCARD,)

    def with_overrides(self, **changes) -> "StorageConfig":
        return replace(self, **changes)
