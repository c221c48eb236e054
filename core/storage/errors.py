from __future__ import annotations

from typing import Any, Dict, Optional

INVALID_PATH = "invalid_path"
NOT_FOUND = "not_found"
FILE_EXISTS = "file_exists"
INVALID_FILE_TYPE = "invalid_file_type"
FILE_TOO_LARGE = "file_too_large"
BAD_REQUEST = "bad_request"
INTERNAL_ERROR = "internal_error"


class StorageError(Exception):
    """
    Base for every failure the storage engine reports.

    `kind` is stable and meant for branching; `message` is for humans;
    `details` carries the structured fields (path, size, ...).
    """
    kind: str = INTERNAL_ERROR

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = {k: v for k, v in details.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": self.message, "details": dict(self.details)}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, {self.details!r})"


class InvalidPath(StorageError):
    kind = INVALID_PATH

    def __init__(self, path: str, reason: str = "Invalid path"):
        super().__init__(f"{reason}: {path}", path=path)
        self.path = path


class NotFound(StorageError):
    kind = NOT_FOUND

    def __init__(self, path: str, what: str = "Path"):
        super().__init__(f"{what} not found: {path}", path=path)
        self.path = path


class FileExists(StorageError):
    kind = FILE_EXISTS

    def __init__(self, path: str):
        super().__init__(f"File already exists: {path}", path=path)
        self.path = path


class InvalidFileType(StorageError):
    kind = INVALID_FILE_TYPE

    def __init__(self, filename: str, extension: str):
        shown = extension or "(none)"
        super().__init__(f"Invalid file type: {shown}", filename=filename, file_type=extension)
        self.filename = filename
        self.extension = extension


class FileTooLarge(StorageError):
    kind = FILE_TOO_LARGE

    def __init__(self, size: int, limit: int, filename: Optional[str] = None):
        super().__init__(
            f"File too large: {size} bytes exceeds the maximum of {limit} bytes",
            size=size, limit=limit, filename=filename,
        )
        self.size = size
        self.limit = limit


class BadRequest(StorageError):
    kind = BAD_REQUEST

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message, path=path)
        self.path = path


class InternalError(StorageError):
    kind = INTERNAL_ERROR


class TransferAborted(InternalError):
    """Upload stopped early: request timeout or client went away."""


def from_os_error(err: OSError, path: str, action: str) -> StorageError:
    # Translate an OSError raised while acting on `path` into the taxonomy.
    if isinstance(err, FileNotFoundError):
        return NotFound(path)
    if isinstance(err, FileExistsError):
        return FileExists(path)
    if isinstance(err, NotADirectoryError):
        return BadRequest(f"Not a directory: {path}", path=path)
    if isinstance(err, IsADirectoryError):
        return BadRequest(f"Is a directory: {path}", path=path)
    if isinstance(err, PermissionError):
        return InternalError(f"Permission denied while trying to {action}", path=path)
    return InternalError(f"Failed to {action}: {err.strerror or err}", path=path)
