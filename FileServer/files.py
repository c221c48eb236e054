# FileServer/files.py
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask
from urllib.parse import quote

from core.accounts.rbac import Principal
from core.storage.errors import BadRequest
from core.storage.service import FileStore

from .dependencies import get_current_user, get_store
from .logutil import get_logger, bind, span
from .multipart import MultipartReader
from .schemas import DeleteResponse, FileInfo, ListResponse, MkdirRequest, PathChange, UploadResponse

logger = get_logger("filedash.files", file_basename="files_api")

router = APIRouter()


def content_disposition(filename: str) -> str:
	"""attachment header; non-ASCII or control-character names go out RFC 5987 encoded."""
	if not filename.isascii() or any(ord(c) < 0x20 or ord(c) == 0x7f for c in filename):
		return f"attachment; filename*=UTF-8''{quote(filename, safe='')}"
	escaped = filename.replace("\\", "\\\\").replace('"', '\\"')
	return f'attachment; filename="{escaped}"'


@router.get("/list", response_model=ListResponse)
def list_dir(path: str = Query(default=""), principal: Principal = Depends(get_current_user), store: FileStore = Depends(get_store)):
	entries = store.list(path)
	return {"files": [d.to_dict() for d in entries], "path": store.resolver.normalize(path)}


@router.get("/download/{path:path}")
def download_file(path: str, principal: Principal = Depends(get_current_user), store: FileStore = Depends(get_store)):
	handle = store.open_download(path)
	bind(logger, user=principal.username).info("download", extra={"target": handle.path, "bytes": handle.size})
	return StreamingResponse(
		handle.iter_bytes(),
		media_type="application/octet-stream",
		headers={
			"Content-Disposition": content_disposition(handle.filename),
			"Content-Length": str(handle.size),
		},
		background=BackgroundTask(handle.close),
	)


@router.post("/upload", response_model=UploadResponse)
async def upload_files(request: Request, principal: Principal = Depends(get_current_user), store: FileStore = Depends(get_store)):
	"""
	multipart/form-data: one `path` field (target directory, default root)
	followed by one or more `file` parts. A part's filename may carry
	sub-directories ("photos/2024/a.jpg") for folder uploads. Parts are
	stored as they stream in; a client disconnect aborts the batch.
	"""
	reader = MultipartReader(request, max_files=store.config.max_files_per_upload)
	fields = await reader.read_fields()
	target = fields.get("path") or ""

	log = bind(logger, user=principal.username)
	with span(log, "upload", target=target or "/"):
		result = await store.upload_batch(target, reader.files())
	if reader.file_count == 0:
		raise BadRequest("No files provided: expected one or more 'file' parts")
	log.info("upload done", extra={"uploaded": len(result.uploaded), "failed": len(result.failed)})
	return {
		"uploaded": [d.to_dict() for d in result.uploaded],
		"failed": [f.to_dict() for f in result.failed],
		"created_directories": result.created_directories,
	}


@router.post("/mkdir", response_model=FileInfo, status_code=201)
def make_dir(body: MkdirRequest, principal: Principal = Depends(get_current_user), store: FileStore = Depends(get_store)):
	desc = store.mkdir(body.path, body.recursive)
	bind(logger, user=principal.username).info("mkdir", extra={"target": desc.path})
	return desc.to_dict()


@router.put("/rename", response_model=FileInfo)
def rename(body: PathChange, principal: Principal = Depends(get_current_user), store: FileStore = Depends(get_store)):
	desc = store.rename(body.from_path, body.to)
	bind(logger, user=principal.username).info("rename", extra={"source": body.from_path, "target": desc.path})
	return desc.to_dict()


@router.put("/move", response_model=FileInfo)
def move(body: PathChange, principal: Principal = Depends(get_current_user), store: FileStore = Depends(get_store)):
	desc = store.move(body.from_path, body.to)
	bind(logger, user=principal.username).info("move", extra={"source": body.from_path, "target": desc.path})
	return desc.to_dict()


@router.delete("/{path:path}", response_model=DeleteResponse)
def delete(path: str, principal: Principal = Depends(get_current_user), store: FileStore = Depends(get_store)):
	removed = store.delete(path)
	bind(logger, user=principal.username).info("delete", extra={"target": removed})
	return {"message": "Deleted successfully", "path": removed}
