"""
Exception handlers: every failure leaves the API as
{"error": <kind>, "message": <text>, "details": {...}}.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.accounts.user_manager import AccountError, CONFLICT, INVALID_INPUT, NOT_FOUND as ACCOUNT_NOT_FOUND
from core.storage import errors as se

from .logutil import get_logger

logger = get_logger("filedash.errors", file_basename="errors")

STATUS_BY_KIND = {
    se.INVALID_PATH: 400,
    se.NOT_FOUND: 404,
    se.FILE_EXISTS: 409,
    se.INVALID_FILE_TYPE: 422,
    se.FILE_TOO_LARGE: 413,
    se.BAD_REQUEST: 400,
    se.INTERNAL_ERROR: 500,
}

ACCOUNT_STATUS = {
    INVALID_INPUT: 400,
    CONFLICT: 409,
    ACCOUNT_NOT_FOUND: 404,
}

HTTP_KINDS = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    413: "file_too_large",
}


def error_body(kind: str, message: str, details: dict | None = None) -> dict:
    return {"error": kind, "message": message, "details": details or {}}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(se.StorageError)
    async def storage_error_handler(request: Request, exc: se.StorageError):
        status = STATUS_BY_KIND.get(exc.kind, 500)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} -> {exc.kind}: {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} -> {exc.kind}: {exc.message}")
        return JSONResponse(status_code=status, content=exc.to_dict())

    @app.exception_handler(AccountError)
    async def account_error_handler(request: Request, exc: AccountError):
        return JSONResponse(
            status_code=ACCOUNT_STATUS.get(exc.kind, 400),
            content=error_body(exc.kind, exc.message),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        kind = HTTP_KINDS.get(exc.status_code, "http_error")
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(kind, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception(f"unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content=error_body(se.INTERNAL_ERROR, "Internal server error"))
