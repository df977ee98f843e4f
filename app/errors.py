import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.services.archive_service import ArchiveRejectedError
from app.services.git_sync_service import GitSyncError, GitTimeoutError, scrub_credentials

logger = logging.getLogger(__name__)


def _error_payload(code: str, message: str, details):
    return {"code": code, "message": message, "details": details}


def _error_response(status_code: int, code: str, message: str, details=None, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=_error_payload(code, message, details),
        headers=headers,
    )


def register_error_handlers(app) -> None:
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        detail = exc.detail
        code = f"http_{exc.status_code}"
        message = "Request failed"
        details = None
        if isinstance(detail, dict):
            code = detail.get("code", code)
            message = detail.get("message", message)
            details = detail.get("details")
        elif isinstance(detail, str):
            message = detail
        else:
            details = detail
        return _error_response(exc.status_code, code, message, details, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _error_response(422, "validation_error", "Validation error", exc.errors())

    @app.exception_handler(ArchiveRejectedError)
    async def archive_rejected_handler(request: Request, exc: ArchiveRejectedError):
        return _error_response(400, "archive_rejected", str(exc), exc.errors)

    # GitTimeoutError subclasses GitSyncError; Starlette resolves the most specific handler.
    @app.exception_handler(GitTimeoutError)
    async def git_timeout_handler(request: Request, exc: GitTimeoutError):
        return _error_response(504, "git_timeout", scrub_credentials(str(exc)))

    @app.exception_handler(GitSyncError)
    async def git_error_handler(request: Request, exc: GitSyncError):
        logger.warning("Git operation failed on %s: %s", request.url.path, scrub_credentials(str(exc)))
        return _error_response(502, "git_error", scrub_credentials(str(exc)))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error_response(500, "internal_error", "Internal server error")
