"""
Custom exceptions dan exception handlers untuk API
"""
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from knowledge_base.api.models import ErrorResponse
from knowledge_base.exceptions import ErrorCode, KnowledgeBaseError, RateLimitExceeded

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.RATE_LIMIT_EXCEEDED: 429,
    ErrorCode.REQUEST_TIMEOUT: 408,
    ErrorCode.CONFIGURATION_ERROR: 503,
    ErrorCode.EXTERNAL_SERVICE_ERROR: 503,
    ErrorCode.INTERNAL_ERROR: 500,
}

CODE_BY_HTTP_STATUS = {
    400: "INVALID_INPUT",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    429: "RATE_LIMIT_EXCEEDED",
    503: "SERVICE_UNAVAILABLE",
}


class ApplicationStartupIncomplete(HTTPException):
    def __init__(self):
        super().__init__(status_code=503, detail="Application is still starting up")


class MissingIdentityError(HTTPException):
    def __init__(self):
        super().__init__(status_code=401, detail="Unauthorized - missing X-User-Id header")


def error_response(status_code: int, message: str, code: str, headers=None) -> JSONResponse:
    body = ErrorResponse(error=message, code=code)
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


async def knowledge_base_error_handler(request: Request, exc: KnowledgeBaseError) -> JSONResponse:
    status_code = STATUS_BY_CODE.get(exc.code, 500)
    headers = None
    if isinstance(exc, RateLimitExceeded):
        headers = {"Retry-After": str(exc.retry_after)}
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: [{exc.code.value}] {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: [{exc.code.value}] {exc.message}")
    return error_response(status_code, exc.message, exc.code.value, headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = CODE_BY_HTTP_STATUS.get(exc.status_code, ErrorCode.INTERNAL_ERROR.value)
    return error_response(exc.status_code, str(exc.detail), code, getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'] if part != 'body')}: {error['msg']}"
        for error in exc.errors()
    )
    return error_response(400, f"Invalid request body: {details}", ErrorCode.INVALID_INPUT.value)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return error_response(500, "Internal server error", ErrorCode.INTERNAL_ERROR.value)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(KnowledgeBaseError, knowledge_base_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
