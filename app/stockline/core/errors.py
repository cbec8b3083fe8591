import logging
from decimal import Decimal

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from app.stockline.core.error_catalog import AppError, ErrorCatalog, ErrorDefinition
from app.stockline.core.logging import log_json
from app.stockline.core.metrics import metrics

logger = logging.getLogger("stockline.errors")

_HTTP_STATUS_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
}

_LOCK_TIMEOUT_MARKERS = ("lock timeout", "deadlock detected", "database is locked", "could not obtain lock")


def _is_lock_timeout(exc: Exception) -> bool:
    return isinstance(exc, OperationalError) and any(marker in str(exc).lower() for marker in _LOCK_TIMEOUT_MARKERS)


def _trace_id(request: Request) -> str:
    return getattr(request.state, "trace_id", "")


def _json_safe(value):
    # quantities and money leave the service as exact decimal strings
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, dict):
        return {key: _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    if isinstance(value, Exception):
        return str(value)
    return value


def _validation_error_details(exc: RequestValidationError) -> dict:
    errors = []
    for error in exc.errors():
        loc = list(error.get("loc", []))
        field = ".".join(str(item) for item in loc if item not in {"body", "query", "path", "header"}) or None
        errors.append(
            {
                "field": field,
                "message": error.get("msg", "Invalid value"),
                "type": error.get("type", "validation_error"),
                "loc": loc,
                "input": _json_safe(error.get("input")),
            }
        )
    return {"errors": errors}


def _respond(request: Request, exc: Exception, *, code: str, message: str, details, status_code: int) -> JSONResponse:
    """Build the error envelope and remember it for logging and idempotent replay."""
    request.state.error_code = code
    request.state.error_class = exc.__class__.__name__
    payload = {"code": code, "message": message, "details": details, "trace_id": _trace_id(request)}
    context = getattr(request.state, "idempotency", None)
    if context is not None:
        context.record_failure(status_code=status_code, response_body=payload)
    return JSONResponse(status_code=status_code, content=payload)


def _respond_with(request: Request, exc: Exception, definition: ErrorDefinition, details) -> JSONResponse:
    return _respond(
        request,
        exc,
        code=definition.code,
        message=definition.message,
        details=details,
        status_code=definition.status_code,
    )


def error_response(code: str, message: str, details: object, trace_id: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"code": code, "message": message, "details": details, "trace_id": trace_id},
    )


def setup_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.error.status_code >= 500:
            log_json(
                logger,
                {"event": "domain_error", "code": exc.error.code, "trace_id": _trace_id(request)},
                level=logging.ERROR,
            )
        return _respond_with(request, exc, exc.error, _json_safe(exc.details))

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        detail = exc.detail
        message = str(detail) if detail is not None else "HTTP error"
        details = None
        if isinstance(detail, dict):
            message = str(detail.get("message", message))
            details = {key: value for key, value in detail.items() if key != "message"} or None
        elif isinstance(detail, list):
            details = {"errors": detail}
        return _respond(
            request,
            exc,
            code=_HTTP_STATUS_CODES.get(exc.status_code, "HTTP_ERROR"),
            message=message,
            details=details,
            status_code=exc.status_code,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _respond_with(request, exc, ErrorCatalog.VALIDATION_ERROR, _validation_error_details(exc))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        if _is_lock_timeout(exc):
            metrics.increment_lock_wait_timeout()
            return _respond_with(request, exc, ErrorCatalog.LOCK_TIMEOUT, {"type": exc.__class__.__name__})
        logger.exception("unhandled error", extra={"trace_id": _trace_id(request)})
        return _respond_with(request, exc, ErrorCatalog.INTERNAL_ERROR, {"type": exc.__class__.__name__})
