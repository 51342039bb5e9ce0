import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from memberbase.core.config import settings
from memberbase.core.errors import AppError, UpstreamError

logger = logging.getLogger(__name__)

# Denials carry their details in every environment so clients can show the upgrade path.
_PUBLIC_DETAIL_STATUSES = {403, 429}


def error_body(message: str, *, code: str | None = None, details=None, upgrade_url: str | None = None, public: bool = False) -> dict:
    body = {"success": False, "error": message}
    if code:
        body["code"] = code
    if upgrade_url:
        body["upgrade_url"] = upgrade_url
    if details is not None and (public or not settings.is_production):
        body["details"] = details
    return body


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc)
    else:
        logger.warning("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.message)
    message = exc.message
    if isinstance(exc, UpstreamError) and settings.is_production:
        message = "Internal server error"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(
            message,
            code=exc.code,
            details=exc.details,
            upgrade_url=exc.upgrade_url,
            public=exc.status_code in _PUBLIC_DETAIL_STATUSES,
        ),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.warning("%s %s -> 400 validation failed", request.method, request.url.path)
    details = [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content=error_body("Validation failed", code="VALIDATION_ERROR", details=details))


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    logger.warning("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("%s %s crashed", request.method, request.url.path, exc_info=exc)
    message = "Internal server error" if settings.is_production else (str(exc) or exc.__class__.__name__)
    return JSONResponse(status_code=500, content=error_body(message))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
