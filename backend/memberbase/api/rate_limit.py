import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from memberbase.api.errors import error_body
from memberbase.core.config import settings

logger = logging.getLogger(__name__)

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    enabled=settings.RATE_LIMIT_ENABLED,
    headers_enabled=True,
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(
        "%s %s -> 429 rate limited client=%s limit=%s",
        request.method,
        request.url.path,
        get_remote_address(request),
        exc.detail,
    )
    response = JSONResponse(
        status_code=429,
        content=error_body("Too many requests, please try again later", code="RATE_LIMITED"),
    )
    return request.app.state.limiter._inject_headers(response, request.state.view_rate_limit)
