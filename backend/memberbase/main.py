from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from slowapi.errors import RateLimitExceeded
from starlette.middleware.trustedhost import TrustedHostMiddleware

from memberbase.core.config import settings
from memberbase.core.logging import configure_logging
from memberbase.api.errors import register_error_handlers
from memberbase.api.rate_limit import limiter, rate_limit_exceeded_handler
from memberbase.api.router import router
from memberbase.services.auth_provider import AuthProvider
from memberbase.services.billing_provider import StripePaymentProvider


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    app.state.payment_provider = StripePaymentProvider(
        settings.STRIPE_SECRET_KEY,
        settings.STRIPE_WEBHOOK_SECRET,
        settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
    )
    app.state.auth_provider = AuthProvider(
        settings.AUTH_PROVIDER_URL,
        settings.AUTH_ANON_KEY,
        settings.AUTH_SERVICE_ROLE_KEY,
    )
    yield


app = FastAPI(
    title="Memberbase",
    version="0.1.0",
    lifespan=lifespan,
)

allowed_hosts = [h.strip() for h in settings.ALLOWED_HOSTS.split(",") if h.strip()]
if not allowed_hosts:
    allowed_hosts = ["*"]
app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts)

cors_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
if cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response: Response = await call_next(request)
    if settings.SECURITY_HEADERS_ENABLED:
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if settings.ENV != "dev":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response

app.state.limiter = limiter
register_error_handlers(app)
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.include_router(router)

@app.get("/health")
def health():
    return {"ok": True}
