import logging
import sys
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from prometheus_client import make_asgi_app
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from authsvc.api.errors import install_error_handlers
from authsvc.api.v1 import auth
from authsvc.config import settings
from authsvc.core.keys import KeyMaterial
from authsvc.core.rate_limit import limiter
from authsvc.core.tokens import CredentialCodec
from authsvc.db.session import init_db
from authsvc.services.maintenance import scheduled_refresh_token_purge

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logging.getLogger("authsvc").setLevel(logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.validate_key_config()
    # Fail fast: the process must not serve requests without a usable key pair.
    keys = KeyMaterial.from_settings(settings)
    app.state.codec = CredentialCodec(keys)
    await init_db()

    scheduler.add_job(
        scheduled_refresh_token_purge,
        "cron",
        hour=settings.refresh_token_purge_hour,
        minute=0,
        id="refresh_token_purge",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Auth service started (env=%s)", settings.app_env)
    yield
    scheduler.shutdown()


app = FastAPI(
    title="Auth Service API",
    description="Credential issuance and session validation: encrypted access tokens, rotating refresh tokens",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
install_error_handlers(app)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=500)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        if settings.enable_hsts:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type", "x-client-id", "x-client-secret"],
)
app.include_router(auth.router, prefix="/api/v1")

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.get("/health")
@limiter.exempt
def health(request: Request):
    return {"status": "ok"}
