import logging
import sys
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from accountability.api.v1 import check_ins, internal, sobriety

# Ensure engine loggers (scan, misses, push) print to stdout so you see them in the terminal
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logging.getLogger("accountability").setLevel(logging.DEBUG)
from accountability.config import settings
from accountability.core.errors import (
    AccountabilityError,
    InvalidConfiguration,
    InvalidInput,
    InvalidState,
    OrphanReference,
)
from accountability.db.session import dispose_db, init_db
from accountability.services.http_client import close_http_client, init_http_client
from accountability.services.jobs import run_check_in_cycle
from prometheus_client import make_asgi_app

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


async def scheduled_check_in_tick():
    """Due scan + miss detection every check_in_scan_interval_minutes."""
    await run_check_in_cycle()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(settings, "app_env", "development") == "production":
        settings.validate_jwt_config()
        if settings.secret_key == "change-me-in-production" and not settings.use_rs256:
            raise RuntimeError("SECRET_KEY must be set in production")
    await init_db()
    init_http_client(timeout=30.0)

    if settings.enable_scheduler:
        # One tick at a time; a tick that overruns is coalesced instead of stacking up
        scheduler.add_job(
            scheduled_check_in_tick,
            "interval",
            minutes=max(1, settings.check_in_scan_interval_minutes),
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
    yield
    if scheduler.running:
        scheduler.shutdown()
    await close_http_client()
    await dispose_db()


limiter = Limiter(key_func=get_remote_address, default_limits=["200/minute"])

app = FastAPI(
    title="Recovery Accountability API",
    description="Sponsor/sponsee check-ins, miss escalation, sobriety streaks",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=500)


@app.exception_handler(AccountabilityError)
async def accountability_error_handler(request: Request, exc: AccountabilityError):
    """Bad input 422, wrong state 409, missing record 404; anything else is transient."""
    if isinstance(exc, (InvalidConfiguration, InvalidInput)):
        status = 422
    elif isinstance(exc, InvalidState):
        status = 409
    elif isinstance(exc, OrphanReference):
        status = 404
    else:
        logger.warning("Transient error on %s: %s", request.url.path, exc)
        status = 503
    return JSONResponse(status_code=status, content={"detail": str(exc)})


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if getattr(settings, "enable_hsts", False):
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()] if settings.cors_origins else ["*"]
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(check_ins.router, prefix="/api/v1")
app.include_router(sobriety.router, prefix="/api/v1")
app.include_router(internal.router, prefix="/api/v1")

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.get("/health")
@limiter.exempt
def health(request: Request):
    return {"status": "ok"}
