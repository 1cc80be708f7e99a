import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.errors import ApiError
from app.core.rate_limit import limiter
from app.core.redis_client import close_redis, get_redis
from app.database import get_db
from app.routers import auth, authorized_pickups, guardians, pickups, students

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan context manager
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: runs on startup and shutdown."""
    logger.info("%s started", settings.APP_NAME)
    yield
    await close_redis()
    logger.info("%s shutting down", settings.APP_NAME)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------
app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    lifespan=lifespan,
)


MAX_BODY_SIZE = 1 * 1024 * 1024  # 1 MB, requests are small JSON documents


# -- Middleware ---------------------------------------------------------------
@app.middleware("http")
async def limit_request_body(request: Request, call_next):
    """Reject requests with Content-Length exceeding the limit."""
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > MAX_BODY_SIZE:
        return JSONResponse(
            status_code=413,
            content={"detail": "Request body too large"},
        )
    return await call_next(request)


app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

# -- Rate limiting ------------------------------------------------------------
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# -- Error mapping ------------------------------------------------------------
@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error": exc.code},
    )


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------
@app.get("/health", tags=["health"])
async def health_check(db: AsyncSession = Depends(get_db)):
    """Health check with DB and Redis connectivity verification."""
    checks: dict[str, str] = {"db": "ok", "redis": "ok"}

    try:
        await db.execute(select(1))
    except (SQLAlchemyError, OSError):
        logger.exception("Health check: database unreachable")
        checks["db"] = "error"

    redis = await get_redis()
    if redis is None:
        checks["redis"] = "unavailable"

    # "unavailable" = optional service not configured; only "error" = degraded
    degraded = any(v == "error" for v in checks.values())
    return {"status": "degraded" if degraded else "ok", "app": settings.APP_NAME, **checks}


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
app.include_router(auth.router, prefix=settings.API_V1_PREFIX)
app.include_router(guardians.router, prefix=settings.API_V1_PREFIX)
app.include_router(students.router, prefix=settings.API_V1_PREFIX)
app.include_router(authorized_pickups.router, prefix=settings.API_V1_PREFIX)
app.include_router(pickups.router, prefix=settings.API_V1_PREFIX)
