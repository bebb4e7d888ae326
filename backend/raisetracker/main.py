import asyncio
import contextlib
import logging
import warnings
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from raisetracker.config import settings
from raisetracker.core.errors import register_error_handlers
from raisetracker.core.magic_links import magic_links, run_sweeper
from raisetracker.core.middleware import AccessLogMiddleware, RequestIDMiddleware, SessionMiddleware
from raisetracker.core.rate_limit import LoginRateLimitMiddleware
from raisetracker.routers import auth, investors, users

# Validate session signing key in production
if settings.is_production and settings.secret_key == "change-me-in-production":
    raise RuntimeError(
        "SECRET_KEY must be set to a secure random value in production. "
        "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
    )

if not settings.is_production and settings.secret_key == "change-me-in-production":
    warnings.warn("SECRET_KEY is using default value. Set it for production.", stacklevel=1)

logger = logging.getLogger("raisetracker")


@asynccontextmanager
async def lifespan(application: FastAPI):
    """Create tables, seed the first admin, and run the magic-link sweeper."""
    from raisetracker.dependencies import async_session_factory, engine
    from raisetracker.models.base import Base
    import raisetracker.models  # noqa: F401
    from raisetracker.services.user_service import ensure_bootstrap_admin

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables verified/created")

    async with async_session_factory() as db:
        await ensure_bootstrap_admin(
            db,
            username=settings.bootstrap_admin_username,
            password=settings.bootstrap_admin_password,
            display_name=settings.bootstrap_admin_display_name,
        )
        await db.commit()

    sweeper = asyncio.create_task(
        run_sweeper(magic_links, settings.magic_link_sweep_interval_seconds)
    )
    try:
        yield
    finally:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
        await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# Middleware: order matters (last added = outermost = first to execute)
# CORS outermost so all responses get CORS headers (including 401s and 429s)
cors_kwargs = {
    "allow_origins": settings.cors_origins_list,
    "allow_credentials": True,
    "allow_methods": ["*"],
    "allow_headers": ["*"],
    "expose_headers": ["x-request-id", "etag"],
}
if settings.cors_allow_origin_regex:
    cors_kwargs["allow_origin_regex"] = settings.cors_allow_origin_regex
app.add_middleware(SessionMiddleware)
app.add_middleware(LoginRateLimitMiddleware)
app.add_middleware(AccessLogMiddleware)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(CORSMiddleware, **cors_kwargs)

# Error handlers
register_error_handlers(app)

# Routers
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(investors.router)


@app.get("/health")
async def health_check():
    return {"status": "ok", "app": settings.app_name, "version": "0.1.0"}


@app.get("/api/heartbeat")
async def heartbeat():
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}
