"""FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from kmarket.config.logging import setup_logging
from kmarket.config.settings import get_settings
from kmarket.exceptions import IdentityProviderUnavailableError, RedirectRequired, StorageError
from kmarket.storage.database import init_db
from kmarket.web.dependencies import get_db_engine
from kmarket.web.health import check_health
from kmarket.web.middleware import RateLimitMiddleware, RequestIDMiddleware
from kmarket.web.routes.admin import router as admin_router
from kmarket.web.routes.auth import router as auth_router
from kmarket.web.routes.company import router as company_router
from kmarket.web.routes.listings import router as listings_router
from kmarket.web.routes.me import router as me_router

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    if settings.database_url.startswith("sqlite"):
        # Local development: no migrations, create tables in place
        await init_db()
    yield


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    setup_logging(log_level=settings.log_level, json_output=not settings.debug)

    app = FastAPI(
        title="kmarket",
        description="Multi-tenant equipment marketplace backend",
        version="0.1.0",
        lifespan=_lifespan,
    )

    # Blocking guards short-circuit into a redirect before any data is loaded
    @app.exception_handler(RedirectRequired)
    async def redirect_handler(request: Request, exc: RedirectRequired) -> RedirectResponse:
        return RedirectResponse(url=exc.location, status_code=303)

    @app.exception_handler(IdentityProviderUnavailableError)
    async def identity_unavailable_handler(
        request: Request, exc: IdentityProviderUnavailableError
    ) -> JSONResponse:
        logger.error("identity_provider_unavailable", path=request.url.path, error=exc.message)
        return JSONResponse(
            status_code=503,
            content={"detail": "Authentication service is unavailable. Try again later."},
        )

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        logger.error("storage_unavailable", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=503,
            content={"detail": "Storage is unavailable. Try again later."},
        )

    # Middleware (order matters, last added runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.rate_limit_per_minute,
        window_seconds=60,
        credential_max_requests=settings.auth_rate_limit_per_minute,
    )
    app.add_middleware(RequestIDMiddleware)

    app.include_router(auth_router)
    app.include_router(me_router)
    app.include_router(listings_router)
    app.include_router(company_router)
    app.include_router(admin_router)

    @app.get("/api/health")
    async def health_check(engine: AsyncEngine = Depends(get_db_engine)) -> dict[str, object]:
        return await check_health(engine)

    logger.info("app_created", identity_mode=settings.identity_mode)
    return app
