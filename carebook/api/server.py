import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy import text
from sqlalchemy.engine import Engine

from .. import metrics
from ..auth.sessions import DbSessionResolver, SessionResolver
from ..cache.cache_service import CacheService
from ..config import Settings
from ..db import init_db, make_engine
from ..utils.logging_utils import setup_logger
from . import admin, auth, bookings, listings, supplier
from .admin import default_company_settings
from .errors import install_error_handlers

logger = setup_logger(__name__)

API_PREFIX = "/api/v1"


def _database_ok(engine: Engine) -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        return False


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[Engine] = None,
    cache: Optional[CacheService] = None,
    session_resolver: Optional[SessionResolver] = None,
) -> FastAPI:
    """Build the API. Serve with ``uvicorn --factory carebook.api.server:create_app``."""
    settings = settings or Settings.from_env()
    engine = engine or make_engine(settings)
    cache = cache or CacheService.from_settings(settings)

    app = FastAPI(title=settings.app_name, default_response_class=ORJSONResponse)
    app.state.settings = settings
    app.state.engine = engine
    app.state.cache = cache
    app.state.session_resolver = session_resolver or DbSessionResolver(
        engine, cache, settings.session_cookie_name
    )
    app.state.company_settings = default_company_settings(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    install_error_handlers(app, expose_details=settings.is_development)

    @app.middleware("http")
    async def observe(request: Request, call_next):
        start = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            elapsed = time.perf_counter() - start
            if settings.obs_on:
                metrics.requests_total.inc()
                metrics.latency_seconds.observe(elapsed)
            logger.info(
                "%s %s -> %d (%.1fms)", request.method, request.url.path, status, elapsed * 1000
            )

    api = APIRouter(prefix=API_PREFIX)
    for module in (auth, admin, supplier, listings, bookings):
        api.include_router(module.router)
    app.include_router(api)

    @app.on_event("startup")
    async def on_start() -> None:
        settings.validate_required()
        init_db(engine)
        try:
            await cache.connect()
        except Exception as e:
            logger.warning("Redis unavailable, continuing without cache: %s", e)

    @app.on_event("shutdown")
    async def on_stop() -> None:
        await cache.disconnect()
        engine.dispose()

    @app.get("/")
    async def root():
        return {"name": settings.app_name, "version": "v1", "docs": "/docs"}

    @app.get("/health")
    async def health():
        if not cache.enabled:
            redis_status = "disabled"
        else:
            redis_status = "healthy" if await cache.health_check() else "unhealthy"
        db_ok = await run_in_threadpool(_database_ok, engine)
        body = {
            "status": "ok" if db_ok else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "services": {
                "redis": redis_status,
                "database": "healthy" if db_ok else "unhealthy",
            },
        }
        return ORJSONResponse(body, status_code=200 if db_ok else 503)

    # Expose /metrics for Prometheus (only if enabled)
    if settings.obs_on:
        app.mount("/metrics", make_asgi_app())

    return app

