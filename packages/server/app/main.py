"""
Keystone API Server

Entry point for the FastAPI application.
"""

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import Settings, get_settings
from app.core import database
from app.core.email import LoggingEmailSender
from app.core.errors import error_response, register_error_handlers
from app.core.middleware import SecurityHeadersMiddleware
from app.core.redis import close_redis
from app.core.responses import success
from app.core.tokens import ensure_signing_secret
from app.api.v1 import router as api_router
from app.services import api_keys
from app.services.exchange_codes import ExchangeCodeStore, InMemoryExchangeCodeStore, RedisExchangeCodeStore
from app.services.platform_sso import PlatformSSOBridge, SigningKeyCache

from keystone_shared.schemas.common import ErrorCode

settings = get_settings()
log = structlog.get_logger()


def build_exchange_store(config: Settings) -> ExchangeCodeStore:
    if config.exchange_code_backend == "redis":
        return RedisExchangeCodeStore(ttl_seconds=config.exchange_code_ttl_seconds)
    return InMemoryExchangeCodeStore(
        ttl_seconds=config.exchange_code_ttl_seconds,
        sweep_interval_seconds=config.exchange_code_sweep_seconds,
    )


def create_app(config: Settings = settings) -> FastAPI:
    """Create and configure the FastAPI application."""
    # Refuse to start with an empty or placeholder signing secret.
    ensure_signing_secret(config)

    app = FastAPI(
        title="Keystone",
        description="Multi-tenant identity, authorization and feature flag core.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    register_error_handlers(app)

    # Middleware (order matters — outermost first)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-API-Key", "X-Organization-Id"],
    )

    app.include_router(api_router, prefix="/api")

    code_store = build_exchange_store(config)
    key_cache = SigningKeyCache(
        config.platform_jwks_url,
        ttl_seconds=config.platform_jwks_cache_seconds,
        timeout_seconds=config.platform_jwks_timeout_seconds,
        min_refetch_seconds=config.platform_jwks_min_refetch_seconds,
    )
    app.state.exchange_codes = code_store
    app.state.sso_bridge = PlatformSSOBridge(
        key_cache,
        code_store,
        issuer=config.platform_issuer,
        audience=config.platform_audience,
        default_role_slug=config.sso_default_role_slug,
    )
    app.state.email_sender = LoggingEmailSender()

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return success({"status": "ok"})

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check endpoint for startup probes."""
        try:
            async with database.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            log.warning("keystone.not_ready", error=str(exc))
            return error_response(ErrorCode.SERVICE_UNAVAILABLE, "Database unavailable", 503)
        return success({"status": "ready"})

    @app.on_event("startup")
    async def on_startup():
        log.info("keystone.starting", exchange_codes=config.exchange_code_backend)
        await app.state.exchange_codes.start()

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("keystone.stopping")
        await app.state.exchange_codes.stop()
        await api_keys.drain_background_tasks()
        await close_redis()

    return app


app = create_app()
