"""FastAPI application creation and configuration.

This module creates and configures the FastAPI application instance.
It registers exception handlers, auth middleware, request-id middleware, and routes.

Middleware Ordering (Critical):
- Middleware runs in reverse order of registration
- RequestIDMiddleware is added LAST so it runs FIRST (outermost)
- This ensures all requests (including auth failures) get X-Request-ID

Actual execution order per request:
1. RequestIDMiddleware (sets request_id, starts timer)
2. AuthMiddleware (verifies auth, bootstraps the user row, sets viewer)
3. Route handler
4. AuthMiddleware (returns response)
5. RequestIDMiddleware (logs, sets response header)

Shared clients (created once per app, stored in app.state):
- storage_client: Supabase Storage, or the in-memory fake when unconfigured
- broadcaster: Redis pub/sub publisher; no-op when Redis is unconfigured or down
"""

import json
from contextlib import asynccontextmanager
from typing import Any
from uuid import UUID

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from redline.api.routes import create_api_router
from redline.auth.access_cache import configure_access_cache
from redline.auth.middleware import AuthMiddleware
from redline.auth.verifier import JwksTokenVerifier, TokenVerifier
from redline.config import get_settings
from redline.db.session import get_session_factory
from redline.errors import ApiError, ApiErrorCode
from redline.logging import configure_logging, get_logger
from redline.middleware.request_id import RequestIDMiddleware
from redline.responses import (
    api_error_handler,
    error_response,
    http_exception_handler,
    unhandled_exception_handler,
    validation_error_handler,
)
from redline.services.bootstrap import ensure_user
from redline.services.broadcast import Broadcaster, set_broadcaster
from redline.storage.client import StorageClientBase, get_storage_client

# Configure structured logging at import time
configure_logging()

logger = get_logger(__name__)


def create_bootstrap_callback():
    """Create a bootstrap callback that creates its own database session.

    The callback is called by the auth middleware for each authenticated request.
    It creates a fresh database session, upserts the user row, and closes it.
    """
    session_factory = get_session_factory()

    def bootstrap(user_id: UUID, claims: dict[str, Any]) -> None:
        db = session_factory()
        try:
            ensure_user(db, user_id, claims)
        finally:
            db.close()

    return bootstrap


def create_token_verifier() -> JwksTokenVerifier:
    """Create the token verifier from the JWKS settings."""
    settings = get_settings()

    return JwksTokenVerifier(
        jwks_url=settings.auth_jwks_url,  # type: ignore
        issuer=settings.normalized_issuer,  # type: ignore
        audiences=settings.audience_list,
    )


def create_redis_client(redis_url: str | None):
    """Connect to Redis, or return None (fail open) if unset or unreachable."""
    if not redis_url:
        return None
    try:
        import redis

        redis_client = redis.Redis.from_url(redis_url, decode_responses=True, socket_timeout=5)
        redis_client.ping()
        logger.info("redis_client_initialized", redis_url=redis_url[:30] + "...")
        return redis_client
    except Exception as e:
        logger.warning("redis_client_init_failed", error=str(e))
        return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle resources.

    - Connects Redis for broadcasting unless a broadcaster was injected
    - Closes Redis on shutdown
    """
    settings = get_settings()

    redis_client = None
    if app.state.broadcaster is None:
        redis_client = create_redis_client(settings.redis_url)
        app.state.broadcaster = Broadcaster(redis_client=redis_client)
    set_broadcaster(app.state.broadcaster)
    app.state.redis_client = redis_client

    logger.info(
        "broadcaster_initialized",
        enabled=app.state.broadcaster.enabled,
    )

    yield

    set_broadcaster(None)
    if redis_client is not None:
        try:
            redis_client.close()
        except Exception as e:
            logger.warning("redis_client_close_failed", error=str(e))


def create_app(
    skip_auth_middleware: bool = False,
    token_verifier: TokenVerifier | None = None,
    storage_client: StorageClientBase | None = None,
    broadcaster: Broadcaster | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        skip_auth_middleware: If True, skip adding auth middleware (for testing).
        token_verifier: Optional custom token verifier (for testing).
        storage_client: Optional storage client (defaults from settings).
        broadcaster: Optional broadcaster; when None, one is built at startup from REDIS_URL.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Redline API",
        description="Annotation and comment service for design review",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.storage_client = storage_client or get_storage_client()
    app.state.broadcaster = broadcaster
    configure_access_cache(settings.access_cache_ttl_s, settings.access_cache_max_entries)

    # Register exception handlers
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Handle JSON decode errors from malformed JSON bodies
    @app.middleware("http")
    async def catch_json_decode_errors(request: Request, call_next):
        """Catch JSON decode errors before they reach route handlers."""
        if request.method in ("POST", "PUT", "PATCH"):
            content_type = request.headers.get("content-type", "")
            if "application/json" in content_type:
                body = await request.body()
                if body:
                    try:
                        json.loads(body)
                    except json.JSONDecodeError:
                        return JSONResponse(
                            status_code=400,
                            content=error_response(
                                ApiErrorCode.E_INVALID_REQUEST, "Malformed JSON body"
                            ),
                        )
        return await call_next(request)

    # Use router factory to avoid import-time settings loading
    app.include_router(create_api_router())

    # Add auth middleware (runs on all requests except public paths)
    if not skip_auth_middleware:
        verifier = token_verifier or create_token_verifier()

        app.add_middleware(
            AuthMiddleware,
            verifier=verifier,
            bootstrap_callback=create_bootstrap_callback(),
        )

        logger.info("auth_middleware_enabled", env=settings.redline_env.value)

    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Add request-id middleware to the app.

    This should be called AFTER all other middleware is added, so it runs FIRST.
    This ensures every response includes X-Request-ID, including auth failures.

    Args:
        app: The FastAPI application.
        log_requests: Whether to log access entries for each request.
    """
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
    logger.info("request_id_middleware_enabled")
