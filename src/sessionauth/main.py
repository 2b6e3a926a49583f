"""
Main FastAPI application for sessionauth.

This module wires the session store, the OAuth service and the middleware
together from one settings object and exposes the application factory.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .api import router as api_router
from .auth import OAuthAuthenticationService, OAuthClient, SessionMiddleware, UserHandler
from .core import (
    get_logger,
    get_settings,
    setup_logging,
    ConfigurationError,
    SessionAuthError,
    Settings,
    generate_request_id,
    log_error,
    log_request_start,
    log_request_end,
)
from .session import CookieCodec, SessionStore, StorageDriver, create_storage


def _lifespan(settings: Settings, owned: list):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        # Startup
        logger = get_logger(__name__)
        logger.info(
            "Starting sessionauth",
            version=settings.app_version,
            environment=settings.environment,
            storage=settings.session.storage.type
        )

        try:
            settings.validate_for_startup()
        except ConfigurationError as e:
            logger.error("Incomplete configuration", **e.details)
            if settings.environment == "production":
                raise

        if not settings.auth.token_refresh_api_key:
            logger.error(
                "Refresh key missing, token refresh route disabled",
                setting="AUTH_TOKEN_REFRESH_API_KEY"
            )

        yield

        # Shutdown
        logger.info("Shutting down sessionauth")
        for resource in owned:
            try:
                if isinstance(resource, OAuthClient):
                    await resource.aclose()
                else:
                    await resource.close()
            except Exception as e:
                logger.warning("Failed to close resource", resource=type(resource).__name__, error=str(e))

    return lifespan


def create_app(
    settings: Optional[Settings] = None,
    *,
    storage: Optional[StorageDriver] = None,
    oauth_client: Optional[OAuthClient] = None,
    user_handler: Optional[UserHandler] = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        settings: Application settings; loaded from the environment when omitted
        storage: Storage driver override; built from settings when omitted
        oauth_client: Provider client override; built from settings when omitted
        user_handler: Optional application user hooks
        clock: Wall clock shared by the session store and the auth service

    Raises:
        ConfigurationError: If the session secrets or storage selection are invalid
    """
    settings = settings or get_settings()
    setup_logging(settings.logging)

    owned = []
    if storage is None:
        storage = create_storage(settings.session.storage, clock=clock)
        owned.append(storage)
    if oauth_client is None:
        oauth_client = OAuthClient(
            settings.auth,
            user_agent=f"{settings.app_name}/{settings.app_version}"
        )
        owned.append(oauth_client)

    store = SessionStore(storage, CookieCodec(settings.session.secrets), settings.session, clock=clock)
    auth_service = OAuthAuthenticationService(
        settings.auth,
        store,
        oauth_client,
        user_handler=user_handler,
        clock=clock,
    )

    # Create FastAPI app
    app = FastAPI(
        title=settings.app_name,
        description=settings.app_description,
        version=settings.app_version,
        lifespan=_lifespan(settings, owned),
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.session_store = store
    app.state.auth_service = auth_service

    # Add session middleware
    app.add_middleware(
        SessionMiddleware,
        store=store,
        auth_service=auth_service,
        session_config=settings.session,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_credentials=True,
        allow_methods=settings.server.cors_methods,
        allow_headers=settings.server.cors_headers,
    )

    # Add request logging middleware
    app.add_middleware(RequestLoggingMiddleware)

    # Include API routers
    app.include_router(api_router)

    # Add health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": settings.app_version,
            "timestamp": time.time()
        }

    # Add error handlers
    @app.exception_handler(SessionAuthError)
    async def sessionauth_error_handler(request: Request, exc: SessionAuthError):
        """Handle sessionauth errors."""
        if exc.status_code >= 500:
            log_error(get_logger(__name__), exc, context={"path": request.url.path})
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers=headers
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions."""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "message": exc.detail,
                    "type": "http_error"
                }
            }
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions."""
        log_error(
            get_logger(__name__),
            exc,
            context={
                "method": request.method,
                "url": str(request.url),
                "client": request.client.host if request.client else "unknown"
            }
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "message": "Internal server error",
                    "type": "internal_error"
                }
            }
        )

    return app


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging HTTP requests."""

    def __init__(self, app):
        super().__init__(app)
        self.logger = get_logger(__name__)

    async def dispatch(self, request: Request, call_next):
        """Process request with logging."""
        start_time = time.time()

        # Get client info
        client_ip = request.client.host if request.client else "unknown"
        user_agent = request.headers.get("user-agent")
        request_id = request.headers.get("x-request-id") or generate_request_id()
        request.state.request_id = request_id

        # Log request start
        log_request_start(
            self.logger,
            method=request.method,
            path=request.url.path,
            client_ip=client_ip,
            user_agent=user_agent,
            request_id=request_id
        )

        # Process request
        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as e:
            self.logger.error(
                "Request processing failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                request_id=request_id
            )
            raise

        # Log request end
        duration_ms = (time.time() - start_time) * 1000
        log_request_end(
            self.logger,
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            duration_ms=duration_ms,
            request_id=request_id
        )

        response.headers["X-Request-ID"] = request_id
        return response
