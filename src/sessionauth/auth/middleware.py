"""
Session middleware for sessionauth.

This module attaches a session handler to every request, gates protected
routes and persists the session and its cookie on the way out. It is the
only place session cookies are written.
"""

from __future__ import annotations

from typing import Callable, Iterable, Optional
from urllib.parse import quote

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ..core import (
    get_logger,
    AuthenticationError,
    SessionAuthError,
    SessionConfig,
    generate_request_id,
    get_security_headers,
    log_security_event,
)
from ..session import SessionHandler, SessionStore
from .service import OAuthAuthenticationService

# Auth routes reachable without a session; they handle authentication themselves.
PUBLIC_AUTH_ROUTES = ("login", "callback", "authenticated", "logout", "refresh-tokens")


class SessionMiddleware(BaseHTTPMiddleware):
    """Middleware for session loading, route protection and cookie handling."""

    def __init__(
        self,
        app,
        store: SessionStore,
        auth_service: OAuthAuthenticationService,
        session_config: SessionConfig,
        auth_prefix: str = "/api/auth",
        public_auth_routes: Iterable[str] = PUBLIC_AUTH_ROUTES,
    ):
        super().__init__(app)
        self.logger = get_logger(__name__)
        self.store = store
        self.auth_service = auth_service
        self.session_config = session_config
        self.public_paths = {f"{auth_prefix}/{route}" for route in public_auth_routes}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request through the session middleware."""
        request_id = (
            getattr(request.state, "request_id", None)
            or request.headers.get("x-request-id")
            or generate_request_id()
        )
        request.state.request_id = request_id
        structlog.contextvars.bind_contextvars(request_id=request_id)

        try:
            try:
                session = await self._load_session(request)
            except SessionAuthError as e:
                return self._add_security_headers(self._error_response(e))

            request.state.session = session

            try:
                if self._is_public(request.url.path) or await self.auth_service.is_authenticated(session):
                    response = await call_next(request)
                else:
                    response = self._unauthenticated(request)
            except SessionAuthError as e:
                response = self._error_response(e)

            try:
                await self._commit(request, session, response)
            except SessionAuthError as e:
                response = self._error_response(e)

            return self._add_security_headers(response)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

    async def _load_session(self, request: Request) -> SessionHandler:
        cookie_value = request.cookies.get(self.session_config.cookie_name)
        record = await self.store.load(cookie_value)
        if cookie_value and record is None:
            log_security_event(
                self.logger,
                "stale_session_cookie",
                "low",
                self._get_client_ip(request),
                details={"path": request.url.path}
            )
        return SessionHandler(self.store, record)

    def _is_public(self, path: str) -> bool:
        return path in self.public_paths or self.auth_service.is_unprotected_route(path)

    @staticmethod
    def _wants_json(request: Request) -> bool:
        return (
            request.headers.get("fetch", "").lower() == "true"
            or "application/json" in request.headers.get("accept", "")
        )

    def _unauthenticated(self, request: Request) -> Response:
        """401 for API fetches, a login redirect for page loads."""
        if self._wants_json(request):
            return self._error_response(AuthenticationError(error_code="unauthenticated"))

        target = request.url.path
        if request.url.query:
            target = f"{target}?{request.url.query}"
        login_path = self.auth_service.config.login_path
        return RedirectResponse(url=f"{login_path}?redirect_uri={quote(target, safe='')}", status_code=302)

    async def _commit(self, request: Request, session: SessionHandler, response: Response) -> None:
        had_cookie = self.session_config.cookie_name in request.cookies

        if session.record is None:
            if had_cookie:
                self._clear_cookie(response)
            return

        # Unmodified sessions only roll their expiry forward
        saved = await session.save() if session.modified else await session.touch()
        if saved is None:
            if had_cookie:
                self._clear_cookie(response)
            return

        response.set_cookie(
            self.session_config.cookie_name,
            saved.cookie_value,
            **self.store.cookie_options()
        )

    def _clear_cookie(self, response: Response) -> None:
        response.delete_cookie(
            self.session_config.cookie_name,
            path=self.session_config.cookie_path,
            domain=self.session_config.cookie_domain,
            secure=self.session_config.cookie_secure,
            httponly=self.session_config.cookie_http_only,
            samesite=self.session_config.cookie_same_site,
        )

    def _error_response(self, error: SessionAuthError) -> JSONResponse:
        if error.status_code >= 500:
            self.logger.error(
                "Session middleware error",
                error_type=error.error_type,
                error_code=error.error_code,
                error=error.message
            )
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    @staticmethod
    def _add_security_headers(response: Response) -> Response:
        for header, value in get_security_headers().items():
            if header not in response.headers:
                response.headers[header] = value
        return response

    @staticmethod
    def _get_client_ip(request: Request) -> Optional[str]:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        return request.client.host if request.client else None
