"""
Authentication API endpoints for sessionauth.

This module implements the OAuth login flow, the user and authentication
probes, logout and the token refresh trigger used by schedulers.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header
from fastapi.responses import RedirectResponse

from ..auth import OAuthAuthenticationService
from ..core import (
    get_logger,
    AuthConfig,
    AuthenticationError,
    ConfigurationError,
    constant_time_equals,
    log_auth_event,
    log_security_event,
    validate_bearer_token,
)
from ..models import (
    AuthenticatedResponse,
    ErrorResponse,
    ProtectedDataResponse,
    RefreshTokensResponse,
)
from ..session import SessionHandler
from .dependencies import get_auth_config, get_auth_service, get_session

# Create router
router = APIRouter(prefix="/auth", tags=["authentication"])
logger = get_logger(__name__)


@router.get(
    "/login",
    summary="Initiate OAuth login",
    description="Store a CSRF state in the session and redirect to the provider.",
)
async def login(
    redirect_uri: Optional[str] = None,
    session: SessionHandler = Depends(get_session),
    auth_service: OAuthAuthenticationService = Depends(get_auth_service),
) -> RedirectResponse:
    """
    Initiate OAuth login flow.

    ``redirect_uri`` is where the browser returns after login; only
    same-origin paths are honoured.
    """
    auth_url = await auth_service.begin_login(session, redirect_uri)
    return RedirectResponse(url=auth_url, status_code=302)


@router.get(
    "/callback",
    responses={
        400: {"model": ErrorResponse, "description": "Invalid state"},
        401: {"model": ErrorResponse, "description": "Authorization failed"},
        502: {"model": ErrorResponse, "description": "Provider error"},
    },
    summary="OAuth callback",
    description="Handle the OAuth callback from the provider.",
)
async def oauth_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    session: SessionHandler = Depends(get_session),
    auth_service: OAuthAuthenticationService = Depends(get_auth_service),
) -> RedirectResponse:
    """
    Handle OAuth callback.

    Verifies the state, exchanges the code for tokens, stores them in a
    regenerated session and redirects to the page that started the login.
    """
    if error:
        if session.record is not None:
            session.update(lambda data: data.evolve(state=None))
        log_auth_event(
            logger,
            "oauth_callback_error",
            session_id=session.id,
            success=False,
            details={"error": error, "error_description": error_description},
        )
        raise AuthenticationError(
            f"Authorization failed: {error}",
            error_code="authorization_denied",
            details={"provider_error": error},
        )

    redirect_url = await auth_service.handle_callback(session, code, state)
    return RedirectResponse(url=redirect_url, status_code=302)


@router.get(
    "/logout",
    summary="Logout user",
    description="Revoke tokens, destroy the session and redirect to the provider logout.",
)
async def logout(
    session: SessionHandler = Depends(get_session),
    auth_service: OAuthAuthenticationService = Depends(get_auth_service),
) -> RedirectResponse:
    logout_url = await auth_service.logout(session)
    return RedirectResponse(url=logout_url, status_code=302)


@router.get(
    "/user",
    response_model=Dict[str, Any],
    responses={401: {"model": ErrorResponse, "description": "Unauthorized"}},
    summary="Get current user",
)
async def get_user(
    session: SessionHandler = Depends(get_session),
    auth_service: OAuthAuthenticationService = Depends(get_auth_service),
) -> Dict[str, Any]:
    user = await auth_service.get_authenticated_user(session)
    if user is None:
        raise AuthenticationError("Unauthorized", error_code="unauthenticated")
    return user


@router.get(
    "/authenticated",
    response_model=AuthenticatedResponse,
    summary="Get authentication status",
)
async def get_authenticated(
    session: SessionHandler = Depends(get_session),
    auth_service: OAuthAuthenticationService = Depends(get_auth_service),
) -> AuthenticatedResponse:
    return AuthenticatedResponse(authenticated=await auth_service.is_authenticated(session))


@router.get(
    "/protected-data",
    response_model=ProtectedDataResponse,
    responses={401: {"model": ErrorResponse, "description": "Unauthorized"}},
    summary="Protected data probe",
)
async def get_protected_data(
    session: SessionHandler = Depends(get_session),
    auth_service: OAuthAuthenticationService = Depends(get_auth_service),
) -> ProtectedDataResponse:
    user = await auth_service.get_authenticated_user(session)
    if user is None:
        raise AuthenticationError("Unauthorized", error_code="unauthenticated")
    return ProtectedDataResponse(message="You have access to protected data", user=user)


@router.api_route(
    "/refresh-tokens",
    methods=["GET", "POST"],
    response_model=RefreshTokensResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Missing or invalid API key"},
        500: {"model": ErrorResponse, "description": "API key not configured"},
    },
    summary="Refresh expiring tokens",
    description="Refresh the tokens of every session about to expire. Requires the refresh API key.",
)
async def refresh_tokens(
    authorization: Optional[str] = Header(None),
    auth_config: AuthConfig = Depends(get_auth_config),
    auth_service: OAuthAuthenticationService = Depends(get_auth_service),
) -> RefreshTokensResponse:
    """
    Run the batch token refresh.

    Meant to be called by a scheduler with ``Authorization: Bearer <key>``.
    """
    api_key = auth_config.token_refresh_api_key
    if not api_key:
        logger.error("Token refresh requested without a key", setting="AUTH_TOKEN_REFRESH_API_KEY")
        raise ConfigurationError(
            "Token refresh API key is not configured",
            error_code="missing_configuration",
            details={"missing": ["AUTH_TOKEN_REFRESH_API_KEY"]},
        )

    token = validate_bearer_token(authorization)
    if not constant_time_equals(token, api_key):
        log_security_event(logger, "invalid_refresh_api_key", "high")
        raise AuthenticationError("Invalid API key", error_code="invalid_api_key")

    result = await auth_service.refresh_expiring_tokens()
    return RefreshTokensResponse(success=True, **result.model_dump())
