"""
OAuth provider client for sessionauth.

This module talks to the OAuth 2.0 / OpenID Connect provider: discovery,
authorization URLs, the authorization-code and refresh grants, user info,
token revocation and the end-session URL.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from ..core import (
    get_logger,
    AuthConfig,
    ProviderError,
    RefreshTokenInvalidError,
    log_auth_event,
    log_provider_call,
)
from ..models import OpenIDConfiguration, TokenResponse

# Refresh grant statuses meaning the refresh token itself was rejected.
INVALID_GRANT_STATUSES = (400, 401)


class OAuthClient:
    """OAuth client for the configured provider."""

    def __init__(
        self,
        config: AuthConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
        user_agent: str = "sessionauth",
    ):
        self.config = config
        self.logger = get_logger(__name__)
        self._clock = clock

        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.provider_timeout),
            headers={"User-Agent": user_agent}
        )

        # OpenID configuration cache
        self._openid_config: Optional[OpenIDConfiguration] = None
        self._openid_fetched_at: Optional[float] = None

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _request(self, method: str, url: str, endpoint: str, **kwargs: Any) -> httpx.Response:
        start_time = time.time()
        status_code = None
        try:
            response = await self.client.request(method, url, **kwargs)
            status_code = response.status_code
            return response
        except httpx.TimeoutException as e:
            raise ProviderError(
                f"Timed out calling provider {endpoint} endpoint",
                error_code="provider_timeout",
                details={"endpoint": endpoint}
            ) from e
        except httpx.RequestError as e:
            raise ProviderError(
                f"Network error calling provider {endpoint} endpoint: {str(e)}",
                error_code="network_error",
                details={"endpoint": endpoint}
            ) from e
        finally:
            log_provider_call(
                self.logger,
                endpoint=endpoint,
                method=method,
                status_code=status_code,
                duration_ms=round((time.time() - start_time) * 1000, 2)
            )

    @staticmethod
    def _error_body(response: httpx.Response) -> Dict[str, Any]:
        if response.headers.get("content-type", "").startswith("application/json"):
            try:
                body = response.json()
            except ValueError:
                return {}
            return body if isinstance(body, dict) else {}
        return {}

    @staticmethod
    def _json(response: httpx.Response, endpoint: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                f"Provider {endpoint} endpoint returned invalid JSON",
                error_code="invalid_provider_response",
                provider_status=response.status_code,
                details={"endpoint": endpoint}
            ) from e

    async def get_openid_configuration(self) -> OpenIDConfiguration:
        """
        Resolve the provider endpoints.

        Discovery results are cached for ``discovery_cache_ttl`` seconds. With
        discovery disabled the endpoints follow the issuer's conventional layout.

        Raises:
            ProviderError: If the discovery document cannot be fetched or parsed
        """
        if not self.config.discovery:
            return OpenIDConfiguration.from_issuer(self.config.issuer)

        now = self._clock()
        if (
            self._openid_config is not None
            and self._openid_fetched_at is not None
            and now - self._openid_fetched_at < self.config.discovery_cache_ttl
        ):
            return self._openid_config

        url = f"{self.config.issuer}/.well-known/openid-configuration"
        response = await self._request("GET", url, "discovery")
        if response.status_code != 200:
            raise ProviderError(
                f"Failed to fetch OpenID configuration: {response.status_code}",
                error_code="discovery_failed",
                provider_status=response.status_code
            )

        try:
            openid_config = OpenIDConfiguration.model_validate(self._json(response, "discovery"))
        except ValidationError as e:
            raise ProviderError(
                "OpenID configuration is missing required endpoints",
                error_code="discovery_failed",
                details={"errors": e.error_count()}
            ) from e

        self._openid_config = openid_config
        self._openid_fetched_at = now
        return openid_config

    async def authorization_url(self, state: str, redirect_uri: Optional[str] = None) -> str:
        """
        Build the provider authorization URL.

        Args:
            state: CSRF state bound to the user's session
            redirect_uri: Callback override; defaults to the configured callback

        Returns:
            Authorization URL
        """
        openid_config = await self.get_openid_configuration()

        params = {
            "response_type": "code",
            "client_id": self.config.client_id,
            "redirect_uri": redirect_uri or self.config.callback_uri,
            "scope": self.config.scope,
            "state": state,
        }
        if self.config.audience:
            params["audience"] = self.config.audience

        return f"{openid_config.authorization_endpoint}?{urlencode(params)}"

    async def _token_request(self, data: Dict[str, str], endpoint: str) -> httpx.Response:
        openid_config = await self.get_openid_configuration()
        data = {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            **data,
        }
        return await self._request(
            "POST",
            openid_config.token_endpoint,
            endpoint,
            data=data,
            headers={"Content-Type": "application/x-www-form-urlencoded"}
        )

    def _token_response(self, response: httpx.Response, endpoint: str) -> TokenResponse:
        try:
            return TokenResponse.model_validate(self._json(response, endpoint))
        except ValidationError as e:
            raise ProviderError(
                "Token response is missing required fields",
                error_code="invalid_provider_response",
                provider_status=response.status_code,
                details={"endpoint": endpoint}
            ) from e

    async def exchange_code(self, code: str, redirect_uri: Optional[str] = None) -> TokenResponse:
        """
        Exchange an authorization code for tokens.

        Raises:
            ProviderError: If the provider rejects the code or cannot be reached
        """
        response = await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri or self.config.callback_uri,
            },
            "token"
        )

        if response.status_code != 200:
            error_data = self._error_body(response)
            log_auth_event(
                self.logger,
                "token_exchange_failed",
                success=False,
                details={"status_code": response.status_code, "error": error_data.get("error")}
            )
            raise ProviderError(
                f"Token exchange failed: {response.status_code}",
                error_code="token_exchange_failed",
                provider_status=response.status_code,
                details={"provider_error": error_data.get("error")}
            )

        return self._token_response(response, "token")

    async def refresh(self, refresh_token: str) -> TokenResponse:
        """
        Run the refresh grant.

        Args:
            refresh_token: Refresh token

        Returns:
            New tokens; ``refresh_token`` is set only when the provider rotates it

        Raises:
            RefreshTokenInvalidError: If the provider rejects the refresh token (400/401)
            ProviderError: For any other failure
        """
        response = await self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
            "refresh"
        )

        if response.status_code in INVALID_GRANT_STATUSES:
            error_data = self._error_body(response)
            raise RefreshTokenInvalidError(
                provider_status=response.status_code,
                details={"provider_error": error_data.get("error")}
            )

        if response.status_code != 200:
            raise ProviderError(
                f"Token refresh failed: {response.status_code}",
                error_code="token_refresh_failed",
                provider_status=response.status_code
            )

        return self._token_response(response, "refresh")

    async def get_user_info(self, access_token: str) -> Dict[str, Any]:
        """
        Get user information using an access token.

        Raises:
            ProviderError: If the request fails or the payload has neither ``sub`` nor ``id``
        """
        openid_config = await self.get_openid_configuration()
        response = await self._request(
            "GET",
            openid_config.userinfo_endpoint,
            "userinfo",
            headers={"Authorization": f"Bearer {access_token}"}
        )

        if response.status_code != 200:
            raise ProviderError(
                f"Failed to get user info: {response.status_code}",
                error_code="userinfo_failed",
                provider_status=response.status_code
            )

        user_info = self._json(response, "userinfo")
        if not isinstance(user_info, dict) or not (user_info.get("sub") or user_info.get("id")):
            raise ProviderError(
                "Invalid user data received from provider",
                error_code="invalid_user_info",
                provider_status=response.status_code
            )
        return user_info

    async def revoke_token(self, token: str) -> None:
        """
        Revoke an access or refresh token.

        Raises:
            ProviderError: If the provider has no revocation endpoint or refuses
        """
        openid_config = await self.get_openid_configuration()
        if not openid_config.revocation_endpoint:
            raise ProviderError(
                "Provider does not advertise a revocation endpoint",
                error_code="revocation_unsupported"
            )

        response = await self._request(
            "POST",
            openid_config.revocation_endpoint,
            "revoke",
            data={
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "token": token,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"}
        )

        if response.status_code != 200:
            raise ProviderError(
                f"Failed to revoke token: {response.status_code}",
                error_code="revocation_failed",
                provider_status=response.status_code
            )

    async def end_session_url(self, return_to: Optional[str] = None) -> Optional[str]:
        """Provider logout URL, or None when the provider has no end-session endpoint."""
        openid_config = await self.get_openid_configuration()
        if not openid_config.end_session_endpoint:
            return None

        params = {"client_id": self.config.client_id}
        if return_to:
            params["returnTo"] = return_to

        separator = "&" if "?" in openid_config.end_session_endpoint else "?"
        return f"{openid_config.end_session_endpoint}{separator}{urlencode(params)}"
