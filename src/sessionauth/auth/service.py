"""
OAuth authentication service for sessionauth.

Backend-for-frontend style login: tokens live in the server-side session,
the browser only holds the signed session cookie. The service owns the
token fields of the session's auth state, refreshes them before they
expire and runs the batch refresh job.
"""

from __future__ import annotations

import asyncio
import posixpath
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, TypeVar

from ..core import (
    get_logger,
    AuthConfig,
    AuthenticationError,
    ConfigurationError,
    CsrfMismatchError,
    ProviderError,
    RefreshTokenInvalidError,
    constant_time_equals,
    generate_state,
    is_safe_redirect_path,
    log_auth_event,
    log_error,
    log_security_event,
    mask_sensitive_data,
)
from ..models import AuthState, RefreshJobResult, RefreshOutcome, SessionRecord
from ..session import SessionHandler, SessionStore
from .oauth import OAuthClient

T = TypeVar("T")


class UserHandler(Protocol):
    """
    Application hooks for mapping provider users to local users.

    Both hooks are optional; implement either or both.
    """

    async def create_or_update_user(self, user_info: Dict[str, Any]) -> Dict[str, Any]: ...

    async def map_user_to_local(self, user_info: Dict[str, Any]) -> Dict[str, Any]: ...


class OAuthAuthenticationService:
    """OAuth login, token refresh and logout on top of the session store."""

    def __init__(
        self,
        config: AuthConfig,
        store: SessionStore,
        oauth_client: OAuthClient,
        user_handler: Optional[UserHandler] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.store = store
        self.oauth_client = oauth_client
        self.user_handler = user_handler
        self.logger = get_logger(__name__)
        self._clock = clock

        self._whitelist_extensions = {
            (ext if ext.startswith(".") else f".{ext}").lower()
            for ext in config.whitelist_file_types
        }

    def _check_configuration(self) -> None:
        missing = [
            name for name in ("issuer", "client_id", "client_secret", "callback_uri")
            if not getattr(self.config, name)
        ]
        if missing:
            raise ConfigurationError(
                "OAuth authentication is not configured",
                error_code="missing_configuration",
                details={"missing": [f"AUTH_{name.upper()}" for name in missing]}
            )

    async def _provider(self, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.config.provider_timeout)
        except asyncio.TimeoutError as e:
            raise ProviderError(
                "OAuth provider did not respond in time",
                error_code="provider_timeout",
                details={"timeout": self.config.provider_timeout}
            ) from e

    def is_unprotected_route(self, path: str) -> bool:
        """
        Check whether a path bypasses authentication.

        Matches whitelisted file extensions, exact routes (ignoring a trailing
        slash) and ``prefix*`` wildcards, which need content after the prefix.
        """
        if self._whitelist_extensions:
            extension = posixpath.splitext(path)[1].lower()
            if extension in self._whitelist_extensions:
                return True

        for route in self.config.unprotected_routes:
            if route.endswith("*"):
                prefix = route[:-1]
                if path.startswith(prefix):
                    remainder = path[len(prefix):]
                    if remainder and remainder != "/":
                        return True
                continue

            if path == route or path.rstrip("/") + "/" == route.rstrip("/") + "/":
                return True

        return False

    async def get_authorization_url(self, state: str, redirect_uri: Optional[str] = None) -> str:
        """
        Build the provider login URL.

        Args:
            state: CSRF state, already stored in the session
            redirect_uri: OAuth callback override; defaults to the configured callback

        Returns:
            Authorization URL
        """
        self._check_configuration()
        return await self._provider(self.oauth_client.authorization_url(state, redirect_uri))

    async def begin_login(self, session: SessionHandler, redirect_to: Optional[str] = None) -> str:
        """
        Start a login: store a fresh CSRF state and the post-login target.

        Only same-origin relative paths are kept as the post-login target.
        """
        state = generate_state()
        target = redirect_to if is_safe_redirect_path(redirect_to) else None
        session.update(lambda data: data.evolve(state=state, redirect_url=target))

        url = await self.get_authorization_url(state)
        log_auth_event(self.logger, "login_started", session_id=session.id)
        return url

    async def exchange_code_for_tokens(self, session: SessionHandler, code: Optional[str], state: Optional[str]) -> AuthState:
        """
        Verify the callback state and exchange the code for tokens.

        The stored state is cleared before the comparison, whatever its outcome.

        Raises:
            CsrfMismatchError: If ``state`` does not match the stored state; no provider call is made
            ProviderError: If the token exchange fails
        """
        expected = session.data.state
        if session.record is not None:
            session.update(lambda data: data.evolve(state=None))

        if not state or not constant_time_equals(state, expected):
            log_security_event(
                self.logger,
                "csrf_state_mismatch",
                "medium",
                details={"session": mask_sensitive_data(session.id) if session.id else None}
            )
            raise CsrfMismatchError()

        if not code:
            raise AuthenticationError("Missing authorization code", error_code="missing_code")

        self._check_configuration()
        tokens = await self._provider(self.oauth_client.exchange_code(code))
        return AuthState().with_tokens(
            access_token=tokens.access_token,
            expires_in=tokens.expires_in,
            now=self._clock(),
            id_token=tokens.id_token,
            refresh_token=tokens.refresh_token,
        )

    async def handle_callback(self, session: SessionHandler, code: Optional[str], state: Optional[str]) -> str:
        """
        Complete a login from the provider callback.

        Returns:
            The post-login redirect target
        """
        auth = await self.exchange_code_for_tokens(session, code, state)
        user_info = await self._provider(self.oauth_client.get_user_info(auth.access_token))

        user = user_info
        create_or_update = getattr(self.user_handler, "create_or_update_user", None)
        if create_or_update is not None:
            user = await create_or_update(user_info)

        auth = auth.model_copy(update={"user_info": user_info})
        redirect_url = session.data.redirect_url or "/"

        await session.regenerate()
        session.update(lambda data: data.evolve(auth=auth, user=user, redirect_url=None))
        await session.save()

        log_auth_event(
            self.logger,
            "login_success",
            session_id=session.id,
            details={"subject": user_info.get("sub") or user_info.get("id")}
        )
        return redirect_url

    async def refresh_token(self, auth: AuthState) -> AuthState:
        """
        Run the refresh grant for ``auth``.

        Returns:
            Auth state with the new access token and expiry; ID and refresh tokens
            change only when the provider sends new ones

        Raises:
            RefreshTokenInvalidError: If there is no refresh token or the provider rejects it
            ProviderError: For network, timeout or other provider failures
        """
        if not auth.refresh_token:
            raise RefreshTokenInvalidError("No refresh token available")

        tokens = await self._provider(self.oauth_client.refresh(auth.refresh_token))
        return auth.with_tokens(
            access_token=tokens.access_token,
            expires_in=tokens.expires_in,
            now=self._clock(),
            id_token=tokens.id_token,
            refresh_token=tokens.refresh_token,
        )

    async def ensure_fresh(self, session: SessionHandler) -> RefreshOutcome:
        """
        Refresh the session's tokens when they are expired or about to expire.

        A successful refresh is saved immediately. When the provider rejects
        the refresh token and the stored session already holds a newer one,
        another refresher won: the stored tokens are adopted instead.
        """
        auth = session.data.auth
        now = self._clock()

        if not auth.is_authenticated or not auth.expires_within(self.config.refresh_threshold, now):
            return RefreshOutcome.NOT_NEEDED

        if not auth.refresh_token:
            if auth.is_expired(now):
                session.update(lambda data: data.evolve(auth=data.auth.deauthenticated()))
            return RefreshOutcome.NO_REFRESH_TOKEN

        try:
            refreshed = await self.refresh_token(auth)
        except RefreshTokenInvalidError:
            stored = await self.store.get(session.id)
            if stored is None:
                return await self._session_vanished(session)
            if self._superseded(stored, auth):
                session.update(lambda data: data.evolve(auth=stored.data.auth))
                log_auth_event(self.logger, "token_refresh_superseded", session_id=session.id)
                return RefreshOutcome.SUPERSEDED

            session.update(lambda data: data.evolve(auth=data.auth.deauthenticated()))
            await session.save()
            log_auth_event(self.logger, "token_refresh_rejected", session_id=session.id, success=False)
            return RefreshOutcome.FAILED
        except ProviderError as e:
            log_auth_event(
                self.logger,
                "token_refresh_failed",
                session_id=session.id,
                success=False,
                details={"error_code": e.error_code}
            )
            return RefreshOutcome.FAILED

        if await self.store.get(session.id) is None:
            return await self._session_vanished(session)

        session.update(lambda data: data.evolve(auth=refreshed))
        await session.save()
        log_auth_event(self.logger, "token_refreshed", session_id=session.id)
        return RefreshOutcome.REFRESHED

    async def _session_vanished(self, session: SessionHandler) -> RefreshOutcome:
        """Drop a request's session that was logged out while its tokens were refreshed."""
        session_id = session.id
        await session.destroy()
        log_auth_event(self.logger, "token_refresh_session_gone", session_id=session_id, success=False)
        return RefreshOutcome.FAILED

    @staticmethod
    def _superseded(stored: SessionRecord, used: AuthState) -> bool:
        current = stored.data.auth
        return current.is_authenticated and current.refresh_token != used.refresh_token

    async def is_authenticated(self, session: SessionHandler) -> bool:
        """Check authentication, refreshing near-expiry tokens first."""
        if not session.data.auth.is_authenticated:
            return False

        await self.ensure_fresh(session)

        auth = session.data.auth
        return auth.is_authenticated and not auth.is_expired(self._clock())

    async def get_authenticated_user(self, session: SessionHandler) -> Optional[Dict[str, Any]]:
        """
        Return the current user, or None when the session is not authenticated.

        Refresh failures make the session unauthenticated; they are never raised.
        """
        if not await self.is_authenticated(session):
            return None

        user_info = dict(session.data.auth.user_info)
        map_user = getattr(self.user_handler, "map_user_to_local", None)
        if map_user is not None:
            return await map_user(user_info)
        return user_info

    async def logout(self, session: SessionHandler) -> str:
        """
        Log out: revoke tokens, destroy the session and build the provider logout URL.

        Revocation is best effort; its failures are logged and ignored.

        Returns:
            Where to send the browser next
        """
        auth = session.data.auth

        for kind, token in (("access_token", auth.access_token), ("refresh_token", auth.refresh_token)):
            if not token:
                continue
            try:
                await self._provider(self.oauth_client.revoke_token(token))
            except ProviderError as e:
                self.logger.warning("Token revocation failed", token_type=kind, error_code=e.error_code)

        session_id = session.id
        await session.destroy()

        try:
            logout_url = await self._provider(self.oauth_client.end_session_url(self.config.logout_url))
        except ProviderError as e:
            self.logger.warning("Could not resolve provider logout URL", error_code=e.error_code)
            logout_url = None

        log_auth_event(self.logger, "logout", session_id=session_id)
        return logout_url or self.config.logout_url or "/"

    async def refresh_expiring_tokens(self) -> RefreshJobResult:
        """
        Refresh every authenticated session whose tokens expire within the threshold.

        Sessions are processed concurrently, at most ``refresh_concurrency`` at
        a time. A failing session is counted and never stops the others.

        Returns:
            Counts of considered, refreshed and failed sessions

        Raises:
            StorageError: If the stored sessions cannot be listed
        """
        session_ids = await self.store.list_session_ids()
        semaphore = asyncio.Semaphore(self.config.refresh_concurrency)

        async def worker(session_id: str) -> Optional[RefreshOutcome]:
            async with semaphore:
                try:
                    return await self._refresh_stored_session(session_id)
                except Exception as e:
                    log_error(self.logger, e, {"session": mask_sensitive_data(session_id)})
                    return RefreshOutcome.FAILED

        outcomes: List[Optional[RefreshOutcome]] = await asyncio.gather(
            *(worker(session_id) for session_id in session_ids)
        )

        considered = [outcome for outcome in outcomes if outcome is not None]
        refreshed = sum(1 for outcome in considered if outcome is RefreshOutcome.REFRESHED)
        result = RefreshJobResult(
            total=len(considered),
            refreshed=refreshed,
            failed=len(considered) - refreshed,
        )

        self.logger.info(
            "Bulk token refresh completed",
            sessions=len(session_ids),
            total=result.total,
            refreshed=result.refreshed,
            failed=result.failed
        )
        return result

    async def _refresh_stored_session(self, session_id: str) -> Optional[RefreshOutcome]:
        """Refresh one stored session. Returns None when it needs no refresh."""
        record = await self.store.get(session_id)
        if record is None:
            return None

        auth = record.data.auth
        if not auth.is_authenticated or not auth.expires_within(self.config.refresh_threshold, self._clock()):
            return None

        if not auth.refresh_token:
            self.logger.debug("Session has no refresh token", session=mask_sensitive_data(session_id))
            return RefreshOutcome.NO_REFRESH_TOKEN

        try:
            refreshed = await self.refresh_token(auth)
        except RefreshTokenInvalidError:
            stored = await self.store.get(session_id)
            if stored is None:
                return RefreshOutcome.FAILED
            if self._superseded(stored, auth):
                log_auth_event(self.logger, "token_refresh_superseded", session_id=session_id)
                return RefreshOutcome.SUPERSEDED

            await self.store.save(
                self.store.update(stored, lambda data: data.evolve(auth=data.auth.deauthenticated()))
            )
            log_auth_event(self.logger, "token_refresh_rejected", session_id=session_id, success=False)
            return RefreshOutcome.FAILED
        except ProviderError as e:
            log_auth_event(
                self.logger,
                "token_refresh_failed",
                session_id=session_id,
                success=False,
                details={"error_code": e.error_code}
            )
            return RefreshOutcome.FAILED

        # Write onto the latest copy so concurrent application data changes survive.
        stored = await self.store.get(session_id)
        if stored is None:
            self.logger.info("Session ended during token refresh", session=mask_sensitive_data(session_id))
            return RefreshOutcome.FAILED

        await self.store.save(self.store.update(stored, lambda data: data.evolve(auth=refreshed)))
        log_auth_event(self.logger, "token_refreshed", session_id=session_id)
        return RefreshOutcome.REFRESHED
