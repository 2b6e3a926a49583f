'''
Shared fixtures for sessionauth tests.

The OAuth provider is faked with httpx.MockTransport and time is driven by
a manual clock shared by the storage driver, the session store and the
authentication service.
'''

from __future__ import annotations

import itertools
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl

import httpx
import pytest
from fastapi.testclient import TestClient

from sessionauth.auth import OAuthAuthenticationService, OAuthClient
from sessionauth.core import AuthConfig, LoggingConfig, SessionConfig, Settings
from sessionauth.main import create_app
from sessionauth.models import AuthState, OpenIDConfiguration, SessionData, SessionRecord
from sessionauth.session import CookieCodec, MemoryStorage, SessionHandler, SessionStore

ISSUER = 'https://auth.example.com'


class Clock:
    '''
    Manually advanced wall clock.
    '''

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider:
    '''
    In-memory OAuth provider.

    Refresh tokens are single use: every grant issues a new refresh token
    and consumes the one presented.
    '''

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.valid_refresh_tokens = set()
        self.refresh_status: Dict[str, int] = {}
        self.revoke_status = 200
        self.expires_in = 3600
        self.user_info: Dict[str, Any] = {'sub': 'user-1', 'email': 'user@example.com'}
        self.issued = 0

    def issue(self, refresh_token: str) -> None:
        self.valid_refresh_tokens.add(refresh_token)

    def calls_to(self, path: str) -> List[httpx.Request]:
        return [request for request in self.requests if request.url.path == path]

    def token_grants(self, grant_type: str) -> List[Dict[str, str]]:
        forms = [dict(parse_qsl(request.content.decode())) for request in self.calls_to('/oauth/token')]
        return [form for form in forms if form.get('grant_type') == grant_type]

    def _tokens(self) -> httpx.Response:
        self.issued += 1
        refresh_token = f'refresh-{self.issued}'
        self.valid_refresh_tokens.add(refresh_token)
        return httpx.Response(200, json={
            'access_token': f'access-{self.issued}',
            'id_token': f'id-{self.issued}',
            'refresh_token': refresh_token,
            'expires_in': self.expires_in,
            'token_type': 'Bearer',
        })

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == '/.well-known/openid-configuration':
            return httpx.Response(200, json=OpenIDConfiguration.from_issuer(ISSUER).model_dump())

        if path == '/oauth/token':
            form = dict(parse_qsl(request.content.decode()))
            if form.get('grant_type') == 'authorization_code':
                if form.get('code') != 'good-code':
                    return httpx.Response(400, json={'error': 'invalid_grant'})
                return self._tokens()

            refresh_token = form.get('refresh_token', '')
            if refresh_token in self.refresh_status:
                return httpx.Response(self.refresh_status[refresh_token], json={'error': 'server_error'})
            if refresh_token not in self.valid_refresh_tokens:
                return httpx.Response(400, json={'error': 'invalid_grant'})
            self.valid_refresh_tokens.discard(refresh_token)
            return self._tokens()

        if path == '/userinfo':
            return httpx.Response(200, json=self.user_info)

        if path == '/oauth/revoke':
            return httpx.Response(self.revoke_status)

        return httpx.Response(404)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig(secrets=['test-secret'], max_age=3600)


@pytest.fixture
def auth_config() -> AuthConfig:
    return AuthConfig(
        issuer=ISSUER,
        client_id='client-id',
        client_secret='client-secret',
        callback_uri='http://testserver/api/auth/callback',
        discovery=False,
        token_refresh_api_key='refresh-key',
        logout_url='http://testserver/',
    )


@pytest.fixture
def storage(clock: Clock) -> MemoryStorage:
    return MemoryStorage(clock=clock)


@pytest.fixture
def codec(session_config: SessionConfig) -> CookieCodec:
    return CookieCodec(session_config.secrets)


@pytest.fixture
def store(storage: MemoryStorage, codec: CookieCodec, session_config: SessionConfig, clock: Clock) -> SessionStore:
    return SessionStore(storage, codec, session_config, clock=clock)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def oauth_client(auth_config: AuthConfig, provider: FakeProvider) -> OAuthClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(provider.handler))
    return OAuthClient(auth_config, http_client=http_client)


@pytest.fixture
def auth_service(
    auth_config: AuthConfig,
    store: SessionStore,
    oauth_client: OAuthClient,
    clock: Clock,
) -> OAuthAuthenticationService:
    return OAuthAuthenticationService(auth_config, store, oauth_client, clock=clock)


@pytest.fixture
def make_session(store: SessionStore, provider: FakeProvider, clock: Clock):
    '''
    Factory storing a session, optionally authenticated with a refresh token
    the fake provider accepts.
    '''
    counter = itertools.count(1)

    async def _make(
        authenticated: bool = True,
        expires_in: int = 3600,
        refresh_token: Optional[str] = 'auto',
    ) -> SessionRecord:
        auth = AuthState()
        if authenticated:
            if refresh_token == 'auto':
                refresh_token = f'seed-{next(counter)}'
            if refresh_token:
                provider.issue(refresh_token)
            auth = AuthState(
                is_authenticated=True,
                access_token='seed-access',
                refresh_token=refresh_token,
                expires_at=int(clock()) + expires_in,
                user_info={'sub': 'user-1'},
            )
        return await store.create(SessionData(auth=auth))

    return _make


@pytest.fixture
def load_handler(store: SessionStore):
    '''
    Factory returning a request-style handler for a stored session.
    '''
    async def _load(session_id: str) -> SessionHandler:
        return SessionHandler(store, await store.get(session_id))

    return _load


@pytest.fixture
def settings(session_config: SessionConfig, auth_config: AuthConfig) -> Settings:
    return Settings(
        environment='testing',
        session=session_config,
        auth=auth_config,
        logging=LoggingConfig(level='WARNING', format='text'),
    )


@pytest.fixture
def app(settings: Settings, storage: MemoryStorage, oauth_client: OAuthClient, clock: Clock):
    return create_app(settings, storage=storage, oauth_client=oauth_client, clock=clock)


@pytest.fixture
def client(app) -> TestClient:
    with TestClient(app, follow_redirects=False) as test_client:
        yield test_client
