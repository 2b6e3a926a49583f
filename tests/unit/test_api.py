'''
HTTP tests for the session middleware and the authentication routes.
'''

from __future__ import annotations

import asyncio
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

from sessionauth.main import create_app

from ..conftest import ISSUER
from .test_session_store import FailingStorage

COOKIE_NAME = 'auth.session'


def _login(client: TestClient, redirect_uri: str = '/api/auth/protected-data') -> str:
    response = client.get('/api/auth/login', params={'redirect_uri': redirect_uri})
    assert response.status_code == 302
    return parse_qs(urlparse(response.headers['location']).query)['state'][0]


class TestPublicRoutes:
    '''
    Test routes that need no session.
    '''

    def test_health(self, client) -> None:
        '''
        Anonymous requests get security headers and no cookie.
        '''
        response = client.get('/health')

        assert response.status_code == 200
        assert response.json()['status'] == 'healthy'
        assert response.headers['X-Content-Type-Options'] == 'nosniff'
        assert response.headers['X-Frame-Options'] == 'DENY'
        assert 'x-request-id' in response.headers
        assert 'set-cookie' not in response.headers

    def test_request_id_is_propagated(self, client) -> None:
        response = client.get('/health', headers={'X-Request-ID': 'trace-123'})

        assert response.headers['X-Request-ID'] == 'trace-123'

    def test_authenticated_probe(self, client) -> None:
        response = client.get('/api/auth/authenticated')

        assert response.status_code == 200
        assert response.json() == {'authenticated': False}


class TestRouteProtection:
    '''
    Test how unauthenticated requests to protected routes are answered.
    '''

    def test_page_load_redirects_to_login(self, client) -> None:
        response = client.get('/api/auth/protected-data')

        assert response.status_code == 302
        assert response.headers['location'] == '/api/auth/login?redirect_uri=%2Fapi%2Fauth%2Fprotected-data'

    @pytest.mark.parametrize('headers', [{'Accept': 'application/json'}, {'fetch': 'true'}])
    def test_api_call_gets_401(self, client, headers) -> None:
        response = client.get('/api/auth/user', headers=headers)

        assert response.status_code == 401
        assert response.json()['error']['code'] == 'unauthenticated'

    def test_tampered_cookie_is_cleared(self, client) -> None:
        '''
        A cookie that fails verification counts as no session and is deleted.
        '''
        client.cookies.set(COOKIE_NAME, 'forged.cookie')

        response = client.get('/api/auth/authenticated')

        assert response.json() == {'authenticated': False}
        assert f'{COOKIE_NAME}=' in response.headers['set-cookie']
        assert 'Max-Age=0' in response.headers['set-cookie']

    def test_storage_outage_returns_503(self, settings, codec, oauth_client, clock) -> None:
        '''
        Storage failures are not mistaken for a missing session.
        '''
        app = create_app(settings, storage=FailingStorage(fail_get=True), oauth_client=oauth_client, clock=clock)

        with TestClient(app, follow_redirects=False) as client:
            client.cookies.set(COOKIE_NAME, codec.sign('some-session'))
            response = client.get('/api/auth/authenticated')

        assert response.status_code == 503
        assert response.json()['error']['type'] == 'storage_error'


class TestLoginFlow:
    '''
    Test login, callback and logout end to end against the fake provider.
    '''

    def test_login_redirects_to_provider(self, client) -> None:
        response = client.get('/api/auth/login')

        location = urlparse(response.headers['location'])
        params = parse_qs(location.query)
        assert f'{location.scheme}://{location.netloc}{location.path}' == f'{ISSUER}/authorize'
        assert params['redirect_uri'] == ['http://testserver/api/auth/callback']
        assert COOKIE_NAME in response.cookies

    def test_full_login(self, client, provider) -> None:
        '''
        The callback logs the user in under a new session id and returns to the original page.
        '''
        state = _login(client)
        login_cookie = client.cookies.get(COOKIE_NAME)

        response = client.get('/api/auth/callback', params={'code': 'good-code', 'state': state})

        assert response.status_code == 302
        assert response.headers['location'] == '/api/auth/protected-data'
        assert client.cookies.get(COOKIE_NAME) != login_cookie

        response = client.get('/api/auth/protected-data')
        assert response.status_code == 200
        assert response.json()['message'] == 'You have access to protected data'
        assert response.json()['user']['sub'] == 'user-1'

        assert client.get('/api/auth/authenticated').json() == {'authenticated': True}
        assert client.get('/api/auth/user').json()['email'] == 'user@example.com'
        assert len(provider.token_grants('authorization_code')) == 1

    def test_wrong_state_is_rejected(self, client, provider) -> None:
        _login(client)

        response = client.get('/api/auth/callback', params={'code': 'good-code', 'state': 'forged'})

        assert response.status_code == 400
        assert response.json()['error']['code'] == 'invalid_state'
        assert provider.token_grants('authorization_code') == []

    def test_provider_error_in_callback(self, client, provider) -> None:
        _login(client)

        response = client.get('/api/auth/callback', params={'error': 'access_denied'})

        assert response.status_code == 401
        assert response.json()['error']['code'] == 'authorization_denied'
        assert provider.requests == []

    def test_unsafe_redirect_target_is_dropped(self, client) -> None:
        state = _login(client, redirect_uri='https://evil.example.com/')

        response = client.get('/api/auth/callback', params={'code': 'good-code', 'state': state})

        assert response.headers['location'] == '/'

    def test_logout(self, client, provider) -> None:
        '''
        Logout revokes the tokens, clears the cookie and goes to the provider logout.
        '''
        state = _login(client)
        client.get('/api/auth/callback', params={'code': 'good-code', 'state': state})

        response = client.get('/api/auth/logout')

        assert response.status_code == 302
        assert response.headers['location'].startswith(f'{ISSUER}/v2/logout')
        assert 'Max-Age=0' in response.headers['set-cookie']
        assert len(provider.calls_to('/oauth/revoke')) == 2

        client.cookies.clear()
        assert client.get('/api/auth/authenticated').json() == {'authenticated': False}


class TestRefreshTokensRoute:
    '''
    Test the API-key protected batch refresh trigger.
    '''

    def test_missing_key(self, client) -> None:
        response = client.post('/api/auth/refresh-tokens')

        assert response.status_code == 401
        assert response.json()['error']['code'] == 'missing_token'
        assert response.headers['www-authenticate'] == 'Bearer'

    def test_wrong_key(self, client) -> None:
        response = client.post('/api/auth/refresh-tokens', headers={'Authorization': 'Bearer nope'})

        assert response.status_code == 401
        assert response.json()['error']['code'] == 'invalid_api_key'

    def test_key_not_configured(self, settings, storage, oauth_client, clock) -> None:
        auth = settings.auth.model_copy(update={'token_refresh_api_key': None})
        app = create_app(
            settings.model_copy(update={'auth': auth}),
            storage=storage,
            oauth_client=oauth_client,
            clock=clock,
        )

        with TestClient(app) as client:
            response = client.post('/api/auth/refresh-tokens', headers={'Authorization': 'Bearer anything'})

        assert response.status_code == 500
        assert response.json()['error']['code'] == 'missing_configuration'

    @pytest.mark.parametrize('method', ['GET', 'POST'])
    def test_runs_batch_refresh(self, client, make_session, method) -> None:
        asyncio.run(make_session(expires_in=60))
        asyncio.run(make_session(expires_in=3600))

        response = client.request(method, '/api/auth/refresh-tokens', headers={'Authorization': 'Bearer refresh-key'})

        assert response.status_code == 200
        assert response.json() == {'success': True, 'total': 1, 'refreshed': 1, 'failed': 0}


class TestSessionCommit:
    '''
    Test what the middleware writes back once a response is ready.
    '''

    def test_batch_refresh_during_request_is_kept(self, app, store, codec, make_session, provider, clock) -> None:
        '''
        A request that left its session unchanged does not write back tokens rotated meanwhile.
        '''
        @app.get('/in-flight')
        async def in_flight(request: Request) -> dict:
            clock.advance(200)
            result = await request.app.state.auth_service.refresh_expiring_tokens()
            return result.model_dump()

        record = asyncio.run(make_session(expires_in=400))

        with TestClient(app, follow_redirects=False) as client:
            client.cookies.set(COOKIE_NAME, codec.sign(record.id))
            response = client.get('/in-flight')
            follow_up = client.get('/api/auth/authenticated')

        assert response.status_code == 200
        assert response.json()['refreshed'] == 1
        assert COOKIE_NAME in response.cookies
        assert follow_up.json() == {'authenticated': True}
        assert provider.issued == 1

        stored = asyncio.run(store.get(record.id)).data.auth
        assert stored.access_token == 'access-1'
        assert stored.refresh_token == 'refresh-1'

    def test_logout_elsewhere_during_request(self, app, store, codec, make_session) -> None:
        '''
        A session destroyed while a request was in flight is not recreated.
        '''
        @app.get('/logged-out-elsewhere')
        async def logged_out_elsewhere(request: Request) -> dict:
            await request.app.state.session_store.destroy(request.state.session.id)
            return {'ok': True}

        record = asyncio.run(make_session())

        with TestClient(app, follow_redirects=False) as client:
            client.cookies.set(COOKIE_NAME, codec.sign(record.id))
            response = client.get('/logged-out-elsewhere')

        assert response.status_code == 200
        assert 'Max-Age=0' in response.headers['set-cookie']
        assert asyncio.run(store.list_session_ids()) == []

    def test_unchanged_session_rolls_expiry(self, client, store, codec, make_session, clock) -> None:
        record = asyncio.run(make_session())
        clock.advance(600)
        client.cookies.set(COOKIE_NAME, codec.sign(record.id))

        response = client.get('/api/auth/authenticated')

        assert response.json() == {'authenticated': True}
        assert COOKIE_NAME in response.cookies
        assert asyncio.run(store.get(record.id)).expires_at == record.expires_at + timedelta(seconds=600)
