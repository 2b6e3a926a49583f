'''
Unit tests for session storage drivers.
'''

from __future__ import annotations

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from sessionauth.core import (
    ConfigurationError,
    CookieStorageConfig,
    MemoryStorageConfig,
    RedisStorageConfig,
    StorageError,
)
from sessionauth.session import MemoryStorage, RedisStorage, create_storage


class FakeRedis:
    '''
    Minimal stand-in for redis.asyncio.Redis.
    '''

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.data = {}
        self.scan_patterns = []
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError('connection refused')

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.data[key] = (value, ex)

    async def delete(self, key):
        self._check()
        self.data.pop(key, None)

    async def scan_iter(self, match=None, count=None):
        self._check()
        self.scan_patterns.append(match)
        for key in list(self.data):
            yield key

    async def aclose(self):
        self.closed = True


class TestMemoryStorage:
    '''
    Test the in-memory driver.
    '''

    @pytest.mark.asyncio
    async def test_set_get_remove(self, clock) -> None:
        '''
        Values round trip and removal is idempotent.
        '''
        storage = MemoryStorage(clock=clock)

        await storage.set('sess:a', 'value', 60)
        assert await storage.get('sess:a') == 'value'

        await storage.remove('sess:a')
        await storage.remove('sess:a')
        assert await storage.get('sess:a') is None

    @pytest.mark.asyncio
    async def test_ttl_expiry(self, clock) -> None:
        '''
        Entries disappear once their TTL has elapsed.
        '''
        storage = MemoryStorage(clock=clock)
        await storage.set('sess:a', 'value', 60)

        clock.advance(59)
        assert await storage.get('sess:a') == 'value'

        clock.advance(1)
        assert await storage.get('sess:a') is None

    @pytest.mark.asyncio
    async def test_non_positive_ttl_removes(self, clock) -> None:
        '''
        Setting with a zero TTL deletes the key.
        '''
        storage = MemoryStorage(clock=clock)
        await storage.set('sess:a', 'value', 60)
        await storage.set('sess:a', 'value', 0)

        assert await storage.get('sess:a') is None

    @pytest.mark.asyncio
    async def test_keys_by_prefix_skip_expired(self, clock) -> None:
        '''
        Key listing filters by prefix and hides expired entries.
        '''
        storage = MemoryStorage(clock=clock)
        await storage.set('sess:a', '1', 10)
        await storage.set('sess:b', '2', 100)
        await storage.set('other:c', '3', 100)

        clock.advance(50)

        assert await storage.keys('sess:') == ['sess:b']


class TestRedisStorage:
    '''
    Test the Redis driver against a fake client.
    '''

    @pytest.mark.asyncio
    async def test_set_uses_native_ttl(self) -> None:
        '''
        Values are written with an expiry in seconds.
        '''
        client = FakeRedis()
        storage = RedisStorage(RedisStorageConfig(), client=client)

        await storage.set('sess:a', 'value', 120)

        assert client.data['sess:a'] == ('value', 120)

    @pytest.mark.asyncio
    async def test_keys_escape_glob_characters(self) -> None:
        '''
        The prefix is matched literally.
        '''
        client = FakeRedis()
        storage = RedisStorage(RedisStorageConfig(), client=client)

        await storage.keys('sess[1]:')

        assert client.scan_patterns == ['sess\\[1\\]:*']

    @pytest.mark.asyncio
    @pytest.mark.parametrize('operation, args', [
        ('get', ('sess:a',)),
        ('set', ('sess:a', 'value', 60)),
        ('remove', ('sess:a',)),
        ('keys', ('sess:',)),
    ])
    async def test_redis_errors_become_storage_errors(self, operation, args) -> None:
        '''
        Backend failures surface as StorageError.
        '''
        storage = RedisStorage(RedisStorageConfig(), client=FakeRedis(fail=True))

        with pytest.raises(StorageError) as exc_info:
            await getattr(storage, operation)(*args)

        assert exc_info.value.status_code == 503
        assert exc_info.value.details['operation'] == operation

    @pytest.mark.asyncio
    async def test_close(self) -> None:
        '''
        Closing releases the client.
        '''
        client = FakeRedis()
        await RedisStorage(RedisStorageConfig(), client=client).close()

        assert client.closed


class TestCreateStorage:
    '''
    Test driver selection from configuration.
    '''

    def test_memory(self) -> None:
        assert isinstance(create_storage(MemoryStorageConfig()), MemoryStorage)

    def test_redis(self) -> None:
        storage = create_storage(RedisStorageConfig(host='cache', port=6380, db=2))

        assert isinstance(storage, RedisStorage)
        assert storage.config.connection_url() == 'redis://cache:6380/2'

    def test_cookie_only_is_rejected(self) -> None:
        '''
        Cookie-only storage cannot hold server-side session records.
        '''
        with pytest.raises(ConfigurationError) as exc_info:
            create_storage(CookieStorageConfig())

        assert exc_info.value.error_code == 'unsupported_storage'


class TestRedisStorageConfig:
    '''
    Test Redis connection URL building.
    '''

    def test_url_takes_precedence(self) -> None:
        config = RedisStorageConfig(url='redis://example:1/0', host='ignored')

        assert config.connection_url() == 'redis://example:1/0'

    def test_tls_and_credentials(self) -> None:
        config = RedisStorageConfig(host='cache', username='app', password='pw', tls=True)

        assert config.connection_url() == 'rediss://app:pw@cache:6379/0'
