"""
Unit tests for the Redis cache service, run against an in-memory client.
"""

import fnmatch
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from invoice_tracker.services.cache_service import CacheService


class MemoryRedis:
    """Implements the few Redis commands the cache uses."""

    def __init__(self):
        self.data = {}
        self.ttls = {}
        self.down = False

    def _check(self):
        if self.down:
            raise RedisConnectionError('connection refused')

    def ping(self):
        self._check()
        return True

    def get(self, key):
        self._check()
        return self.data.get(key)

    def setex(self, key, ttl, value):
        self._check()
        self.data[key] = value
        self.ttls[key] = ttl

    def scan_iter(self, match='*', count=None):
        self._check()
        return [key for key in list(self.data) if fnmatch.fnmatch(key, match)]

    def delete(self, *keys):
        self._check()
        for key in keys:
            self.data.pop(key, None)


@pytest.fixture
def client():
    return MemoryRedis()


@pytest.fixture
def cache(client):
    return CacheService(client=client)


class TestMemoize:
    """Tests for cache-aside lookups."""

    def test_loads_once_then_hits(self, cache, client):
        calls = []

        def loader():
            calls.append(1)
            return [{'id': 'L1', 'estimated_cost': '100.00'}]

        first = cache.memoize('lines', 'repository', loader, ttl=30)
        second = cache.memoize('lines', 'repository', loader)

        assert first == second == [{'id': 'L1', 'estimated_cost': '100.00'}]
        assert len(calls) == 1
        assert client.ttls['invoices:lines:repository'] == 30

    def test_default_ttl(self, cache, client):
        cache.memoize('lines', 'repository', lambda: [])

        assert client.ttls['invoices:lines:repository'] == 60

    def test_unreadable_entry_is_reloaded(self, cache, client):
        client.data['invoices:lines:repository'] = '{not json'

        assert cache.memoize('lines', 'repository', lambda: ['fresh']) == ['fresh']

    def test_without_client_always_loads(self):
        cache = CacheService()
        calls = []

        cache.memoize('lines', 'repository', lambda: calls.append(1))
        cache.memoize('lines', 'repository', lambda: calls.append(1))

        assert len(calls) == 2
        assert cache.is_available() is False

    def test_redis_failure_falls_back_to_loader(self, cache, client):
        client.down = True

        assert cache.memoize('lines', 'repository', lambda: ['db']) == ['db']
        assert cache.is_available() is False


class TestInvalidateModule:
    """Tests for dropping a module's entries."""

    def test_drops_only_that_module(self, cache, client):
        cache.memoize('lines', 'repository', lambda: [1])
        cache.memoize('lines', 'other', lambda: [2])
        cache.memoize('invoices', 'summary', lambda: [3])

        removed = cache.invalidate_module('lines')

        assert removed == 2
        assert list(client.data) == ['invoices:invoices:summary']

    def test_failure_returns_zero(self, cache, client):
        cache.memoize('lines', 'repository', lambda: [1])
        client.down = True

        assert cache.invalidate_module('lines') == 0

    def test_without_client(self):
        assert CacheService().invalidate_module('lines') == 0
