"""
Redis cache for read-mostly query results.

Values are JSON documents stored under `{prefix}:{module}:{key}`. A write that
changes the underlying rows drops the whole module. When Redis is disabled or
unreachable every lookup is a miss and callers read from the database.
"""
import json
import logging
from typing import Any, Callable, List, Optional

import redis
from flask import Flask
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class CacheService:
    """Module-scoped JSON cache with graceful degradation."""

    def __init__(self, app: Optional[Flask] = None, client: Optional[redis.Redis] = None):
        self.client = client
        self.prefix = 'invoices'
        self.default_ttl = 60
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        self.prefix = app.config.get('CACHE_KEY_PREFIX', self.prefix)
        self.default_ttl = app.config.get('CACHE_DEFAULT_TTL', self.default_ttl)

        if not app.config.get('CACHE_ENABLED', True):
            logger.info("[CACHE] Disabled via CACHE_ENABLED")
            self.client = None
            return

        redis_url = app.config.get('REDIS_URL', 'redis://redis:6379/0')
        try:
            self.client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=3,
                retry_on_timeout=True,
            )
            self.client.ping()
            logger.info(f"[CACHE] Redis connected: {redis_url}")
        except RedisError as e:
            logger.warning(f"[CACHE] Redis unavailable at {redis_url}: {e}. Caching disabled.")
            self.client = None

    def is_available(self) -> bool:
        if self.client is None:
            return False
        try:
            return bool(self.client.ping())
        except RedisError:
            return False

    def key(self, module: str, key: str) -> str:
        return f"{self.prefix}:{module}:{key}"

    def _read(self, full_key: str) -> Optional[Any]:
        try:
            raw = self.client.get(full_key)
        except RedisError as e:
            logger.warning(f"[CACHE] Read of {full_key} failed: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"[CACHE] Dropping unreadable entry {full_key}")
            return None

    def _write(self, full_key: str, value: Any, ttl: int) -> None:
        try:
            self.client.setex(full_key, ttl, json.dumps(value))
        except (RedisError, TypeError) as e:
            logger.warning(f"[CACHE] Write of {full_key} failed: {e}")

    def memoize(self, module: str, key: str, loader_fn: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """
        Cache-aside lookup.

        Returns the cached value for `module`/`key`, or calls `loader_fn`,
        stores its JSON-serializable result for `ttl` seconds and returns it.
        """
        if self.client is None:
            return loader_fn()

        full_key = self.key(module, key)
        cached = self._read(full_key)
        if cached is not None:
            logger.debug(f"[CACHE] HIT {full_key}")
            return cached

        logger.debug(f"[CACHE] MISS {full_key}")
        value = loader_fn()
        self._write(full_key, value, ttl or self.default_ttl)
        return value

    def invalidate_module(self, module: str) -> int:
        """Delete every entry of a module. Returns the number of keys removed."""
        if self.client is None:
            return 0

        pattern = self.key(module, '*')
        try:
            keys: List[str] = list(self.client.scan_iter(match=pattern, count=100))
            if keys:
                self.client.delete(*keys)
        except RedisError as e:
            logger.warning(f"[CACHE] Invalidation of {pattern} failed: {e}")
            return 0

        if keys:
            logger.info(f"[CACHE] INVALIDATE {pattern} ({len(keys)} keys)")
        return len(keys)


_cache_service: Optional[CacheService] = None


def init_cache(app: Flask) -> None:
    """Create the cache singleton and register it on the app."""
    global _cache_service
    _cache_service = CacheService(app)
    app.extensions['cache'] = _cache_service


def get_cache() -> CacheService:
    if _cache_service is None:
        raise RuntimeError("Cache not initialized.")
    return _cache_service
