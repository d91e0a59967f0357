"""
Company-scoped Redis cache.

Keys look like ``{prefix}:company:{company_id}:{module}:{key}``. Every
operation degrades to a cache miss when Redis is disabled or unreachable,
so callers always have a database fallback.
"""
import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Optional

import redis
from redis.exceptions import RedisError
from flask import Flask, current_app

logger = logging.getLogger(__name__)

DECIMAL_TAG = '__decimal__'


def _encode(value: Any) -> str:
    def default(obj):
        if isinstance(obj, Decimal):
            return {DECIMAL_TAG: str(obj)}
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        raise TypeError(f"Cannot cache {type(obj).__name__}")
    return json.dumps(value, default=default)


def _decode(raw: str) -> Any:
    def hook(obj):
        if DECIMAL_TAG in obj:
            return Decimal(obj[DECIMAL_TAG])
        return obj
    return json.loads(raw, object_hook=hook)


class CacheService:
    """Thin wrapper around a Redis client with per-company key isolation."""

    def __init__(self, app: Optional[Flask] = None, client: Optional[redis.Redis] = None):
        self.client = client
        self.prefix = 'quotes'
        self.default_ttl = 60
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        self.prefix = app.config.get('CACHE_KEY_PREFIX', 'quotes')
        self.default_ttl = app.config.get('CACHE_DEFAULT_TTL', 60)

        if not app.config.get('CACHE_ENABLED', True):
            logger.info("[CACHE] Disabled by configuration")
            self.client = None
            return

        url = app.config.get('REDIS_URL', 'redis://redis:6379/0')
        try:
            client = redis.from_url(
                url,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=3,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            client.ping()
        except RedisError as e:
            logger.warning(f"[CACHE] Redis unreachable at {url}: {e}. Running uncached.")
            self.client = None
            return

        self.client = client
        logger.info(f"[CACHE] Connected to {url}")

    def is_available(self) -> bool:
        if self.client is None:
            return False
        try:
            return bool(self.client.ping())
        except RedisError:
            return False

    def key(self, company_id: int, module: str, key: str) -> str:
        return f"{self.prefix}:company:{company_id}:{module}:{key}"

    def get(self, company_id: int, module: str, key: str) -> Optional[Any]:
        if not self.is_available():
            return None
        try:
            raw = self.client.get(self.key(company_id, module, key))
            return None if raw is None else _decode(raw)
        except (RedisError, ValueError) as e:
            logger.warning(f"[CACHE] Read failed for {module}:{key}: {e}")
            return None

    def set(self, company_id: int, module: str, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if not self.is_available():
            return False
        try:
            self.client.setex(self.key(company_id, module, key), ttl or self.default_ttl, _encode(value))
        except (RedisError, TypeError) as e:
            logger.warning(f"[CACHE] Write failed for {module}:{key}: {e}")
            return False
        return True

    def delete(self, company_id: int, module: str, key: str) -> bool:
        if not self.is_available():
            return False
        try:
            self.client.delete(self.key(company_id, module, key))
        except RedisError as e:
            logger.warning(f"[CACHE] Delete failed for {module}:{key}: {e}")
            return False
        return True

    def memoize(self, company_id: int, module: str, key: str, loader: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """Return the cached value, or load it, store it and return it."""
        cached = self.get(company_id, module, key)
        if cached is not None:
            return cached
        value = loader()
        self.set(company_id, module, key, value, ttl)
        return value


def init_cache(app: Flask) -> None:
    app.extensions['cache'] = CacheService(app)


def get_cache() -> CacheService:
    cache = current_app.extensions.get('cache')
    if cache is None:
        raise RuntimeError("Cache not initialized.")
    return cache
