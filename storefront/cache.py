"""
Redis cache layer for search responses, facets, suggestions and product reads.

Redis is ONLY a cache, never the source of truth. See cache_policy.py for
key patterns and TTLs.

Supports a full connection URL (REDIS_URL, e.g. rediss:// for hosted Redis)
or REDIS_HOST + REDIS_PORT + REDIS_DB.
"""

import hashlib
import json
from typing import Any, Iterable, Optional

import redis
from fastapi import Request

from storefront import cache_policy
from storefront.config import Settings
from storefront.logger import get_logger

logger = get_logger("cache")


class CacheClient:
    """
    Namespaced Redis cache client.

    Every key is stored as ``{namespace}:{key}``. All methods fail open:
    a Redis error is logged and reported as a miss (reads) or as False / 0
    (writes and invalidation).
    """

    def __init__(self, settings: Settings, client: Optional[redis.Redis] = None):
        self.namespace = settings.cache_namespace

        if client is not None:
            self.client = client
        elif settings.redis_url:
            self.client = redis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
        else:
            self.client = redis.Redis(
                host=settings.redis_host,
                port=settings.redis_port,
                db=settings.redis_db,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )

        self.ttl_search = settings.cache_ttl_search
        self.ttl_categories = settings.cache_ttl_categories
        self.ttl_suggestions = settings.cache_ttl_suggestions
        self.ttl_product = settings.cache_ttl_product

    def _key(self, key: str) -> str:
        """Prefix key with namespace."""
        return f"{self.namespace}:{key}"

    def ping(self) -> bool:
        """Check if Redis is reachable."""
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False

    #
    # Raw text entries (stored verbatim so hits are byte-identical)
    #

    def get_text(self, key: str) -> Optional[str]:
        """Get a cached string. Returns None on miss or Redis error."""
        full_key = self._key(key)
        try:
            return self.client.get(full_key)
        except redis.RedisError as e:
            logger.warning("Cache read error for %s: %s", full_key, e)
            return None

    def set_text(self, key: str, value: str, ttl: int) -> bool:
        full_key = self._key(key)
        try:
            self.client.setex(full_key, ttl, value)
            return True
        except redis.RedisError as e:
            logger.warning("Cache write error for %s: %s", full_key, e)
            return False

    def get_json(self, key: str) -> Optional[Any]:
        cached = self.get_text(key)
        if cached is None:
            return None
        try:
            return json.loads(cached)
        except ValueError:
            logger.warning("Discarding undecodable cache entry %s", self._key(key))
            return None

    def set_json(self, key: str, value: Any, ttl: int) -> bool:
        return self.set_text(key, json.dumps(value, default=str, ensure_ascii=False), ttl)

    def delete(self, key: str) -> bool:
        full_key = self._key(key)
        try:
            return bool(self.client.delete(full_key))
        except redis.RedisError as e:
            logger.warning("Cache delete error for %s: %s", full_key, e)
            return False

    #
    # Search response cache
    #

    @staticmethod
    def make_search_key(fields: dict) -> str:
        """
        Deterministic key for a search filter set.

        Fields are serialized with sorted keys and ``None`` values dropped, so
        the same filters produce the same key regardless of ordering.
        """
        stable = {k: v for k, v in sorted(fields.items()) if v is not None}
        raw = json.dumps(stable, sort_keys=True, ensure_ascii=False)
        return f"{cache_policy.SEARCH_PREFIX}:{hashlib.sha256(raw.encode()).hexdigest()[:16]}"

    #
    # Invalidation
    #

    def invalidate_prefixes(self, prefixes: Iterable[str]) -> int:
        """Delete every key under the given prefixes. Returns count deleted."""
        deleted = 0
        for prefix in prefixes:
            pattern = self._key(f"{prefix}:*")
            try:
                keys = list(self.client.scan_iter(match=pattern, count=100))
                if keys:
                    deleted += self.client.delete(*keys)
            except redis.RedisError as e:
                logger.warning("Cache invalidation error for %s: %s", pattern, e)
        return deleted

    def invalidate_catalog(self) -> int:
        """Drop cached searches and product reads after a catalog write."""
        deleted = self.invalidate_prefixes(cache_policy.WRITE_INVALIDATION_PREFIXES)
        logger.debug("Invalidated %d cache entries after catalog write", deleted)
        return deleted


def get_cache(request: Request) -> CacheClient:
    """FastAPI dependency: the application's cache client."""
    return request.app.state.cache
