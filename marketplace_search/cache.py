# marketplace_search/cache.py
"""Redis read-through cache for search responses.

Redis is only a cache: every failure (connection, timeout, bad payload) is
logged and treated as a miss, and writes are fire-and-forget `SETEX`s that are
safe to repeat.

Keys look like `{namespace}:search:{sha256[:32]}` where the hash covers the
normalized query (lower-cased keywords, sorted filter keys, canonical city and
category slug).
"""
import asyncio
import hashlib
import json
from typing import Any, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from .config import SearchConfig
from .locations import canonical_city, normalize_location
from .schemas import SearchQuery
from .utils import get_logger, normalize_text

logger = get_logger(__name__)


def normalized_query(query: SearchQuery, category_slug: Optional[str] = None) -> Dict[str, Any]:
    location = None
    if query.location_hint:
        location = canonical_city(query.location_hint) or normalize_location(query.location_hint)
    keywords = sorted({normalize_text(k) for k in list(query.keywords) + list(query.expanded_keywords) if k})
    return {
        "c": category_slug or normalize_text(query.category_hint) or None,
        "l": location,
        "t": (query.transaction_type or "").strip().lower() or None,
        "f": {k: query.attribute_filters[k] for k in sorted(query.attribute_filters)},
        "k": [k for k in keywords if k],
        "lang": query.language,
        "p": query.page,
        "ps": query.page_size,
    }


def make_key(query: SearchQuery, category_slug: Optional[str] = None) -> str:
    raw = json.dumps(normalized_query(query, category_slug), sort_keys=True, ensure_ascii=False, default=str)
    return f"search:{hashlib.sha256(raw.encode('utf-8')).hexdigest()[:32]}"


class SearchCache:
    def __init__(self, client=None, namespace: str = "search", ttl: int = 300, timeout: float = 0.5):
        self.client = client
        self.namespace = namespace
        self.ttl = ttl
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: SearchConfig) -> "SearchCache":
        client = None
        if config.redis_url:
            client = redis.from_url(
                config.redis_url,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
        else:
            logger.info("REDIS_URL not set; search cache disabled")
        return cls(client, config.cache_namespace, config.cache_ttl, config.cache_timeout)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        if not self.enabled:
            return None
        try:
            raw = await asyncio.wait_for(self.client.get(self._key(key)), self.timeout)
        except (RedisError, asyncio.TimeoutError, OSError) as e:
            logger.warning("Cache get failed for %s: %s", key, e)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            logger.warning("Discarding unreadable cache entry %s: %s", key, e)
            return None

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        """Store an already-serialized JSON payload."""
        if not self.enabled:
            return False
        try:
            await asyncio.wait_for(
                self.client.setex(self._key(key), ttl or self.ttl, value), self.timeout
            )
        except (RedisError, asyncio.TimeoutError, OSError) as e:
            logger.warning("Cache set failed for %s: %s", key, e)
            return False
        return True

    async def close(self):
        if self.client is not None:
            await self.client.aclose()
