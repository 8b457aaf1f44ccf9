# marketplace/core/cache.py
# Redis-backed response cache for order read paths.
# The cache is never authoritative: stock and order decisions always read the
# database, and every order write drops the keys it could have made stale.

import json
import logging
from functools import lru_cache
from typing import Any, Optional

import redis

from marketplace.core.config import settings

logger = logging.getLogger(__name__)


def order_key(order_id: int) -> str:
    return f"order:{order_id}"


def user_orders_key(buyer_id: int, query: dict) -> str:
    return f"user-orders:{buyer_id}:{json.dumps(query, sort_keys=True, default=str)}"


class ResponseCache:
    """JSON values in Redis with a TTL; a cache without a client is a no-op."""

    def __init__(self, client: Optional[redis.Redis] = None, ttl: int = 300):
        self.client = client
        self.ttl = ttl

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def get_json(self, key: str) -> Optional[Any]:
        if not self.enabled:
            return None
        try:
            raw = self.client.get(key)
        except redis.RedisError as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None
        if raw is None:
            return None
        logger.debug(f"Cache hit: {key}")
        return json.loads(raw)

    def set_json(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        if not self.enabled:
            return
        try:
            self.client.setex(key, ttl or self.ttl, json.dumps(value, default=str))
        except redis.RedisError as e:
            logger.warning(f"Cache write failed for {key}: {e}")

    def invalidate_order(self, order_id: int, buyer_id: int) -> None:
        """Drops the cached order and every cached order list of its buyer."""
        if not self.enabled:
            return
        try:
            keys = [order_key(order_id)]
            keys.extend(self.client.scan_iter(match=f"user-orders:{buyer_id}:*"))
            self.client.delete(*keys)
        except redis.RedisError as e:
            logger.warning(f"Cache invalidation failed for order {order_id}: {e}")


@lru_cache(maxsize=1)
def get_cache() -> ResponseCache:
    """Dependency returning the process-wide cache built from settings."""
    if not settings.REDIS_URL:
        logger.info("REDIS_URL not set, response cache disabled")
        return ResponseCache(None)
    client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
    return ResponseCache(client, ttl=settings.CACHE_TTL_SECONDS)
