"""Short-lived Redis cache for aggregator search results.

Monitored searches that share a query hit the aggregator once per TTL.
Redis being down only costs a live fetch: every error reads as a miss.
"""

import hashlib
import json
import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from tourwatch.config import settings

logger = logging.getLogger(__name__)


class OfferCache:
    def __init__(
        self,
        url: str | None = None,
        ttl_seconds: int | None = None,
        namespace: str = "offers",
    ):
        self._url = url or settings.redis_url
        self.ttl_seconds = ttl_seconds or settings.provider_cache_ttl_seconds
        self.namespace = namespace
        self._redis: redis.Redis | None = None

    async def _connection(self) -> redis.Redis | None:
        if self._redis is not None:
            return self._redis
        conn = redis.from_url(self._url, encoding="utf-8", decode_responses=True)
        try:
            await conn.ping()
        except (RedisError, OSError) as e:
            logger.warning(f"Offer cache unavailable, fetching live: {e}")
            await conn.aclose()
            return None
        self._redis = conn
        return conn

    def key(self, params: dict) -> str:
        """Search params hashed in a stable order under this cache's namespace."""
        digest = hashlib.sha1(json.dumps(params, sort_keys=True, default=str).encode()).hexdigest()
        return f"{self.namespace}:{digest}"

    async def get_offers(self, params: dict) -> list[dict] | None:
        try:
            conn = await self._connection()
            if conn is None:
                return None
            raw = await conn.get(self.key(params))
        except (RedisError, OSError) as e:
            logger.warning(f"Offer cache read failed: {e}")
            return None
        if raw is None:
            return None
        try:
            tours = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Dropping corrupt offer cache entry {self.key(params)}")
            return None
        return tours if isinstance(tours, list) else None

    async def set_offers(self, params: dict, tours: list[dict]) -> bool:
        try:
            conn = await self._connection()
            if conn is None:
                return False
            await conn.set(self.key(params), json.dumps(tours, default=str), ex=self.ttl_seconds)
        except (RedisError, OSError) as e:
            logger.warning(f"Offer cache write failed: {e}")
            return False
        return True

    async def close(self):
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


offer_cache = OfferCache()
