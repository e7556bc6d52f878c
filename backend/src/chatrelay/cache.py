"""Redis-backed TTL cache.

Used as the read-through cache for conversations, the short-lived partial
response buffer, and the router's classification cache. Every operation is
best-effort: errors are logged and reported as a miss or a failed write, never
raised to the caller.
"""

import json
import logging
from typing import Any, Protocol

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class TTLCache(Protocol):
    """Key/value store with per-key expiry."""

    async def get(self, key: str) -> Any | None: ...

    async def get_text(self, key: str) -> str | None: ...

    async def set(self, key: str, value: Any, ttl: int) -> bool: ...

    async def append(self, key: str, text: str, ttl: int) -> bool: ...

    async def delete(self, *keys: str) -> int: ...


class RedisCache:
    """JSON cache on top of redis.asyncio.

    Usage:
        cache = RedisCache("redis://localhost:6379/0")
        await cache.connect()
        await cache.set("chat:123", {"id": "123"}, ttl=3600)
    """

    def __init__(self, redis_url: str, key_prefix: str = "chatrelay:"):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self._redis: redis.Redis | None = None

    async def connect(self):
        """Connect and verify the server is reachable."""
        try:
            self._redis = redis.from_url(self.redis_url, encoding="utf-8", decode_responses=True)
            await self._redis.ping()
            logger.info(f"Connected to Redis at {self.redis_url}")
        except Exception as e:
            logger.error(f"Redis connection failed, caching disabled: {e}")
            self._redis = None

    async def close(self):
        """Close the Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info("Closed Redis connection")

    @property
    def connected(self) -> bool:
        return self._redis is not None

    def _make_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get(self, key: str) -> Any | None:
        """Get a JSON value, or None on miss or error."""
        text = await self.get_text(key)
        if text is None:
            return None
        try:
            return json.loads(text)
        except (json.JSONDecodeError, TypeError):
            logger.warning(f"Discarding non-JSON cache value for {key}")
            return None

    async def get_text(self, key: str) -> str | None:
        """Get a raw string value."""
        if not self._redis:
            return None
        try:
            value = await self._redis.get(self._make_key(key))
            logger.debug(f"Cache {'HIT' if value is not None else 'MISS'}: {key}")
            return value
        except Exception as e:
            logger.error(f"Cache get error for key {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        """Store a JSON-serializable value with a TTL in seconds."""
        if not self._redis:
            return False
        try:
            await self._redis.setex(self._make_key(key), ttl, json.dumps(value, default=str))
            return True
        except Exception as e:
            logger.error(f"Cache set error for key {key}: {e}")
            return False

    async def append(self, key: str, text: str, ttl: int) -> bool:
        """Append to a string value and refresh its TTL atomically."""
        if not self._redis:
            return False
        full_key = self._make_key(key)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.append(full_key, text)
                pipe.expire(full_key, ttl)
                await pipe.execute()
            return True
        except Exception as e:
            logger.error(f"Cache append error for key {key}: {e}")
            return False

    async def delete(self, *keys: str) -> int:
        """Delete keys. Returns the number removed."""
        if not self._redis or not keys:
            return 0
        try:
            return await self._redis.delete(*(self._make_key(k) for k in keys))
        except Exception as e:
            logger.error(f"Cache delete error for keys {keys}: {e}")
            return 0
