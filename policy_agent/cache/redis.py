"""Redis-backed session cache with TTL."""

import json
import time
from typing import Any, Optional

from policy_agent.cache.base import Cache, CacheMiss
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="cache/redis_cache")


class RedisCache(Cache):
    """Session cache stored in Redis as JSON, expiring via SETEX.

    Redis expires keys on its own, but the stored timestamp is still checked
    on read so a key whose TTL was extended elsewhere is never served stale.
    """

    def __init__(self, client, ttl_seconds: Optional[float] = 300, prefix: str = "am_session:") -> None:
        """Initialize with a Redis client, a TTL (<= 0 never expires) and a key prefix."""
        logger.debug("Initializing RedisCache")
        self.client = client
        self.ttl = float(ttl_seconds or 0)
        self.prefix = prefix
        self._closed = False

    def _key(self, key: str) -> str:
        """Return the Redis key for a cache key."""
        return f"{self.prefix}{key}"

    def _expired(self, stored_at: float) -> bool:
        if self.ttl <= 0:
            return False
        return time.time() > stored_at + self.ttl

    def get(self, key: str) -> Any:
        """Fetch and decode a cached value or raise CacheMiss."""
        raw = self.client.get(self._key(key))
        if not raw:
            raise CacheMiss(f"{key}: entry not found in cache")
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            entry = json.loads(raw)
            stored_at = float(entry["stored_at"])
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("Discarding undecodable cache entry %s: %s", key, exc)
            self.remove(key)
            raise CacheMiss(f"{key}: entry unreadable") from exc
        if self._expired(stored_at):
            self.remove(key)
            raise CacheMiss(f"{key}: entry expired")
        return entry.get("data")

    def put(self, key: str, value: Any) -> None:
        """Serialize and store a value, overwriting any previous entry."""
        payload = json.dumps({"data": value, "stored_at": time.time()}, default=str)
        if self.ttl > 0:
            self.client.setex(self._key(key), max(1, int(round(self.ttl))), payload)
        else:
            self.client.set(self._key(key), payload)

    def remove(self, key: str) -> None:
        """Delete a key if present."""
        self.client.delete(self._key(key))

    def clear(self) -> None:
        """Best-effort removal of every key under the configured prefix."""
        for key in self.client.scan_iter(f"{self.prefix}*"):
            self.client.delete(key)

    def quit(self) -> None:
        """Close the Redis connection pool once."""
        if self._closed:
            return
        self._closed = True
        close = getattr(self.client, "close", None)
        if close is not None:
            close()
        logger.info("RedisCache closed")
