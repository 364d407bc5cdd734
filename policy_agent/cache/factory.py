"""Factory for choosing the session cache backend at agent startup."""

from __future__ import annotations

import redis

from policy_agent.cache.base import Cache
from policy_agent.cache.memory import InMemoryCache
from policy_agent.cache.redis import RedisCache
from policy_agent.config import AgentConfig
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="cache/factory")


def build_session_cache(config: AgentConfig) -> Cache:
    """Return a RedisCache when a reachable Redis is configured, else an InMemoryCache."""
    ttl = config.session_cache_ttl_seconds
    if config.session_redis_url:
        masked = mask_url(config.session_redis_url)
        try:
            client = redis.Redis.from_url(config.session_redis_url)
            client.ping()
            logger.info("Using RedisCache", extra={"redis_url": masked})
            return RedisCache(client, ttl_seconds=ttl)
        except redis.exceptions.RedisError as exc:
            logger.warning("Falling back to InMemoryCache (Redis unavailable at %s): %s", masked, exc)
    logger.info("Using InMemoryCache (ttl=%ss)", ttl)
    return InMemoryCache(ttl_seconds=ttl)
