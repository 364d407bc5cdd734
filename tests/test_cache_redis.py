import json
import unittest
from unittest.mock import patch

import redis

from policy_agent.cache import CacheMiss, InMemoryCache, RedisCache, build_session_cache
from policy_agent.config import AgentConfig


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.expires = {}
        self.closed = 0

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.expires[key] = ttl

    def set(self, key, value):
        self.store[key] = value
        self.expires.pop(key, None)

    def get(self, key):
        return self.store.get(key)

    def delete(self, key):
        self.store.pop(key, None)
        self.expires.pop(key, None)

    def scan_iter(self, pattern):
        prefix = pattern.rstrip("*")
        return [k for k in list(self.store.keys()) if k.startswith(prefix)]

    def close(self):
        self.closed += 1


class TestRedisCache(unittest.TestCase):
    def test_put_get_remove(self):
        client = FakeRedis()
        cache = RedisCache(client, ttl_seconds=10, prefix="s:")

        cache.put("sid", {"valid": True, "uid": "demo"})
        self.assertIn("s:sid", client.store)
        self.assertEqual(client.expires["s:sid"], 10)
        self.assertEqual(cache.get("sid"), {"valid": True, "uid": "demo"})

        cache.remove("sid")
        with self.assertRaises(CacheMiss):
            cache.get("sid")

    def test_missing_key_raises_cache_miss(self):
        cache = RedisCache(FakeRedis(), ttl_seconds=10)
        with self.assertRaises(CacheMiss):
            cache.get("nope")

    def test_stale_entry_is_purged_even_if_redis_kept_it(self):
        client = FakeRedis()
        cache = RedisCache(client, ttl_seconds=10, prefix="s:")
        with patch("policy_agent.cache.redis.time.time") as mock_time:
            mock_time.return_value = 1000.0
            cache.put("sid", {"valid": True})
            mock_time.return_value = 1011.0
            with self.assertRaises(CacheMiss):
                cache.get("sid")
        self.assertNotIn("s:sid", client.store)

    def test_corrupt_entry_is_a_miss(self):
        client = FakeRedis()
        cache = RedisCache(client, ttl_seconds=10, prefix="s:")
        client.store["s:bad"] = b"not-json"
        with self.assertRaises(CacheMiss):
            cache.get("bad")
        self.assertNotIn("s:bad", client.store)

    def test_zero_ttl_uses_plain_set(self):
        client = FakeRedis()
        cache = RedisCache(client, ttl_seconds=0, prefix="s:")
        cache.put("sid", 1)
        self.assertNotIn("s:sid", client.expires)
        stored = json.loads(client.store["s:sid"])
        self.assertEqual(stored["data"], 1)

    def test_clear_removes_prefixed_keys(self):
        client = FakeRedis()
        cache = RedisCache(client, ttl_seconds=10, prefix="s:")
        cache.put("a", 1)
        cache.put("b", 2)
        client.store["other:x"] = b"keep"
        cache.clear()
        self.assertEqual(list(client.store), ["other:x"])

    def test_quit_closes_client_once(self):
        client = FakeRedis()
        cache = RedisCache(client)
        cache.quit()
        cache.quit()
        self.assertEqual(client.closed, 1)


class TestBuildSessionCache(unittest.TestCase):
    def test_defaults_to_memory(self):
        cache = build_session_cache(AgentConfig(session_redis_url=None))
        try:
            self.assertIsInstance(cache, InMemoryCache)
        finally:
            cache.quit()

    def test_uses_redis_when_reachable(self):
        client = FakeRedis()
        client.ping = lambda: True
        with patch("policy_agent.cache.factory.redis.Redis.from_url", return_value=client) as from_url:
            cache = build_session_cache(AgentConfig(session_redis_url="redis://u:p@cache:6379/0"))
        from_url.assert_called_once_with("redis://u:p@cache:6379/0")
        self.assertIsInstance(cache, RedisCache)
        self.assertIs(cache.client, client)

    def test_falls_back_to_memory_when_redis_unreachable(self):
        client = FakeRedis()

        def ping():
            raise redis.exceptions.ConnectionError("refused")

        client.ping = ping
        with patch("policy_agent.cache.factory.redis.Redis.from_url", return_value=client):
            cache = build_session_cache(AgentConfig(session_redis_url="redis://cache:6379/0"))
        try:
            self.assertIsInstance(cache, InMemoryCache)
        finally:
            cache.quit()


if __name__ == "__main__":
    unittest.main()
