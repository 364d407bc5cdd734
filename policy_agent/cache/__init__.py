"""Session cache backends."""

from .base import Cache, CacheMiss
from .factory import build_session_cache
from .memory import InMemoryCache
from .redis import RedisCache

__all__ = [
    "Cache",
    "CacheMiss",
    "InMemoryCache",
    "RedisCache",
    "build_session_cache",
]
