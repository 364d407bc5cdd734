"""In-memory session cache with per-entry expiry and a periodic sweep."""

import threading
import time
from typing import Any, Optional

from policy_agent.cache.base import Cache, CacheMiss

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="cache/in_memory_cache")


class InMemoryCache(Cache):
    """Thread-safe, TTL-aware in-memory cache (the agent's default)."""

    def __init__(self, ttl_seconds: Optional[float] = 300, sweep: bool = True) -> None:
        """Initialize with a TTL in seconds; `None` or <= 0 never expires."""
        logger.debug("Initializing InMemoryCache (ttl=%s)", ttl_seconds)
        self.ttl = float(ttl_seconds or 0)
        self._entries: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._closed = False
        if self.ttl > 0 and sweep:
            self._schedule_sweep()

    def _expired(self, stored_at: float, now: Optional[float] = None) -> bool:
        """Return True once `now > stored_at + ttl`."""
        if self.ttl <= 0:
            return False
        return (now if now is not None else time.monotonic()) > stored_at + self.ttl

    def _schedule_sweep(self) -> None:
        self._timer = threading.Timer(self.ttl, self._sweep)
        self._timer.daemon = True
        self._timer.start()

    def _sweep(self) -> None:
        """Purge every expired entry, then re-arm the timer."""
        now = time.monotonic()
        with self._lock:
            if self._closed:
                return
            expired = [k for k, v in self._entries.items() if self._expired(v["stored_at"], now)]
            for key in expired:
                self._entries.pop(key, None)
            self._schedule_sweep()
        logger.info("Periodic cleanup after %s seconds removed %d entries", self.ttl, len(expired))

    def get(self, key: str) -> Any:
        """Return the cached value, purging and raising CacheMiss if expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                raise CacheMiss(f"{key}: entry not found in cache")
            if self._expired(entry["stored_at"]):
                self._entries.pop(key, None)
                raise CacheMiss(f"{key}: entry expired")
            return entry["data"]

    def put(self, key: str, value: Any) -> None:
        """Store a value, overwriting any previous entry."""
        with self._lock:
            self._entries[key] = {"data": value, "stored_at": time.monotonic()}

    def remove(self, key: str) -> None:
        """Remove an entry if it exists."""
        with self._lock:
            self._entries.pop(key, None)

    def quit(self) -> None:
        """Stop the sweep and clear all entries."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._entries.clear()
            already_closed, self._closed = self._closed, True
        if not already_closed:
            logger.info("InMemoryCache destroyed")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
