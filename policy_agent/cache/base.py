"""Shared protocol for session cache backends."""

from typing import Any, Protocol


class CacheMiss(KeyError):
    """Raised by `Cache.get` when a key is absent or its entry has expired."""


class Cache(Protocol):
    """Protocol for session cache backends.

    Entries expire `ttl` seconds after they were stored; an expired entry is
    purged on the next `get` even if a periodic sweep has not run yet.
    """
    def get(self, key: str) -> Any:
        """Return the stored value or raise CacheMiss."""

    def put(self, key: str, value: Any) -> None:
        """Store (overwrite) a value and stamp the time it was stored."""

    def remove(self, key: str) -> None:
        """Delete a key without raising if it is absent."""

    def quit(self) -> None:
        """Release timers and connections; safe to call more than once."""
