"""Caching service."""
from typing import Optional, Any, Callable
from cryptofolio.config import settings
import json
import hashlib
import time


class CacheService:
    """In-memory TTL cache for API responses and computed data.

    Entries are stored as a single ``(value, expiry)`` tuple so a reader never
    observes a half-written entry.
    """

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        enabled: Optional[bool] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.enabled = settings.enable_cache if enabled is None else enabled
        self.ttl_seconds = settings.cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock or time.time
        self._cache: dict[str, tuple[Any, float]] = {}

    @staticmethod
    def make_key(prefix: str, *args) -> str:
        """Generate cache key from prefix and arguments."""
        key_data = json.dumps(args, sort_keys=True, default=str)
        key_hash = hashlib.md5(key_data.encode()).hexdigest()
        return f"{prefix}:{key_hash}"

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache."""
        if not self.enabled:
            return None

        entry = self._cache.get(key)
        if entry is None:
            return None

        value, expiry = entry
        if self._clock() > expiry:
            self._cache.pop(key, None)
            return None

        return value

    def contains(self, key: str) -> bool:
        return self.get(key) is not None

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None):
        """Set value in cache."""
        if not self.enabled:
            return

        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self._cache[key] = (value, self._clock() + ttl)

    def delete(self, key: str):
        """Delete value from cache."""
        self._cache.pop(key, None)

    def clear(self):
        """Clear all cache."""
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)
