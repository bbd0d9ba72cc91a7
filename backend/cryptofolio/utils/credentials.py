"""Round-robin pool of API keys for upstreams with per-key rate limits."""
import threading
from typing import Iterable, Iterator, List, Optional


class CredentialPool:
    """Rotates through API keys.

    ``next()`` is atomic. ``rotation()`` yields every key at most once for a
    single request, starting at the shared cursor, and simply stops when the
    pool is exhausted.
    """

    def __init__(self, keys: Optional[Iterable[str]] = None):
        self._keys: List[str] = []
        self._index = 0
        self._lock = threading.Lock()
        for key in keys or []:
            self.add(key)

    def __len__(self) -> int:
        return len(self._keys)

    @property
    def is_empty(self) -> bool:
        return not self._keys

    def add(self, key: str) -> bool:
        key = (key or "").strip()
        with self._lock:
            if not key or key in self._keys:
                return False
            self._keys.append(key)
            return True

    def remove(self, key: str) -> bool:
        with self._lock:
            if key not in self._keys:
                return False
            self._keys.remove(key)
            return True

    def keys(self) -> List[str]:
        return list(self._keys)

    def next(self) -> Optional[str]:
        with self._lock:
            if not self._keys:
                return None
            key = self._keys[self._index % len(self._keys)]
            self._index += 1
            return key

    def rotation(self) -> Iterator[str]:
        for _ in range(len(self._keys)):
            key = self.next()
            if key is None:
                return
            yield key
