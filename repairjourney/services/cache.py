from __future__ import annotations

import threading
import time
from typing import Callable, Generic, Hashable, TypeVar


K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class TTLCache(Generic[K, V]):
    """Small in-process cache passed explicitly to the components that use it.

    Writers must call ``evict(key)`` after every mutation of the cached record;
    entries also expire after ``ttl_s`` seconds. ``ttl_s <= 0`` keeps entries
    until evicted.
    """

    def __init__(self, ttl_s: float, *, time_source: Callable[[], float] | None = None) -> None:
        self._ttl_s = ttl_s
        self._time_source = time_source or time.monotonic
        self._entries: dict[K, tuple[float | None, V]] = {}
        self._lock = threading.Lock()

    def get(self, key: K) -> V | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at is not None and self._time_source() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: K, value: V) -> None:
        expires_at = self._time_source() + self._ttl_s if self._ttl_s > 0 else None
        with self._lock:
            self._entries[key] = (expires_at, value)

    def evict(self, key: K) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
