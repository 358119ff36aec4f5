"""Process-scoped key/value stores with per-entry expiry.

The cache and the rate limiter keep all of their state in stores that follow
:class:`ExpiringStore`. :class:`MemoryStore` is the in-process implementation;
anything exposing the same four operations (a shared key-value service, for
instance) can be injected in its place.

Entries are visible only while ``now < expires_at``. Expired entries are
dropped lazily, either when read or during a trim pass. A trim pass runs
whenever a write finds the store above its soft maximum: expired entries go
first, then the oldest inserted entries until the store is back under the cap.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, NamedTuple, Protocol

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class _Entry(NamedTuple):
    value: Any
    expires_at: float


class ExpiringStore(Protocol):
    def get(self, key: str, default: Any = MISSING) -> Any: ...

    def set(self, key: str, value: Any, ttl: float) -> None: ...

    def update(self, key: str, fn: Callable[[Any], Any], ttl: float) -> Any: ...

    def prune(self) -> int: ...


class MemoryStore:
    """Bounded in-memory :class:`ExpiringStore`.

    ``update`` is the read-modify-write primitive used for fixed windows: when
    ``key`` is absent or expired, ``fn(MISSING)`` is stored with a fresh expiry
    of ``now + ttl``; otherwise ``fn(current)`` replaces the value and the
    existing expiry is kept.
    """

    def __init__(self, soft_max: int, *, clock: Clock = time.monotonic, name: str = "store") -> None:
        if soft_max < 1:
            raise ValueError("soft_max must be >= 1")
        self.soft_max = soft_max
        self.name = name
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return self.get(str(key)) is not MISSING

    def get(self, key: str, default: Any = MISSING) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                return default
            return entry.value

    def set(self, key: str, value: Any, ttl: float) -> None:
        with self._lock:
            now = self._clock()
            self._trim(now)
            self._entries[key] = _Entry(value, now + ttl)

    def update(self, key: str, fn: Callable[[Any], Any], ttl: float) -> Any:
        with self._lock:
            now = self._clock()
            self._trim(now)
            entry = self._entries.get(key)
            if entry is None or now >= entry.expires_at:
                value = fn(MISSING)
                self._entries[key] = _Entry(value, now + ttl)
            else:
                value = fn(entry.value)
                self._entries[key] = _Entry(value, entry.expires_at)
            return value

    def prune(self) -> int:
        """Drop every expired entry and return how many were removed."""
        with self._lock:
            return self._drop_expired(self._clock())

    def _drop_expired(self, now: float) -> int:
        expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def _trim(self, now: float) -> None:
        if len(self._entries) <= self.soft_max:
            return
        dropped = self._drop_expired(now)
        evicted = 0
        while len(self._entries) > self.soft_max:
            del self._entries[next(iter(self._entries))]
            evicted += 1
        logger.debug(
            "Trimmed %s: %d expired, %d evicted, %d remaining",
            self.name,
            dropped,
            evicted,
            len(self._entries),
        )
