"""
In-memory expiring key-value store.
Entries expire lazily: an expired key is dropped on the next access to it,
and a full purge runs only when the store grows past max_entries.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass
class _Entry:
    value: str
    expires_at: float | None


class ExpiringStore:
    """
    Process-local TTL map, used for claims and rate-limit counters.

    Mirrors the subset of FastRedisClient used by those services so either
    backend can sit behind them.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, max_entries: int = 10_000):
        self._clock = clock
        self._max_entries = max_entries
        self._entries: dict[str, _Entry] = {}

    def _live(self, key: str) -> _Entry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def _expiry(self, ttl_s: float | None) -> float | None:
        return self._clock() + ttl_s if ttl_s else None

    def _maybe_purge(self) -> None:
        if len(self._entries) < self._max_entries:
            return
        for key in list(self._entries):
            self._live(key)

    async def get(self, key: str) -> str | None:
        entry = self._live(key)
        return entry.value if entry else None

    async def set_with_ttl(self, key: str, value: str, ttl_s: float | None = None) -> bool:
        self._maybe_purge()
        self._entries[key] = _Entry(value, self._expiry(ttl_s))
        return True

    async def set_if_absent(self, key: str, value: str, ttl_s: float | None = None) -> bool:
        """Store only when no live entry exists; True if this call stored it."""
        if self._live(key) is not None:
            return False
        self._maybe_purge()
        self._entries[key] = _Entry(value, self._expiry(ttl_s))
        return True

    async def incr_with_ttl(self, key: str, ttl_s: float | None = None) -> int:
        """
        Increment a counter. The TTL is set when the counter is created and
        not refreshed, so the window is fixed from the first increment.
        """
        entry = self._live(key)
        if entry is None:
            self._maybe_purge()
            self._entries[key] = _Entry("1", self._expiry(ttl_s))
            return 1
        entry.value = str(int(entry.value) + 1)
        return int(entry.value)

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def __len__(self) -> int:
        return len(self._entries)
