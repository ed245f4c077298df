"""In-memory, content-keyed cache of moderation decisions with time-based expiry."""

import asyncio
import hashlib
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import structlog

from config import CACHE_TTL
from schemas import ModerationDecision

log = structlog.get_logger()


def fingerprint(text: str) -> str:
    """Deterministic cache key for a piece of text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheEntry:
    decision: ModerationDecision
    inserted_at: float


class ModerationCache:
    """
    Memoizes moderation decisions by text fingerprint.

    Entries older than ``ttl`` seconds are evicted lazily on lookup or in bulk
    by ``sweep()``. The clock is injectable so expiry can be driven by tests.
    Nothing survives a restart.
    """

    def __init__(self, ttl: float = CACHE_TTL, clock: Callable[[], float] = time.monotonic) -> None:
        if ttl <= 0:
            raise ValueError("Cache TTL must be positive")
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.inserted_at >= self.ttl

    def lookup(self, text: str) -> Optional[ModerationDecision]:
        key = fingerprint(text)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._is_expired(entry, now):
                del self._entries[key]
                return None
            return entry.decision

    def store(self, text: str, decision: ModerationDecision) -> None:
        entry = CacheEntry(decision=decision, inserted_at=self._clock())
        with self._lock:
            self._entries[fingerprint(text)] = entry

    def sweep(self) -> int:
        """Evict every expired entry. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
            for key in expired:
                del self._entries[key]
        if expired:
            log.info("Moderation Cache Swept", evicted=len(expired), remaining=len(self._entries))
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict:
        return {"entry_count": len(self._entries), "ttl_seconds": self.ttl}


async def sweep_periodically(cache: ModerationCache, interval: float) -> None:
    """Sweep ``cache`` every ``interval`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            cache.sweep()
        except Exception as e:
            log.error("Moderation Cache Sweep Failed", error=str(e))
