# @even rygh
"""
Expiring key/value store backing threshold counters and block entries.

Security properties:
- Every entry carries its own TTL and disappears once it elapses
- Increment-with-TTL is atomic under a single lock
- Bounded size: least recently written entries are evicted first, except
  keys under a protected prefix, which only ever leave by expiring
- In-memory only: a restart clears all counters AND all blocks
"""
import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass
class _Entry:
    value: Any
    expires_at: float


class ExpiringStore:
    """
    Thread-safe TTL map.

    Absence is a normal state: get() returns the default, increment() starts
    at zero, delete() of a missing key returns False. Nothing here raises for
    "not found".
    """

    def __init__(
        self,
        max_entries: int = 100_000,
        clock: Clock = time.time,
        protected_prefixes: Tuple[str, ...] = (),
    ):
        self.max_entries = max_entries
        self.protected_prefixes = tuple(protected_prefixes)
        self._clock = clock
        self._entries: "OrderedDict[str, _Entry]" = OrderedDict()
        self._lock = Lock()

    def now(self) -> float:
        return self._clock()

    def _live(self, key: str, now: float) -> Optional[_Entry]:
        # Caller holds the lock
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= now:
            del self._entries[key]
            return None
        return entry

    def _store(self, key: str, entry: _Entry) -> None:
        # Caller holds the lock
        self._entries[key] = entry
        self._entries.move_to_end(key)
        if len(self._entries) <= self.max_entries:
            return

        now = self._clock()
        for expired in [k for k, e in self._entries.items() if e.expires_at <= now]:
            del self._entries[expired]
        while len(self._entries) > self.max_entries:
            evicted = self._oldest_evictable()
            if evicted is None:
                logger.warning(
                    f"Store over capacity, only protected entries left: {len(self._entries)} | "
                    f"max_entries={self.max_entries}"
                )
                return
            del self._entries[evicted]
            logger.warning(f"Store full, evicted oldest entry: {evicted} | max_entries={self.max_entries}")

    def _oldest_evictable(self) -> Optional[str]:
        # Caller holds the lock
        for key in self._entries:
            if not key.startswith(self.protected_prefixes):
                return key
        return None

    def increment(self, key: str, ttl_seconds: float, amount: int = 1) -> int:
        """
        Add to a counter and renew its TTL to ttl_seconds from now.

        Returns the new count. Concurrent callers each see a distinct value,
        so exactly one of them observes any given count.
        """
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            count = (entry.value if entry is not None else 0) + amount
            self._store(key, _Entry(value=count, expires_at=now + ttl_seconds))
            return count

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._live(key, self._clock())
            return entry.value if entry is not None else default

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        with self._lock:
            self._store(key, _Entry(value=value, expires_at=self._clock() + ttl_seconds))

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def ttl(self, key: str) -> Optional[float]:
        """Seconds left for key, None if absent."""
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            return entry.expires_at - now if entry is not None else None

    def items(self, prefix: str = "") -> List[Tuple[str, Any]]:
        """Live entries whose key starts with prefix."""
        with self._lock:
            now = self._clock()
            return [
                (key, entry.value)
                for key, entry in self._entries.items()
                if key.startswith(prefix) and entry.expires_at > now
            ]

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Store cleanup: {len(expired)} expired entries removed")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "max_entries": self.max_entries,
            }

    async def start_cleanup_task(self, interval_seconds: int) -> None:
        """
        Periodically purge expired entries.

        Expired entries are already invisible to readers; this only bounds
        memory. Errors are logged and the loop keeps running.
        """
        logger.info(f"Store cleanup task started: interval={interval_seconds}s")
        while True:
            try:
                await asyncio.sleep(interval_seconds)
                self.purge_expired()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Store cleanup error: {type(e).__name__}: {str(e)} | "
                    f"Task will continue running"
                )
