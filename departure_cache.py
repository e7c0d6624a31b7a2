# In-memory TTL cache for departure boards.

from collections import OrderedDict
from dataclasses import dataclass
import threading
import time
from typing import Any, Callable, Optional, Tuple


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


class TTLCache:
    """Thread-safe key/value store with lazy expiry.

    Expired entries are treated as absent on read but stay in storage until
    a later set() replaces them. With max_entries set, the least recently
    used key is dropped once the bound is exceeded.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        max_entries: Optional[int] = None,
    ) -> None:
        self._clock = clock
        self.max_entries = max_entries if max_entries and max_entries > 0 else None
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        # Exclusive for reads too: LRU get() reorders the map, and sections are short under the GIL.
        self._lock = threading.Lock()

    def get(self, key: str) -> Tuple[Any, bool]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or not entry.is_fresh(now):
                return None, False
            if self.max_entries is not None:
                self._entries.move_to_end(key)
            return entry.value, True

    def set(self, key: str, value: Any, ttl_sec: float) -> None:
        entry = CacheEntry(value=value, expires_at=self._clock() + ttl_sec)
        with self._lock:
            self._entries[key] = entry
            if self.max_entries is None:
                return
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
