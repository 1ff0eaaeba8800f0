from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

from oauth_state import now_ms

DEFAULT_TTL_MS = 60 * 1000


@dataclass
class CacheEntry:
    value: Any
    stored_at_ms: float


class TTLCache:
    """
    In-memory cache for proxy payloads (TTL=60s by default).

    Expired entries are not swept; they read as missing until the next ``put``
    for the same key overwrites them. Without ``max_entries`` the cache grows
    with every distinct key for the lifetime of the process; with it, the
    least recently written entry is dropped once the cap is exceeded.
    """

    def __init__(
        self,
        ttl_ms: int = DEFAULT_TTL_MS,
        max_entries: Optional[int] = None,
        clock: Callable[[], float] = now_ms,
    ):
        self._ttl_ms = ttl_ms
        self._max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at_ms >= self._ttl_ms:
            return None
        return entry.value

    def put(self, key: str, value: Any) -> None:
        self._entries[key] = CacheEntry(value=value, stored_at_ms=self._clock())
        self._entries.move_to_end(key)
        if self._max_entries is not None:
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)
