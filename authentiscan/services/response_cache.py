"""
response_cache.py — Short-TTL in-memory cache for read endpoints.

Keys are tuples (namespace, user_id, *params); each namespace has its own TTL.
One instance is created by the app's composition root and shared by every
request in the process. Nothing is shared across processes: a stale read
inside the TTL window is accepted, and writers invalidate the affected
user's entries right after a mutation.

All access happens on the event loop thread, so plain dict operations are
enough; concurrent writers for one key are last-write-wins.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Iterable, Optional

from authentiscan.core.config import settings

logger = logging.getLogger(__name__)

# Namespaces
SCANS_LIST = "scans"
RESULTS_LIST = "results"
RESULT_ITEM = "result"
DASHBOARD = "dashboard"

# Entries that list a user's scans; dropped whenever that user's scans change.
LIST_NAMESPACES = (SCANS_LIST, RESULTS_LIST, DASHBOARD)


@dataclass
class _Entry:
    value: Any
    stored_at: float


class ResponseCache:
    def __init__(
        self,
        ttls: dict[str, float],
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttls = dict(ttls)
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[tuple, _Entry] = {}

    @classmethod
    def from_settings(cls) -> "ResponseCache":
        return cls(
            ttls={
                SCANS_LIST: settings.cache_ttl_scans_list,
                RESULTS_LIST: settings.cache_ttl_results_list,
                RESULT_ITEM: settings.cache_ttl_result_item,
                DASHBOARD: settings.cache_ttl_dashboard,
            },
            max_entries=settings.cache_max_entries,
        )

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, namespace: str, user_id: str, *params: Hashable) -> Optional[Any]:
        """Return the cached value if younger than the namespace TTL, else None."""
        key = (namespace, user_id, *params)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self._ttl(namespace):
            self._entries.pop(key, None)
            return None
        return entry.value

    def set(self, namespace: str, user_id: str, *params: Hashable, value: Any) -> None:
        key = (namespace, user_id, *params)
        if key not in self._entries and len(self._entries) >= self.max_entries:
            # evict the oldest inserted key
            self._entries.pop(next(iter(self._entries)), None)
        self._entries[key] = _Entry(value=value, stored_at=self._clock())

    def invalidate(self, namespace: str, user_id: str, *params: Hashable) -> None:
        self._entries.pop((namespace, user_id, *params), None)

    def invalidate_user(self, user_id: str, namespaces: Iterable[str] = LIST_NAMESPACES) -> int:
        """Drop every entry of `user_id` in the given namespaces, whatever its params."""
        wanted = set(namespaces)
        stale = [k for k in list(self._entries) if k[0] in wanted and k[1] == user_id]
        for key in stale:
            self._entries.pop(key, None)
        if stale:
            logger.debug("Invalidated %d cache entries for %s", len(stale), user_id)
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    def _ttl(self, namespace: str) -> float:
        try:
            return self.ttls[namespace]
        except KeyError:
            raise KeyError(f"no TTL configured for cache namespace {namespace!r}") from None
