from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from formproxy.models import Alias

DEFAULT_TTL_SEC = 300.0


@dataclass
class CacheEntry:
    grouped_aliases: dict[str, list[Alias]]
    fetched_at: float


class AliasCache:
    """Per-user read-through cache of aliases grouped by form id."""

    def __init__(self, ttl_sec: float = DEFAULT_TTL_SEC, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_sec = float(ttl_sec)
        self._clock = clock
        self._entries: dict[int, CacheEntry] = {}

    def get(self, user_id: int) -> dict[str, list[Alias]] | None:
        entry = self._entries.get(int(user_id))
        if entry is None:
            return None
        if (self._clock() - entry.fetched_at) >= self.ttl_sec:
            self._entries.pop(int(user_id), None)
            return None
        return entry.grouped_aliases

    def set(self, user_id: int, grouped_aliases: dict[str, list[Alias]]) -> None:
        self._entries[int(user_id)] = CacheEntry(grouped_aliases=grouped_aliases, fetched_at=self._clock())

    def invalidate(self, user_id: int) -> bool:
        return self._entries.pop(int(user_id), None) is not None

    def __len__(self) -> int:
        return len(self._entries)
