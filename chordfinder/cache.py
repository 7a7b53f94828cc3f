from __future__ import annotations

"""
Bounded, time-boxed cache for search outcomes.

The cache is an explicit object handed to whoever needs it (the API builds
one per process); tests pass their own clock to control expiry.
"""

import time
from collections import OrderedDict
from typing import Callable, Generic, NamedTuple, Optional, Tuple, TypeVar

from loguru import logger

from . import config

V = TypeVar("V")


class CacheKey(NamedTuple):
    query: str       # normalised message
    scope: str       # language / key override, whatever narrows the answer
    limit: int


class ResponseCache(Generic[V]):
    def __init__(
        self,
        ttl_seconds: float = config.CACHE_TTL_SECONDS,
        max_entries: int = config.CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[CacheKey, Tuple[float, V]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: CacheKey) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    def set(self, key: CacheKey, value: V) -> None:
        self._entries[key] = (self._clock() + self.ttl_seconds, value)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("cache: evicted '{}'", evicted.query)

    def clear(self) -> None:
        self._entries.clear()
