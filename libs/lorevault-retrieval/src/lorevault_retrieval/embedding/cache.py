"""In-process LRU cache of embedding vectors with a time-to-live."""

from __future__ import annotations

import hashlib
import time
from collections import OrderedDict
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable


def cache_key(model: str, text: str) -> str:
    """SHA-256 over model and text, so the raw text is never kept as a key."""
    return hashlib.sha256(f"{model}\x00{text}".encode()).hexdigest()


class EmbeddingCache:
    """Bounded LRU mapping of (model, text) to a vector; entries expire after ``ttl_seconds``."""

    def __init__(
        self,
        max_items: int = 10_000,
        ttl_seconds: float = 86_400.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_items = max_items
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, tuple[float, ...]]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, model: str, text: str) -> list[float] | None:
        key = cache_key(model, text)
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        stored_at, vector = entry
        if self._clock() - stored_at > self._ttl:
            del self._entries[key]
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return list(vector)

    def put(self, model: str, text: str, vector: list[float]) -> None:
        key = cache_key(model, text)
        self._entries[key] = (self._clock(), tuple(vector))
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_items:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
