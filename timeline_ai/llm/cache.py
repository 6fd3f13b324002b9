"""Bounded TTL cache for dispatch results.

Entries expire CACHE_TTL_SECONDS after insertion. Once the cache grows past
max_entries the oldest inserted entry is evicted; reads do not refresh an
entry's position, rewriting a key does. All operations hold a single lock,
so an entry is either fully present or absent.
"""

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Optional, Sequence

from timeline_ai.llm.schemas import Message, RequestOptions

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 300
CACHE_MAX_ENTRIES = 100


class _CacheEntry:
    """Cached value with its insertion time."""

    __slots__ = ("data", "created_at")

    def __init__(self, data: Any, created_at: float):
        self.data = data
        self.created_at = created_at


def request_fingerprint(
    model_id: str, messages: Sequence[Message], options: Optional[RequestOptions] = None
) -> str:
    """Deterministic cache key for (model, full history, output-affecting options)."""
    options = options or RequestOptions()
    key_parts = {
        "model": model_id,
        "messages": [f"{m.role.value}:{m.content}" for m in messages],
        "temperature": options.temperature,
        "max_tokens": options.max_tokens,
    }
    encoded = json.dumps(key_parts, sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


class ResponseCache:
    """Thread-safe TTL cache with oldest-first eviction."""

    def __init__(
        self,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        max_entries: int = CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, _CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def _expired(self, entry: _CacheEntry) -> bool:
        return self._clock() - entry.created_at > self.ttl_seconds

    def get(self, key: str) -> Optional[Any]:
        """Return the live value for key, or None. Expired entries are dropped."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._expired(entry):
                del self._entries[key]
                return None
            return entry.data

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = _CacheEntry(value, self._clock())
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted cache entry {evicted_key[:12]}")

    def evict(self, key: str) -> bool:
        """Remove one entry. Returns True if it was present."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def purge_expired(self) -> int:
        with self._lock:
            expired_keys = [k for k, v in self._entries.items() if self._expired(v)]
            for k in expired_keys:
                del self._entries[k]
        return len(expired_keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, Any]:
        return {
            "size": len(self),
            "ttl_seconds": self.ttl_seconds,
            "max_entries": self.max_entries,
        }
