"""Thread-safe lookup cache shared by upstream clients.

Values for a key never change (a product code always resolves to the same
catalog entry), so concurrent writers may race: the last write wins.
"""

from collections import OrderedDict
from threading import Lock
from typing import Any, Dict, Optional


class LookupCache:
    """
    Read-through cache with get/set.

    Unbounded for the process lifetime by default; ``max_size`` turns it
    into an LRU cache.

    Usage:
        cache = LookupCache(max_size=10_000)
        cache.set("product:sp001", product)
        cache.get("product:sp001")
    """

    def __init__(self, max_size: Optional[int] = None):
        if max_size is not None and max_size < 1:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self._data: "OrderedDict[str, Any]" = OrderedDict()
        self._lock = Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key in self._data:
                self.hits += 1
                if self.max_size is not None:
                    self._data.move_to_end(key)
                return self._data[key]
            self.misses += 1
            return default

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value
            if self.max_size is not None:
                self._data.move_to_end(key)
                while len(self._data) > self.max_size:
                    self._data.popitem(last=False)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self.hits = 0
            self.misses = 0

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {"size": len(self._data), "hits": self.hits, "misses": self.misses}
