"""
Thread-safe TTL Cache for SQL Studio
Backs the API-key validity cache and the table schema cache
"""

import logging
import threading
from typing import Optional, Any, Dict, List
from datetime import datetime
from dataclasses import dataclass
from collections import OrderedDict

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Cache entry with metadata"""
    value: Any
    created_at: datetime
    access_count: int
    ttl_seconds: float

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check if cache entry is expired"""
        age = ((now or datetime.now()) - self.created_at).total_seconds()
        return age >= self.ttl_seconds


class TTLCache:
    """
    LRU cache with a fixed time-to-live per entry.

    Many request threads race on the same keys, so every read and write
    goes through a single lock. Stale entries are dropped on read.
    """

    def __init__(self, name: str, max_size: int = 1000, default_ttl: float = 300):
        """
        Args:
            name: Label used in log lines and stats
            max_size: Maximum number of entries
            default_ttl: Default TTL in seconds
        """
        self.name = name
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._stats = {"hits": 0, "misses": 0, "evictions": 0, "expirations": 0}

    def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache

        Returns:
            Cached value or None if not found/expired
        """
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return None

            if entry.is_expired():
                del self._cache[key]
                self._stats["misses"] += 1
                self._stats["expirations"] += 1
                return None

            entry.access_count += 1
            self._cache.move_to_end(key)
            self._stats["hits"] += 1
            return entry.value

    def contains(self, key: str) -> bool:
        """True if a fresh entry exists (does not touch stats)"""
        with self._lock:
            entry = self._cache.get(key)
            return entry is not None and not entry.is_expired()

    def set(self, key: str, value: Any, ttl: Optional[float] = None):
        """Set value in cache, evicting the least recently used entry if full"""
        with self._lock:
            if key not in self._cache and len(self._cache) >= self.max_size:
                self._cache.popitem(last=False)
                self._stats["evictions"] += 1

            self._cache[key] = CacheEntry(
                value=value,
                created_at=datetime.now(),
                access_count=0,
                ttl_seconds=ttl if ttl is not None else self.default_ttl,
            )
            self._cache.move_to_end(key)

    def invalidate(self, key: str):
        """Invalidate specific cache entry"""
        with self._lock:
            self._cache.pop(key, None)

    def clear(self):
        """Clear all cache entries"""
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
        logger.debug(f"[{self.name}] Cleared {count} cache entries")

    def cleanup_expired(self) -> int:
        """Remove all expired entries, returns how many were dropped"""
        now = datetime.now()
        with self._lock:
            expired_keys: List[str] = [
                key for key, entry in self._cache.items() if entry.is_expired(now)
            ]
            for key in expired_keys:
                del self._cache[key]
            self._stats["expirations"] += len(expired_keys)

        if expired_keys:
            logger.info(f"[{self.name}] Cleaned up {len(expired_keys)} expired entries")
        return len(expired_keys)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""
        with self._lock:
            total_requests = self._stats["hits"] + self._stats["misses"]
            return {
                "name": self.name,
                "total_entries": len(self._cache),
                "max_size": self.max_size,
                "default_ttl": self.default_ttl,
                "hits": self._stats["hits"],
                "misses": self._stats["misses"],
                "hit_rate": self._stats["hits"] / total_requests if total_requests > 0 else 0,
                "evictions": self._stats["evictions"],
                "expirations": self._stats["expirations"],
            }
