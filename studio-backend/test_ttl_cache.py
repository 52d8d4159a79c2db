"""
Tests for the thread-safe TTL cache used for API keys and table schemas.
"""

import threading
import unittest
from datetime import datetime, timedelta

from ttl_cache import TTLCache


class TestTTLCache(unittest.TestCase):

    def setUp(self):
        self.cache = TTLCache("test", max_size=3, default_ttl=60)

    def test_set_and_get(self):
        self.cache.set("a", 1)
        self.assertEqual(self.cache.get("a"), 1)
        self.assertIsNone(self.cache.get("missing"))

    def test_false_values_are_cached(self):
        self.cache.set("bad-key", False)
        self.assertIs(self.cache.get("bad-key"), False)

    def test_expired_entry_dropped(self):
        self.cache.set("a", 1, ttl=0)
        self.assertIsNone(self.cache.get("a"))
        self.assertEqual(self.cache.get_stats()["expirations"], 1)

    def test_stale_entry_by_timestamp(self):
        self.cache.set("a", 1)
        self.cache._cache["a"].created_at = datetime.now() - timedelta(seconds=61)
        self.assertFalse(self.cache.contains("a"))
        self.assertIsNone(self.cache.get("a"))

    def test_lru_eviction(self):
        for key in ["a", "b", "c"]:
            self.cache.set(key, key)
        self.cache.get("a")          # a is now most recently used
        self.cache.set("d", "d")     # evicts b
        self.assertIsNone(self.cache.get("b"))
        self.assertEqual(self.cache.get("a"), "a")
        self.assertEqual(len(self.cache), 3)
        self.assertEqual(self.cache.get_stats()["evictions"], 1)

    def test_invalidate_and_clear(self):
        self.cache.set("a", 1)
        self.cache.set("b", 2)
        self.cache.invalidate("a")
        self.cache.invalidate("never-set")
        self.assertIsNone(self.cache.get("a"))
        self.cache.clear()
        self.assertEqual(len(self.cache), 0)

    def test_cleanup_expired(self):
        self.cache.set("a", 1, ttl=0)
        self.cache.set("b", 2)
        self.assertEqual(self.cache.cleanup_expired(), 1)
        self.assertEqual(len(self.cache), 1)

    def test_stats(self):
        self.cache.set("a", 1)
        self.cache.get("a")
        self.cache.get("x")
        stats = self.cache.get_stats()
        self.assertEqual(stats["hits"], 1)
        self.assertEqual(stats["misses"], 1)
        self.assertEqual(stats["hit_rate"], 0.5)

    def test_concurrent_access(self):
        cache = TTLCache("concurrent", max_size=50, default_ttl=60)
        errors = []

        def worker(worker_id):
            try:
                for i in range(500):
                    key = f"k{(worker_id * 7 + i) % 80}"
                    cache.set(key, i)
                    cache.get(key)
                    if i % 50 == 0:
                        cache.invalidate(key)
            except Exception as e:  # surfaced via the errors list
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertLessEqual(len(cache), 50)


if __name__ == "__main__":
    unittest.main()
