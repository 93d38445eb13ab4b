from __future__ import annotations

from django.core.cache.backends.locmem import LocMemCache
from django.test import SimpleTestCase

from salesflow.cache import ReferenceCache


class ReferenceCacheTest(SimpleTestCase):
    def setUp(self) -> None:
        self.cache = ReferenceCache(
            backend=LocMemCache("reference-cache-tests", {}), prefix="test"
        )
        self.calls = 0

    def _compute(self) -> list[int]:
        self.calls += 1
        return [1, 2, 3]

    def test_get_or_compute_only_computes_once(self) -> None:
        self.assertEqual(
            self.cache.get_or_compute("catalog:workflows", self._compute), [1, 2, 3]
        )
        self.assertEqual(
            self.cache.get_or_compute("catalog:workflows", self._compute), [1, 2, 3]
        )
        self.assertEqual(self.calls, 1)

    def test_falsy_values_are_cached(self) -> None:
        self.cache.get_or_compute("empty", lambda: [])
        self.assertEqual(self.cache.get_or_compute("empty", self._compute), [])
        self.assertEqual(self.calls, 0)

    def test_invalidate_pattern_drops_matching_keys_only(self) -> None:
        self.cache.get_or_compute("catalog:workflows", self._compute)
        self.cache.get_or_compute("catalog:transitions", self._compute)
        self.cache.get_or_compute("dealers:active", self._compute)

        dropped = self.cache.invalidate_pattern("^catalog:")

        self.assertEqual(dropped, 2)
        self.assertEqual(self.cache.stats()["keys"], ["dealers:active"])
        self.cache.get_or_compute("catalog:workflows", self._compute)
        self.cache.get_or_compute("dealers:active", self._compute)
        self.assertEqual(self.calls, 4)

    def test_invalidate_and_clear(self) -> None:
        self.cache.get_or_compute("a", self._compute)
        self.cache.get_or_compute("b", self._compute)

        self.cache.invalidate("a")
        self.assertEqual(self.cache.stats()["size"], 1)

        self.cache.clear()
        self.assertEqual(self.cache.stats(), {"size": 0, "keys": []})
        self.cache.get_or_compute("b", self._compute)
        self.assertEqual(self.calls, 3)

    def test_expired_entry_is_recomputed(self) -> None:
        self.cache.get_or_compute("short", self._compute, ttl=-1)
        self.cache.get_or_compute("short", self._compute)
        self.assertEqual(self.calls, 2)
