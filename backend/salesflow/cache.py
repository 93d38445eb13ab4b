from __future__ import annotations

"""
Process-owned cache for read-mostly reference data (workflow catalog, transition
graph). Backed by a Django cache backend; keys are tracked locally so callers can
invalidate by pattern, which the Django cache API does not offer.
"""

import logging
import re
import threading
from typing import Any, Callable, TypeVar

from django.conf import settings
from django.core.cache import caches
from django.core.cache.backends.base import BaseCache

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()


class ReferenceCache:
    def __init__(self, backend: BaseCache | None = None, prefix: str = "ref") -> None:
        self._backend_override = backend
        self._prefix = prefix
        self._keys: set[str] = set()
        self._lock = threading.Lock()

    @property
    def _backend(self) -> BaseCache:
        if self._backend_override is not None:
            return self._backend_override
        return caches["default"]

    def _backend_key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    def get_or_compute(
        self, key: str, compute: Callable[[], T], ttl: int | None = None
    ) -> T:
        if ttl is None:
            ttl = int(getattr(settings, "CATALOG_CACHE_TTL_SECONDS", 60))
        cached = self._backend.get(self._backend_key(key), _MISSING)
        if cached is not _MISSING:
            logger.debug("Reference cache hit: key=%s", key)
            return cached
        logger.debug("Reference cache miss: key=%s", key)
        value = compute()
        self._backend.set(self._backend_key(key), value, ttl)
        with self._lock:
            self._keys.add(key)
        return value

    def invalidate(self, key: str) -> None:
        self._backend.delete(self._backend_key(key))
        with self._lock:
            self._keys.discard(key)

    def invalidate_pattern(self, pattern: str) -> int:
        regex = re.compile(pattern)
        with self._lock:
            matched = [key for key in self._keys if regex.search(key)]
            for key in matched:
                self._keys.discard(key)
        if matched:
            self._backend.delete_many([self._backend_key(key) for key in matched])
        logger.debug(
            "Reference cache invalidated: pattern=%s keys=%s", pattern, len(matched)
        )
        return len(matched)

    def clear(self) -> None:
        with self._lock:
            keys = list(self._keys)
            self._keys.clear()
        if keys:
            self._backend.delete_many([self._backend_key(key) for key in keys])

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {"size": len(self._keys), "keys": sorted(self._keys)}


reference_cache = ReferenceCache()
