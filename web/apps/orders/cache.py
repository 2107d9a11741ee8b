"""Cache coordinator for read views derived from catalog data.

Each ``CacheRegion`` is a Django cache alias (see ``CACHES`` in settings).
Reads go through ``read_through``; every mutating operation, whether it is a
stock reservation, an order confirmation or a catalog/VAT change made by a
collaborator, emits one ``invalidate`` call that clears whole regions.
Clearing a region is idempotent, so redundant calls are harmless.
"""

import logging
from typing import Callable, Iterable, Optional

from django.conf import settings
from django.core.cache import caches

from .domain import CacheRegion

logger = logging.getLogger(__name__)


class CacheCoordinator:
    """Single consumer of cache invalidation events."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else getattr(settings, "CACHE_TIMEOUT_SECS", 1800)

    @staticmethod
    def _cache(region: CacheRegion):
        return caches[CacheRegion(region).value]

    def invalidate(self, regions: Iterable[CacheRegion]) -> None:
        """Drop every entry of the given regions."""
        names = sorted({CacheRegion(r).value for r in regions})
        for name in names:
            caches[name].clear()
        logger.info("cache regions invalidated", extra={"cache_regions": names})

    def read_through(self, region: CacheRegion, key: str, loader: Callable[[], object]):
        """Return the cached value for ``key`` or load, store and return it.

        ``None`` results are returned but not cached, so a missing row is
        looked up again on the next read.
        """
        cache = self._cache(region)
        value = cache.get(key)
        if value is not None:
            return value
        value = loader()
        if value is not None:
            cache.set(key, value, self.timeout)
        return value


_coordinator: Optional[CacheCoordinator] = None


def get_cache_coordinator() -> CacheCoordinator:
    """Process-wide coordinator shared by services and model signals."""
    global _coordinator
    if _coordinator is None:
        _coordinator = CacheCoordinator()
    return _coordinator
