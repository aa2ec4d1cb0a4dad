import logging
import time
from dataclasses import dataclass

from django.conf import settings
from django.utils import timezone
from redis.exceptions import LockError

from .cache_utils import (
    ALL_PRODUCTS_KEY,
    CATALOG_STATS_KEY,
    MIRROR_KEY_PATTERNS,
    MIRROR_SINGLE_KEYS,
    REBUILD_LOCK_KEY,
    REBUILD_META_KEY,
    RESPONSE_KEY_PATTERNS,
    param_stats_key,
    param_values_key,
    product_set_key,
    scratch_key,
)
from .exceptions import RebuildInProgress
from .filters import canonical_value
from .mirror import delete_quietly, mirror_errors
from .repositories import CatalogRepository

logger = logging.getLogger(__name__)


@dataclass
class RebuildReport:
    products: int = 0
    values: int = 0
    deleted_keys: int = 0
    duration_ms: float = 0.0


class _ValueGroup:
    __slots__ = ("display", "product_ids", "min_price", "max_price")

    def __init__(self, display):
        self.display = display
        self.product_ids = set()
        self.min_price = None
        self.max_price = None

    def add(self, product_id, price):
        self.product_ids.add(product_id)
        if self.min_price is None or price < self.min_price:
            self.min_price = price
        if self.max_price is None or price > self.max_price:
            self.max_price = price


class CacheRebuilder:
    """
    Regenerates the Redis mirror from the relational store.

    Full replace only: every mirror key is dropped first, then the per-value
    sets with their stats and the catalog stats are written again. The global
    product set is staged under a scratch key and renamed into place last, so
    readers keep answering from the relational store until the mirror is
    complete. Nothing depends on what the mirror held before, so a failed run
    is repaired by running again, and two runs over the same data leave the
    same mirror behind. The `catalog:rebuild:meta` hash records when the last
    run finished and how long it took; it is bookkeeping rather than part of
    the mirror and changes on every run. A Redis lock keeps rebuilds one at a
    time.
    """

    def __init__(self, client, repository=CatalogRepository, ttl=None, batch_size=None, lock_timeout=None):
        self.client = client
        self.repository = repository
        self.ttl = ttl or settings.CATALOG_CACHE_TTL
        self.batch_size = batch_size or settings.CATALOG_REBUILD_BATCH_SIZE
        self.lock_timeout = lock_timeout or settings.CATALOG_REBUILD_LOCK_TIMEOUT

    def rebuild(self):
        started = time.perf_counter()
        lock = self.client.lock(REBUILD_LOCK_KEY, timeout=self.lock_timeout, blocking_timeout=0)
        with mirror_errors("acquire rebuild lock"):
            acquired = lock.acquire(blocking=False)
        if not acquired:
            raise RebuildInProgress("Another catalog cache rebuild is already running")

        staging_key = scratch_key("all_products")
        try:
            report = RebuildReport()
            report.deleted_keys = self.clear()
            report.values = self._write_value_sets()
            self._write_catalog_stats()
            report.products = self._stage_all_products(staging_key)
            report.deleted_keys += self._publish(staging_key, report.products)
            report.duration_ms = round((time.perf_counter() - started) * 1000, 2)
            self._write_meta(report)
        except Exception:
            logger.exception("Catalog cache rebuild failed")
            raise
        finally:
            delete_quietly(self.client, [staging_key])
            try:
                lock.release()
            except LockError:
                logger.warning("Rebuild lock expired before release", exc_info=True)

        logger.info(
            "Catalog cache rebuilt products=%s values=%s deleted_keys=%s duration_ms=%.2f",
            report.products,
            report.values,
            report.deleted_keys,
            report.duration_ms,
        )
        return report

    def clear(self):
        """Drop every mirror key in a single MULTI/EXEC."""
        with mirror_errors("clear"):
            keys = set(MIRROR_SINGLE_KEYS)
            for pattern in MIRROR_KEY_PATTERNS:
                keys.update(self.client.scan_iter(match=pattern, count=1000))
            pipe = self.client.pipeline(transaction=True)
            pipe.delete(*keys)
            deleted, = pipe.execute()
        return int(deleted or 0)

    def _stage_all_products(self, staging_key):
        total = 0
        with mirror_errors("all_products"):
            for batch in self.repository.iter_product_ids(self.batch_size):
                pipe = self.client.pipeline(transaction=False)
                pipe.sadd(staging_key, *[str(product_id) for product_id in batch])
                pipe.expire(staging_key, self.lock_timeout)
                pipe.execute()
                total += len(batch)
        return total

    def _publish(self, staging_key, products):
        """
        Rename the staged product set into `all_products`, which marks the
        mirror ready, and drop responses cached while the rebuild ran.
        """
        with mirror_errors("publish all_products"):
            stale = set()
            for pattern in RESPONSE_KEY_PATTERNS:
                stale.update(self.client.scan_iter(match=pattern, count=1000))
            pipe = self.client.pipeline(transaction=True)
            if products:
                pipe.rename(staging_key, ALL_PRODUCTS_KEY)
                pipe.persist(ALL_PRODUCTS_KEY)
            if stale:
                pipe.delete(*stale)
            results = pipe.execute()
        return int(results[-1] or 0) if stale else 0

    def _write_value_sets(self):
        written = 0
        current_slug = None
        groups = {}
        for slug, value, product_id, price in self.repository.mirror_rows():
            if slug != current_slug:
                written += self._flush(current_slug, groups)
                current_slug, groups = slug, {}
            key = canonical_value(value)
            group = groups.get(key)
            if group is None:
                group = groups[key] = _ValueGroup(value)
            group.add(product_id, price)
        written += self._flush(current_slug, groups)
        return written

    def _flush(self, slug, groups):
        if slug is None or not groups:
            return 0
        with mirror_errors(f"value sets for {slug}"):
            for group in groups.values():
                set_key = product_set_key(slug, group.display)
                stats_key = param_stats_key(slug, group.display)
                members = [str(product_id) for product_id in group.product_ids]
                # Set, stats and registration land together or not at all.
                pipe = self.client.pipeline(transaction=True)
                pipe.delete(set_key)
                for start in range(0, len(members), self.batch_size):
                    pipe.sadd(set_key, *members[start:start + self.batch_size])
                pipe.hset(stats_key, mapping={
                    "count": str(len(members)),
                    "min_price": str(group.min_price),
                    "max_price": str(group.max_price),
                })
                pipe.expire(stats_key, self.ttl)
                pipe.sadd(param_values_key(slug), group.display)
                pipe.execute()
        return len(groups)

    def _write_catalog_stats(self):
        stats = self.repository.catalog_stats()
        with mirror_errors("catalog_stats"):
            pipe = self.client.pipeline(transaction=True)
            pipe.hset(CATALOG_STATS_KEY, mapping={key: str(value) for key, value in stats.items()})
            pipe.expire(CATALOG_STATS_KEY, self.ttl)
            pipe.execute()

    def _write_meta(self, report):
        with mirror_errors("rebuild meta"):
            self.client.hset(REBUILD_META_KEY, mapping={
                "finished_at": timezone.now().isoformat(),
                "products": str(report.products),
                "values": str(report.values),
                "duration_ms": str(report.duration_ms),
            })
