import logging
from contextlib import contextmanager

from .cache_utils import ALL_PRODUCTS_KEY, product_set_key, scratch_key
from .exceptions import CacheUnavailable
from .mirror import delete_quietly, mirror_errors, to_ids
from .repositories import CatalogRepository

logger = logging.getLogger(__name__)

# Scratch keys also expire on their own in case a worker dies mid-call.
SCRATCH_TTL_SECONDS = 60


class FilterResolver:
    """
    Resolves an active filter map to the set of matching product ids.

    Within an attribute the selected values are alternatives (union); across
    attributes filters are conjunctive (intersection). The Redis mirror is
    preferred; the relational store answers when the mirror is unreachable or
    has not been built yet. A missing per-value set is an ordinary miss and
    simply contributes nothing.
    """

    def __init__(self, client, repository=CatalogRepository):
        self.client = client
        self.repository = repository

    def resolve(self, filters):
        try:
            if self.mirror_ready():
                return self.resolve_cached(filters)
            logger.info("Cache mirror not populated; resolving filters from the store")
        except CacheUnavailable:
            logger.warning("Cache mirror unavailable; resolving filters from the store", exc_info=True)
        return self.resolve_relational(filters)

    def mirror_ready(self):
        with mirror_errors("mirror_ready"):
            return bool(self.client.exists(ALL_PRODUCTS_KEY))

    def resolve_cached(self, filters):
        with self.stored_result(filters) as result_key:
            with mirror_errors("resolve_cached"):
                return to_ids(self.client.smembers(result_key))

    @contextmanager
    def stored_result(self, filters):
        """
        Resolve `filters` inside Redis and yield the key holding the result.

        The key is a scratch set removed on exit. With no filters the live
        `all_products` set is yielded as-is and left alone.
        """
        if not filters:
            yield ALL_PRODUCTS_KEY
            return

        result_key = scratch_key("result")
        temp_keys = [result_key]
        try:
            with mirror_errors("resolve_cached"):
                pipe = self.client.pipeline(transaction=False)
                union_keys = []
                for slug, values in filters.items():
                    union_key = scratch_key("union")
                    union_keys.append(union_key)
                    pipe.sunionstore(union_key, [product_set_key(slug, value) for value in values])
                    pipe.expire(union_key, SCRATCH_TTL_SECONDS)
                temp_keys.extend(union_keys)
                pipe.sinterstore(result_key, union_keys)
                pipe.expire(result_key, SCRATCH_TTL_SECONDS)
                pipe.delete(*union_keys)
                pipe.execute()
            yield result_key
        finally:
            delete_quietly(self.client, temp_keys)

    def resolve_relational(self, filters):
        return self.repository.matching_product_ids(filters)
