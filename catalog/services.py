import json
import logging
from decimal import Decimal

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder

from .cache_utils import (
    ALL_PRODUCTS_KEY,
    CATALOG_STATS_KEY,
    REBUILD_META_KEY,
    filtered_page_key,
    filters_response_key,
    param_stats_key,
    param_values_key,
)
from .exceptions import CacheUnavailable
from .filters import SortOrder, normalize_filters
from .mirror import mirror_errors
from .pagination import last_page_for
from .repositories import CatalogRepository
from .serializers import ProductSerializer

logger = logging.getLogger(__name__)


class CatalogService:
    """
    Read-side entry point used by the API views and the import pipeline.

    Components are injected at construction so one process-wide Redis handle
    is shared between them (see ``catalog.engine``).
    """

    def __init__(self, client, resolver, facets, paginator, rebuilder, repository=CatalogRepository,
                 ttl=None, response_cache=None):
        self.client = client
        self.resolver = resolver
        self.facets = facets
        self.paginator = paginator
        self.rebuilder = rebuilder
        self.repository = repository
        self.ttl = ttl or settings.CATALOG_CACHE_TTL
        if response_cache is None:
            response_cache = settings.CATALOG_RESPONSE_CACHE_ENABLED
        self.response_cache = response_cache

    def list_products(self, page=1, limit=None, sort_by=None, filters=None):
        limit = limit or settings.CATALOG_DEFAULT_PAGE_SIZE
        sort = SortOrder.parse(sort_by)
        filters = normalize_filters(filters)
        logger.debug("list_products page=%s limit=%s sort=%s filters=%s", page, limit, sort, filters)

        cache_key = filtered_page_key(filters, sort.value, page, limit)
        cached = self._cached_response(cache_key)
        if cached is not None:
            return cached

        product_ids = self.resolver.resolve(filters) if filters else None
        if product_ids is not None and not product_ids:
            result = {
                "data": [],
                "meta": {
                    "current_page": page,
                    "per_page": limit,
                    "total": 0,
                    "last_page": last_page_for(0, limit),
                },
            }
        else:
            page_obj = self.paginator.page(product_ids, sort, page, limit)
            result = {
                "data": ProductSerializer(page_obj.items, many=True).data,
                "meta": page_obj.meta,
            }

        self._store_response(cache_key, result)
        return result

    def get_filters(self, active_filters=None):
        active_filters = normalize_filters(active_filters)
        cache_key = filters_response_key(active_filters)
        cached = self._cached_response(cache_key)
        if cached is not None:
            return cached

        result = self.facets.compute_facets(active_filters)
        self._store_response(cache_key, result)
        return result

    def resolve(self, filters):
        return self.resolver.resolve(normalize_filters(filters))

    def rebuild(self):
        return self.rebuilder.rebuild()

    def catalog_stats(self):
        stats = self._read_hash(CATALOG_STATS_KEY)
        if not stats:
            stats = self.repository.catalog_stats()
            self._write_hash(CATALOG_STATS_KEY, stats)
        return {
            "total_products": int(stats.get("total_products") or 0),
            "min_price": Decimal(str(stats.get("min_price") or 0)),
            "max_price": Decimal(str(stats.get("max_price") or 0)),
        }

    def parameter_stats(self, slug, value):
        stats_key = param_stats_key(slug, value)
        stats = self._read_hash(stats_key)
        if not stats:
            stats = self.repository.parameter_stats(slug, value)
            if stats["count"]:
                self._write_hash(stats_key, stats)
        return {
            "count": int(stats.get("count") or 0),
            "min_price": Decimal(str(stats.get("min_price") or 0)),
            "max_price": Decimal(str(stats.get("max_price") or 0)),
        }

    def parameter_values(self, slug):
        try:
            with mirror_errors("parameter_values"):
                values = self.client.smembers(param_values_key(slug))
        except CacheUnavailable:
            logger.warning("Cache mirror unavailable; reading values of %s from the store", slug)
            values = None
        if values:
            return sorted(values, key=str.lower)
        return self.repository.parameter_values(slug)

    def mirror_status(self):
        with mirror_errors("mirror_status"):
            pipe = self.client.pipeline(transaction=False)
            pipe.exists(ALL_PRODUCTS_KEY)
            pipe.scard(ALL_PRODUCTS_KEY)
            pipe.hgetall(REBUILD_META_KEY)
            ready, products, meta = pipe.execute()
        return {
            "ready": bool(ready),
            "products": int(products or 0),
            "last_rebuild": meta or None,
        }

    def _cached_response(self, key):
        if not self.response_cache:
            return None
        try:
            with mirror_errors("read response cache"):
                raw = self.client.get(key)
        except CacheUnavailable:
            return None
        return json.loads(raw) if raw else None

    def _store_response(self, key, payload):
        if not self.response_cache:
            return
        try:
            with mirror_errors("write response cache"):
                self.client.setex(key, self.ttl, json.dumps(payload, cls=DjangoJSONEncoder, ensure_ascii=False))
        except CacheUnavailable:
            logger.warning("Response cache write skipped for %s", key)

    def _read_hash(self, key):
        try:
            with mirror_errors(f"hgetall {key}"):
                return self.client.hgetall(key)
        except CacheUnavailable:
            return {}

    def _write_hash(self, key, mapping):
        try:
            with mirror_errors(f"hset {key}"):
                pipe = self.client.pipeline(transaction=True)
                pipe.hset(key, mapping={field: str(value) for field, value in mapping.items()})
                pipe.expire(key, self.ttl)
                pipe.execute()
        except CacheUnavailable:
            logger.warning("Stats write-back skipped for %s", key)
