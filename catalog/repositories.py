import logging
from contextlib import contextmanager
from decimal import Decimal

from django.db import DatabaseError, InterfaceError
from django.db.models import Count, Max, Min
from django.db.models.functions import Lower

from .exceptions import NO_MATCH_ID, StoreUnavailable
from .filters import SortOrder, canonical_value
from .models import Parameter, ParameterValue, Product, ProductParameter

logger = logging.getLogger(__name__)

# Keeps `IN (...)` lists under the bind-parameter ceiling of every backend.
ID_CHUNK_SIZE = 900

SORT_ORDERING = {
    SortOrder.ID_ASC: ("id",),
    SortOrder.PRICE_ASC: ("price", "id"),
    SortOrder.PRICE_DESC: ("-price", "id"),
}


@contextmanager
def store_errors(operation):
    try:
        yield
    except (DatabaseError, InterfaceError) as exc:
        logger.error("Relational store failure during %s: %s", operation, exc)
        raise StoreUnavailable(f"Relational store unavailable during {operation}") from exc


def _chunks(items, size):
    items = list(items)
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _price(value):
    return Decimal(value) if value is not None else Decimal("0")


class CatalogRepository:
    @staticmethod
    def all_product_ids():
        with store_errors("all_product_ids"):
            return frozenset(Product.objects.values_list("id", flat=True))

    @staticmethod
    def product_count():
        with store_errors("product_count"):
            return Product.objects.count()

    @staticmethod
    def _attribute_query(slug, values):
        # One bound placeholder per value; values are never interpolated.
        return (
            ProductParameter.objects.annotate(value_lower=Lower("value__value"))
            .filter(value__parameter__slug=slug, value_lower__in=[canonical_value(v) for v in values])
            .values_list("product_id", flat=True)
            .order_by()
        )

    @staticmethod
    def matching_product_ids(filters):
        """
        Products satisfying every attribute in `filters`.

        Values of one attribute are alternatives, attributes are conjunctive:
        each attribute becomes one subquery and the subqueries are combined
        with SQL INTERSECT.
        """
        if not filters:
            return CatalogRepository.all_product_ids()

        queries = [CatalogRepository._attribute_query(slug, values) for slug, values in filters.items()]
        with store_errors("matching_product_ids"):
            if len(queries) == 1:
                return frozenset(queries[0])
            return frozenset(queries[0].intersection(*queries[1:]))

    @staticmethod
    def filterable_parameters():
        with store_errors("filterable_parameters"):
            return list(
                Parameter.objects.filter(is_filterable=True)
                .only("id", "name", "slug", "sort_order")
                .order_by("sort_order", "name")
            )

    @staticmethod
    def parameter_values(slug):
        """Display values of `slug` that have at least one linked product."""
        with store_errors("parameter_values"):
            rows = (
                ParameterValue.objects.filter(parameter__slug=slug, product_links__isnull=False)
                .values_list("id", "value")
                .distinct()
                .order_by("id")
            )
            values = {}
            for _, value in rows:
                values.setdefault(canonical_value(value), value)
            return list(values.values())

    @staticmethod
    def value_counts(product_ids=None, slugs=None):
        """
        Distinct product counts per (slug, canonical value).

        `product_ids=None` counts over the whole catalog; otherwise only links
        of the given products are considered.
        """
        base = ProductParameter.objects.all()
        if slugs is not None:
            base = base.filter(value__parameter__slug__in=list(slugs))

        def grouped(queryset):
            return (
                queryset.annotate(value_lower=Lower("value__value"))
                .values("value__parameter__slug", "value_lower")
                .annotate(count=Count("product_id", distinct=True))
                .order_by()
            )

        counts = {}
        with store_errors("value_counts"):
            if product_ids is None:
                batches = [grouped(base)]
            else:
                # Id chunks partition the products, so per-chunk counts add up.
                batches = (grouped(base.filter(product_id__in=chunk)) for chunk in _chunks(product_ids, ID_CHUNK_SIZE))
            for batch in batches:
                for row in batch:
                    key = (row["value__parameter__slug"], canonical_value(row["value_lower"]))
                    counts[key] = counts.get(key, 0) + row["count"]
        return counts

    @staticmethod
    def parameter_stats(slug, value):
        with store_errors("parameter_stats"):
            stats = (
                ProductParameter.objects.annotate(value_lower=Lower("value__value"))
                .filter(value__parameter__slug=slug, value_lower=canonical_value(value))
                .aggregate(
                    count=Count("product_id", distinct=True),
                    min_price=Min("product__price"),
                    max_price=Max("product__price"),
                )
            )
        return {
            "count": int(stats["count"] or 0),
            "min_price": _price(stats["min_price"]),
            "max_price": _price(stats["max_price"]),
        }

    @staticmethod
    def catalog_stats():
        with store_errors("catalog_stats"):
            stats = Product.objects.aggregate(
                total_products=Count("id"),
                min_price=Min("price"),
                max_price=Max("price"),
            )
        return {
            "total_products": int(stats["total_products"] or 0),
            "min_price": _price(stats["min_price"]),
            "max_price": _price(stats["max_price"]),
        }

    @staticmethod
    def mirror_rows():
        """
        Stream (slug, value, product_id, price) link rows for a mirror rebuild,
        grouped by slug and case-folded value, oldest value spelling first.
        """
        queryset = (
            ProductParameter.objects.annotate(value_lower=Lower("value__value"))
            .values_list("value__parameter__slug", "value__value", "product_id", "product__price")
            .order_by("value__parameter__slug", "value_lower", "value__id", "product_id")
        )
        with store_errors("mirror_rows"):
            yield from queryset.iterator(chunk_size=2000)

    @staticmethod
    def iter_product_ids(batch_size):
        queryset = Product.objects.values_list("id", flat=True).order_by("id")
        with store_errors("iter_product_ids"):
            batch = []
            for product_id in queryset.iterator(chunk_size=batch_size):
                batch.append(product_id)
                if len(batch) >= batch_size:
                    yield batch
                    batch = []
            if batch:
                yield batch

    @staticmethod
    def products_page(product_ids, sort, offset, limit):
        """
        One page of products ordered by `sort`.

        `product_ids=None` pages over the whole catalog. An empty id set is
        replaced with the NO_MATCH_ID sentinel so the query stays valid.
        """
        queryset = Product.objects.only("id", "name", "price", "description")
        ordering = SORT_ORDERING.get(sort, SORT_ORDERING[SortOrder.ID_ASC])
        with store_errors("products_page"):
            if product_ids is None:
                return list(queryset.order_by(*ordering)[offset:offset + limit])

            ids = list(product_ids) or [NO_MATCH_ID]
            if len(ids) <= ID_CHUNK_SIZE:
                return list(queryset.filter(id__in=ids).order_by(*ordering)[offset:offset + limit])

            # Large sets: order (id, price) pairs in-process, then load one page.
            keyed = []
            for chunk in _chunks(ids, ID_CHUNK_SIZE):
                keyed.extend(Product.objects.filter(id__in=chunk).values_list("id", "price"))
            if sort == SortOrder.PRICE_ASC:
                keyed.sort(key=lambda row: (row[1], row[0]))
            elif sort == SortOrder.PRICE_DESC:
                keyed.sort(key=lambda row: (-row[1], row[0]))
            else:
                keyed.sort(key=lambda row: row[0])
            page_ids = [row[0] for row in keyed[offset:offset + limit]]
            by_id = queryset.in_bulk(page_ids)
            return [by_id[product_id] for product_id in page_ids if product_id in by_id]
