import uuid

from .filters import canonical_value, filters_digest

PREFIX_PRODUCT_SET = "products:param:"
PREFIX_PARAM_STATS = "param:stats:"
PREFIX_PARAM_VALUES = "param:values:"
PREFIX_FILTERED = "products:filtered:"
PREFIX_FILTERS = "catalog:filters"
ALL_PRODUCTS_KEY = "all_products"
CATALOG_STATS_KEY = "catalog:stats"
REBUILD_META_KEY = "catalog:rebuild:meta"
REBUILD_LOCK_KEY = "catalog:rebuild:lock"

# Cached API responses; dropped with the mirror and again once it is republished.
RESPONSE_KEY_PATTERNS = (
    f"{PREFIX_FILTERED}*",
    f"{PREFIX_FILTERS}*",
)
# Everything a rebuild wipes. Scratch keys and the rebuild lock expire on their
# own; the rebuild meta hash is bookkeeping and is overwritten, not wiped.
MIRROR_KEY_PATTERNS = (
    f"{PREFIX_PRODUCT_SET}*",
    f"{PREFIX_PARAM_STATS}*",
    f"{PREFIX_PARAM_VALUES}*",
) + RESPONSE_KEY_PATTERNS
MIRROR_SINGLE_KEYS = (ALL_PRODUCTS_KEY, CATALOG_STATS_KEY)


def product_set_key(slug: str, value: str) -> str:
    return f"{PREFIX_PRODUCT_SET}{slug}:{canonical_value(value)}"


def param_stats_key(slug: str, value: str) -> str:
    return f"{PREFIX_PARAM_STATS}{product_set_key(slug, value)}"


def param_values_key(slug: str) -> str:
    return f"{PREFIX_PARAM_VALUES}{slug}"


def filtered_page_key(filters, sort: str, page: int, per_page: int) -> str:
    return f"{PREFIX_FILTERED}{filters_digest(filters)}:{sort}:{page}:{per_page}"


def filters_response_key(filters) -> str:
    if not filters:
        return PREFIX_FILTERS
    return f"{PREFIX_FILTERS}:{filters_digest(filters)}"


def scratch_key(kind: str) -> str:
    return f"temp:{kind}:{uuid.uuid4().hex}"
