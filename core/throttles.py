from rest_framework.throttling import ScopedRateThrottle


class CatalogProductsRateThrottle(ScopedRateThrottle):
    scope = "catalog_products"


class CatalogFiltersRateThrottle(ScopedRateThrottle):
    scope = "catalog_filters"
