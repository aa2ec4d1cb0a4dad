"""Process bootstrap for the catalog engine.

One Redis handle is created lazily per process and injected into every
component; views and tasks obtain the assembled service via
``get_catalog_service()``.
"""

import threading

from django.conf import settings

from .facets import FacetCalculator
from .mirror import build_redis_client
from .pagination import Paginator
from .rebuild import CacheRebuilder
from .resolver import FilterResolver
from .services import CatalogService

_lock = threading.Lock()
_service = None


def build_catalog_service(client, primary_slug=None, **options):
    resolver = FilterResolver(client)
    facets = FacetCalculator(
        client,
        resolver,
        primary_slug=primary_slug or settings.CATALOG_PRIMARY_FACET_SLUG,
    )
    return CatalogService(
        client=client,
        resolver=resolver,
        facets=facets,
        paginator=Paginator(),
        rebuilder=CacheRebuilder(client),
        **options,
    )


def get_catalog_service():
    global _service
    if _service is None:
        with _lock:
            if _service is None:
                _service = build_catalog_service(build_redis_client())
    return _service



def reset_catalog_service():
    """Forget the process-wide service so the next caller opens a new Redis handle."""
    global _service
    with _lock:
        _service = None
