"""Error kinds raised by the catalog engine.

Unavailability errors always propagate to the caller; the request layer maps
them to a structured 503 payload (see ``core.exceptions``).
"""

# Reserved product id used when a resolved filter set matched nothing, so an
# ``IN (...)`` clause built from it is never empty. No real product uses it.
NO_MATCH_ID = -1


class CatalogError(Exception):
    """Base class for catalog engine failures."""

    status_code = 500
    error = "Internal Server Error"


class StoreUnavailable(CatalogError):
    status_code = 503
    error = "Service Unavailable"


class CacheUnavailable(CatalogError):
    status_code = 503
    error = "Service Unavailable"


class InvalidFilter(CatalogError):
    status_code = 400
    error = "Bad Request"


class RebuildInProgress(CatalogError):
    status_code = 503
    error = "Service Unavailable"
