import logging

from celery import shared_task

from .engine import get_catalog_service
from .exceptions import CacheUnavailable, RebuildInProgress, StoreUnavailable

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=5, default_retry_delay=5)
def rebuild_catalog_cache_task(self):
    try:
        report = get_catalog_service().rebuild()
    except RebuildInProgress as exc:
        # A rebuild that started before our import committed may miss it; run again after it.
        logger.info("Catalog cache rebuild deferred: another rebuild is in flight")
        raise self.retry(exc=exc, countdown=30)
    except (CacheUnavailable, StoreUnavailable) as exc:
        raise self.retry(exc=exc, countdown=5 * (self.request.retries + 1))
    return {
        "products": report.products,
        "values": report.values,
        "duration_ms": report.duration_ms,
    }
