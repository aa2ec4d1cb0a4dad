import logging
from contextlib import contextmanager

import redis
from django.conf import settings
from redis.exceptions import RedisError

from .exceptions import CacheUnavailable

logger = logging.getLogger(__name__)


def build_redis_client(url=None, timeout=None):
    """Create the Redis handle used for the catalog mirror."""
    timeout = timeout if timeout is not None else settings.CATALOG_REDIS_TIMEOUT_SECONDS
    return redis.Redis.from_url(
        url or settings.CATALOG_REDIS_URL,
        decode_responses=True,
        socket_timeout=timeout,
        socket_connect_timeout=timeout,
        health_check_interval=30,
    )


@contextmanager
def mirror_errors(operation):
    try:
        yield
    except RedisError as exc:
        logger.error("Cache mirror failure during %s: %s", operation, exc)
        raise CacheUnavailable(f"Cache mirror unavailable during {operation}") from exc


def delete_quietly(client, keys):
    """Best-effort removal of scratch keys; never masks the original error."""
    if not keys:
        return
    try:
        client.delete(*keys)
    except RedisError:
        logger.warning("Could not delete %d scratch keys", len(keys), exc_info=True)


def to_ids(members):
    return frozenset(int(member) for member in members)
