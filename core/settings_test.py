"""Settings for the test suite: SQLite in memory, local-memory cache, no TLS redirects."""

import os

os.environ["DEBUG"] = "true"
os.environ["REDIS_URL"] = ""
os.environ["SENTRY_DSN"] = ""
os.environ.setdefault("SECURE_SSL_REDIRECT", "false")
os.environ.setdefault("SESSION_COOKIE_SECURE", "false")
os.environ.setdefault("CSRF_COOKIE_SECURE", "false")

from .settings import *  # noqa: E402,F401,F403

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "catalog-tests",
    }
}

SECURE_SSL_REDIRECT = False
SLOW_QUERY_MS = 0
CELERY_TASK_ALWAYS_EAGER = True
CATALOG_PRIMARY_FACET_SLUG = "brend"
CATALOG_RESPONSE_CACHE_ENABLED = False
REST_FRAMEWORK = {
    **REST_FRAMEWORK,  # noqa: F405
    "DEFAULT_THROTTLE_RATES": {
        "catalog_products": "10000/minute",
        "catalog_filters": "10000/minute",
    },
}
