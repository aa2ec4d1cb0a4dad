"""Gunicorn config for the catalog API.

Each setting can be overridden with a ``GUNICORN_<NAME>`` environment variable.
"""

import multiprocessing
import os


def _env(name, default, cast=str):
    raw = (os.getenv(f"GUNICORN_{name}") or "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        return default


def _flag(raw):
    return raw.lower() in ("1", "true", "yes", "on")


bind = _env("BIND", "127.0.0.1:8000")

# Catalog reads are Redis bound; threads overlap the round trips.
worker_class = "gthread"
workers = _env("WORKERS", min(multiprocessing.cpu_count() * 2 + 1, 9), int)
threads = _env("THREADS", 4, int)

# Facet requests on a cold mirror fall back to SQL and can take a while.
timeout = _env("TIMEOUT", 60, int)
graceful_timeout = timeout // 2
keepalive = 5

max_requests = _env("MAX_REQUESTS", 2000, int)
max_requests_jitter = max_requests // 10
preload_app = _env("PRELOAD_APP", True, _flag)

loglevel = _env("LOG_LEVEL", "info")
accesslog = "-"
errorlog = "-"
access_log_format = '%(h)s "%(r)s" %(s)s %(b)s %(M)sms'


def post_fork(server, worker):
    # Sockets opened in the master must not be shared between workers.
    from catalog.engine import reset_catalog_service

    reset_catalog_service()
    server.log.info("Worker %s will open its own catalog Redis handle", worker.pid)
