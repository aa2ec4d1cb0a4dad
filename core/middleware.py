import logging
import time
from contextlib import ExitStack

from django.conf import settings
from django.db import connections

logger = logging.getLogger("core.slow_query")


class _QueryTimer:
    """Execute wrapper counting statements and reporting the slow ones."""

    def __init__(self, threshold_ms, path):
        self.threshold_ms = threshold_ms
        self.path = path
        self.count = 0
        self.total_ms = 0.0

    def __call__(self, execute, sql, params, many, context):
        start = time.perf_counter()
        try:
            return execute(sql, params, many, context)
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            self.count += 1
            self.total_ms += elapsed_ms
            if elapsed_ms >= self.threshold_ms:
                sql_preview = " ".join(str(sql).split())[:400]
                logger.warning(
                    "Slow query path=%s duration_ms=%.2f sql=%s",
                    self.path,
                    elapsed_ms,
                    sql_preview,
                )


class SlowQueryLoggingMiddleware:
    """Logs SQL statements slower than SLOW_QUERY_MS and per-request query totals."""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        threshold_ms = int(getattr(settings, "SLOW_QUERY_MS", 500))
        if threshold_ms <= 0:
            return self.get_response(request)

        timer = _QueryTimer(threshold_ms=threshold_ms, path=request.path)
        with ExitStack() as stack:
            for connection in connections.all():
                stack.enter_context(connection.execute_wrapper(timer))
            response = self.get_response(request)

        if timer.count:
            logger.debug(
                "path=%s queries=%d sql_ms=%.2f",
                request.path,
                timer.count,
                timer.total_ms,
            )
        return response
