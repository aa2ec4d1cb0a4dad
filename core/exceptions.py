import logging

from django.conf import settings
from django.utils import timezone
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from catalog.exceptions import CatalogError

logger = logging.getLogger("catalog")


def _debug_context(request):
    if request is None:
        return {"timestamp": timezone.now().isoformat()}
    return {
        "timestamp": timezone.now().isoformat(),
        "path": request.path,
        "method": request.method,
        "query": dict(request.GET.lists()),
    }


def catalog_exception_handler(exc, context):
    """
    Render every API failure as ``{error, message, debug}``.

    DRF's own exceptions (validation, throttling, auth) keep their status
    codes; catalog errors map to their declared status; anything else is a
    500 whose message is only revealed when DEBUG is on.
    """
    request = context.get("request")
    response = exception_handler(exc, context)

    if response is not None:
        detail = response.data.get("detail", response.data) if isinstance(response.data, dict) else response.data
        response.data = {
            "error": exc.__class__.__name__,
            "message": detail,
            "debug": _debug_context(request),
        }
        return response

    if isinstance(exc, CatalogError):
        if exc.status_code >= 500:
            logger.error("Catalog request failed: %s", exc)
        message = str(exc)
        if exc.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR and not settings.DEBUG:
            message = "An unexpected error occurred."
        return Response(
            {
                "error": exc.error,
                "message": message,
                "debug": _debug_context(request),
            },
            status=exc.status_code,
        )

    logger.exception("Unhandled error in catalog API", exc_info=exc)
    return Response(
        {
            "error": "Internal Server Error",
            "message": str(exc) if settings.DEBUG else "An unexpected error occurred.",
            "debug": _debug_context(request),
        },
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
