from django.conf import settings
from django.utils.crypto import constant_time_compare
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from catalog.engine import get_catalog_service


class CatalogStatusAPIView(APIView):
    permission_classes = [AllowAny]
    throttle_classes = []

    def _is_authorized(self, request):
        if bool(getattr(settings, "DEBUG", False)):
            return True

        user = getattr(request, "user", None)
        if user and user.is_authenticated and user.is_staff:
            return True

        expected = (getattr(settings, "SYSTEM_STATUS_TOKEN", "") or "").strip()
        if not expected:
            return False

        provided = (
            request.headers.get("X-System-Token")
            or request.GET.get("token")
            or ""
        ).strip()
        if not provided:
            return False

        return constant_time_compare(provided, expected)

    def get(self, request):
        if not self._is_authorized(request):
            return Response({"detail": "Forbidden"}, status=403)

        status = get_catalog_service().mirror_status()
        cache_conf = (getattr(settings, "CACHES", {}) or {}).get("default", {})
        return Response(
            {
                "mirror_ready": status["ready"],
                "mirrored_products": status["products"],
                "last_rebuild": status["last_rebuild"],
                "primary_facet": settings.CATALOG_PRIMARY_FACET_SLUG,
                "response_cache_enabled": bool(settings.CATALOG_RESPONSE_CACHE_ENABLED),
                "debug": bool(getattr(settings, "DEBUG", False)),
                "cache_backend": cache_conf.get("BACKEND", ""),
            }
        )
