import logging

from django.conf import settings
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from core.throttles import CatalogFiltersRateThrottle, CatalogProductsRateThrottle

from .engine import get_catalog_service
from .filters import SortOrder, filters_from_query
from .serializers import CatalogStatsSerializer, FacetSerializer, ProductListQuerySerializer

logger = logging.getLogger(__name__)


class CatalogIndexAPIView(APIView):
    permission_classes = [AllowAny]

    def get(self, request):
        return Response(
            {
                "api": "Catalog API",
                "version": "1.0",
                "endpoints": {
                    "/api/catalog/products/": {
                        "description": "Get products list",
                        "parameters": {
                            "page": "int, default: 1",
                            "limit": f"int, default: {settings.CATALOG_DEFAULT_PAGE_SIZE}",
                            "sort_by": f"string ({', '.join(SortOrder.values)})",
                            "filter[parameter_slug]": "string|array",
                        },
                        "example": "/api/catalog/products/?page=1&limit=10&sort_by=price_asc&filter[brend]=Nike",
                    },
                    "/api/catalog/filters/": {
                        "description": "Get available filters",
                        "parameters": {
                            "filter[parameter_slug]": "string|array (current active filters)",
                        },
                        "example": "/api/catalog/filters/?filter[brend]=Nike",
                    },
                    "/api/catalog/stats/": {
                        "description": "Get catalog totals and price range",
                    },
                },
            }
        )


class ProductListAPIView(APIView):
    permission_classes = [AllowAny]
    throttle_classes = [CatalogProductsRateThrottle]
    throttle_scope = CatalogProductsRateThrottle.scope

    def get(self, request):
        query = ProductListQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        filters = filters_from_query(request.query_params)

        result = get_catalog_service().list_products(
            page=query.validated_data["page"],
            limit=query.validated_data.get("limit"),
            sort_by=query.validated_data.get("sort_by"),
            filters=filters,
        )
        logger.debug("Returning %s products for filters=%s", len(result["data"]), filters)
        return Response(result)


class FilterListAPIView(APIView):
    permission_classes = [AllowAny]
    throttle_classes = [CatalogFiltersRateThrottle]
    throttle_scope = CatalogFiltersRateThrottle.scope

    def get(self, request):
        active_filters = filters_from_query(request.query_params)
        facets = get_catalog_service().get_filters(active_filters)
        return Response(FacetSerializer(facets, many=True).data)


class CatalogStatsAPIView(APIView):
    permission_classes = [AllowAny]

    def get(self, request):
        stats = get_catalog_service().catalog_stats()
        return Response(CatalogStatsSerializer(stats).data)
