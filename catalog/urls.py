from django.urls import path

from .views import CatalogStatsAPIView, FilterListAPIView, ProductListAPIView

urlpatterns = [
    # Example: /api/catalog/products/?page=1&limit=10&sort_by=price_asc&filter[brend]=Nike
    path("products/", ProductListAPIView.as_view(), name="catalog-products"),

    # Example: /api/catalog/filters/?filter[brend]=Nike
    path("filters/", FilterListAPIView.as_view(), name="catalog-filters"),

    path("stats/", CatalogStatsAPIView.as_view(), name="catalog-stats"),
]
