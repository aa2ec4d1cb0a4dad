"""
URL configuration for the catalog project.
"""
from django.contrib import admin
from django.urls import path, include

from catalog.views import CatalogIndexAPIView
from core.system_views import CatalogStatusAPIView

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/', CatalogIndexAPIView.as_view(), name='api-index'),
    path('api/catalog/', include('catalog.urls')),
    path('api/system/catalog/', CatalogStatusAPIView.as_view(), name='system-catalog-status'),
]
