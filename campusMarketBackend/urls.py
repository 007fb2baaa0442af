"""
URL configuration for the campusMarketBackend project.
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView, SpectacularSwaggerView

from payment_system.infra.observability.metrics_view import metrics_view

urlpatterns = [
    path("admin/", admin.site.urls),
    # API Documentation
    path("api/schema/", SpectacularAPIView.as_view(), name="schema"),
    path("api/docs/", SpectacularSwaggerView.as_view(url_name="schema"), name="swagger-ui"),
    path("api/redoc/", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    # API endpoints
    path("api/auth/", include("authentication.urls", namespace="authentication")),
    path("api/marketplace/", include("marketplace.urls", namespace="marketplace")),
    path("api/payments/", include("payment_system.urls", namespace="payment_system")),
    path("metrics/", metrics_view, name="prometheus-metrics"),
]
