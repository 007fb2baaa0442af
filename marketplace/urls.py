from django.urls import include, path
from rest_framework.routers import DefaultRouter

from marketplace.cart.api.views.cart_views import CartViewSet
from marketplace.ordering.api.views.order_views import OrderViewSet, checkout_status

# Create the main router
router = DefaultRouter()
router.register(r"cart", CartViewSet, basename="cart")
router.register(r"orders", OrderViewSet, basename="order")

app_name = "marketplace"

urlpatterns = [
    path("checkouts/<str:checkout_session_id>/", checkout_status, name="checkout-status"),
    # Main API routes
    path("", include(router.urls)),
]
