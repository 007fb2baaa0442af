from django.urls import path
from rest_framework_simplejwt.views import TokenRefreshView

from .jwt_serializers import CustomTokenObtainPairView

app_name = "authentication"

urlpatterns = [
    path("token/", CustomTokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
]
