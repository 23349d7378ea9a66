from django.urls import include, path
from rest_framework.authtoken.views import obtain_auth_token

urlpatterns = [
    path("api/auth/token/", obtain_auth_token, name="auth-token"),
    path("api/", include("apps.orders.urls")),
    path("", include("apps.monitoring.urls")),
]
