from django.urls import path
from rest_framework_simplejwt.views import (
    TokenObtainPairView,   # phone/password -> {access, refresh}
    TokenRefreshView,      # {refresh} -> {access}
    TokenVerifyView,       # {token} -> {} if valid
)

from .views import LoginView, MeView, RegisterView

urlpatterns = [
    path("auth/register/", RegisterView.as_view(), name="auth-register"),
    path("auth/login/", LoginView.as_view(), name="auth-login"),
    path("auth/jwt/create/", TokenObtainPairView.as_view(), name="jwt-create"),
    path("auth/jwt/refresh/", TokenRefreshView.as_view(), name="jwt-refresh"),
    path("auth/jwt/verify/", TokenVerifyView.as_view(), name="jwt-verify"),
    path("users/me/", MeView.as_view(), name="users-me"),
]
