"""
Accounts views with JWT-based auth.

- Register and Login issue SimpleJWT tokens (access + refresh).
- `users/me/` returns and updates the caller's profile fields.
"""
import logging

from drf_spectacular.utils import extend_schema, OpenApiResponse
from rest_framework import generics, serializers, status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework_simplejwt.tokens import RefreshToken

from .models import User
from .serializers import LoginSerializer, UserCreateSerializer, UserSerializer

logger = logging.getLogger(__name__)


class JWTTokensSerializer(serializers.Serializer):
    access = serializers.CharField(read_only=True)
    refresh = serializers.CharField(read_only=True)
    token_type = serializers.CharField(default="Bearer", read_only=True)


def issue_tokens_for_user(user: User) -> dict:
    refresh = RefreshToken.for_user(user)
    return {
        "access": str(refresh.access_token),
        "refresh": str(refresh),
        "token_type": "Bearer",
    }


@extend_schema(
    summary="Register a new buyer or seller account (returns JWT)",
    request=UserCreateSerializer,
    responses={201: OpenApiResponse(response=UserSerializer)},
    tags=["Auth"],
)
class RegisterView(generics.CreateAPIView):
    queryset = User.objects.all()
    serializer_class = UserCreateSerializer
    permission_classes = [AllowAny]
    authentication_classes = []

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = serializer.save()
        logger.info("registered %s user %s", user.role, user.pk)
        payload = UserSerializer(user, context={"request": request}).data
        return Response({**payload, **issue_tokens_for_user(user)}, status=status.HTTP_201_CREATED)


@extend_schema(
    summary="Login (phone or email + password) -> returns JWT",
    request=LoginSerializer,
    responses={200: JWTTokensSerializer},
    tags=["Auth"],
)
class LoginView(APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        serializer = LoginSerializer(data=request.data, context={"request": request})
        serializer.is_valid(raise_exception=True)
        user = serializer.validated_data["user"]
        tokens = issue_tokens_for_user(user)
        return Response(
            {**tokens, "user": UserSerializer(user, context={"request": request}).data},
            status=status.HTTP_200_OK,
        )


@extend_schema(tags=["Users"])
class MeView(generics.RetrieveUpdateAPIView):
    serializer_class = UserSerializer
    permission_classes = [IsAuthenticated]
    http_method_names = ["get", "patch", "head", "options"]

    def get_object(self):
        return self.request.user
