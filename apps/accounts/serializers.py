"""
Serializers for accounts app.
"""
from django.contrib.auth import authenticate
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError as DjangoValidationError
from django.utils.translation import gettext_lazy as _
from rest_framework import serializers

from common.phone import to_e164
from .models import User


class UserSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = (
            "id",
            "phone",
            "email",
            "display_name",
            "role",
            "account_status",
            "country",
            "created_at",
        )
        read_only_fields = ("id", "role", "account_status", "created_at")


class UserCreateSerializer(serializers.ModelSerializer):
    password = serializers.CharField(write_only=True, required=True, trim_whitespace=False)
    phone = serializers.CharField(required=True, allow_blank=False)
    role = serializers.ChoiceField(choices=[User.Role.BUYER, User.Role.SELLER], default=User.Role.BUYER)

    class Meta:
        model = User
        fields = ("phone", "email", "password", "display_name", "role", "country")

    def validate_phone(self, value):
        country = (self.initial_data.get("country") or "KE").upper()
        try:
            phone = to_e164(value, region=country)
        except ValueError:
            raise serializers.ValidationError(_("Invalid phone number format."))
        if User.objects.filter(phone=phone).exists():
            raise serializers.ValidationError(_("A user with this phone number already exists."))
        return phone

    def validate_password(self, value):
        try:
            validate_password(value)
        except DjangoValidationError as exc:
            raise serializers.ValidationError(list(exc.messages))
        return value

    def create(self, validated_data):
        raw_password = validated_data.pop("password")
        phone = validated_data.pop("phone")
        return User.objects.create_user(phone=phone, password=raw_password, **validated_data)


class LoginSerializer(serializers.Serializer):
    phone = serializers.CharField(write_only=True)
    password = serializers.CharField(write_only=True, trim_whitespace=False)

    def validate(self, attrs):
        req = self.context.get("request")
        if hasattr(req, "_request"):
            req = req._request
        user = authenticate(request=req, username=attrs["phone"], password=attrs["password"])
        if user is None:
            raise serializers.ValidationError({"detail": _("Invalid credentials.")})
        if user.account_status == User.AccountStatus.SUSPENDED:
            raise serializers.ValidationError({"detail": _("User account is suspended.")})
        attrs["user"] = user
        return attrs
