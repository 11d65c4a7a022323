"""
Accounts models.

A single User model carrying the marketplace role (buyer, seller or admin).
Buyers may also check out as guests; those never get a User row and are
identified on the order by their contact details instead.
"""
from typing import Optional
import uuid

from django.contrib.auth.models import AbstractBaseUser, BaseUserManager, PermissionsMixin
from django.db import models
from django.utils import timezone

from common.phone import normalize_phone


# ---------------------------------------------------------------------
# BaseEntity
# ---------------------------------------------------------------------
class BaseEntity(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True
        ordering = ["-created_at"]


# ---------------------------------------------------------------------
# User manager
# ---------------------------------------------------------------------
class UserManager(BaseUserManager):
    use_in_migrations = True

    def _create_user(self, *, phone: Optional[str], email: Optional[str], password: Optional[str], **extra):
        if not phone and not email:
            raise ValueError("Users must have a phone number or an email address")
        user = self.model(
            phone=normalize_phone(phone) or None,
            email=self.normalize_email(email) if email else None,
            **extra,
        )
        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()
        user.save(using=self._db)
        return user

    def create_user(self, phone: Optional[str] = None, password: Optional[str] = None, **extra):
        email = extra.pop("email", None)
        extra.setdefault("is_staff", False)
        extra.setdefault("is_superuser", False)
        return self._create_user(phone=phone, email=email, password=password, **extra)

    def create_superuser(self, email: str, password: str, **extra):
        if not password:
            raise ValueError("Superuser must have a password")
        phone = extra.pop("phone", None)
        extra.setdefault("is_staff", True)
        extra.setdefault("is_superuser", True)
        extra.setdefault("role", User.Role.ADMIN)
        if extra.get("is_staff") is not True:
            raise ValueError("Superuser must have is_staff=True.")
        if extra.get("is_superuser") is not True:
            raise ValueError("Superuser must have is_superuser=True.")
        return self._create_user(phone=phone, email=email, password=password, **extra)

    def get_by_natural_key(self, key: str):
        return self.get(phone=normalize_phone(key))


# ---------------------------------------------------------------------
# User model
# ---------------------------------------------------------------------
class User(AbstractBaseUser, PermissionsMixin, BaseEntity):
    class Role(models.TextChoices):
        BUYER = "BUYER", "Buyer"
        SELLER = "SELLER", "Seller"
        ADMIN = "ADMIN", "Admin"

    class AccountStatus(models.TextChoices):
        ACTIVE = "ACTIVE", "Active"
        SUSPENDED = "SUSPENDED", "Suspended"
        PENDING_VERIFICATION = "PENDING_VERIFICATION", "Pending verification"

    phone = models.CharField(unique=True, max_length=50, blank=True, null=True)
    email = models.EmailField(unique=True, blank=True, null=True)
    display_name = models.CharField(max_length=200, blank=True, default="")
    role = models.CharField(max_length=20, choices=Role.choices, default=Role.BUYER, db_index=True)
    account_status = models.CharField(max_length=30, choices=AccountStatus.choices, default=AccountStatus.ACTIVE)
    country = models.CharField(max_length=2, default="KE")
    last_login_at = models.DateTimeField(null=True, blank=True)

    # Django
    is_staff = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)

    objects = UserManager()

    USERNAME_FIELD = "phone"
    REQUIRED_FIELDS = ["email"]

    class Meta:
        verbose_name = "User"
        verbose_name_plural = "Users"

    def __str__(self) -> str:
        return self.display_name or self.phone or self.email or f"User {self.pk}"

    @property
    def is_seller(self) -> bool:
        return self.role == self.Role.SELLER

    @property
    def is_platform_admin(self) -> bool:
        return self.role == self.Role.ADMIN or self.is_superuser
