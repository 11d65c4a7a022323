# accounts/auth_backends.py
from typing import Optional

from django.contrib.auth.backends import ModelBackend
from django.db.models import Q
from django.utils import timezone

from common.phone import normalize_local_digits, normalize_phone
from .models import User


class PhoneOrEmailBackend(ModelBackend):
    """
    Auth with phone (E.164 or national digits in the default region) or email.
    """

    def authenticate(self, request, username: Optional[str] = None, password: Optional[str] = None, **kwargs):
        ident = kwargs.get("phone") or username or kwargs.get("email")
        if not ident or not password:
            return None
        ident = str(ident).strip()

        candidates = {ident, normalize_phone(ident)}
        digits = normalize_local_digits(ident)
        if digits:
            candidates.add(digits)

        q = Q(email__iexact=ident)
        for c in candidates:
            if c:
                q |= Q(phone=c)

        user = User.objects.filter(q, is_active=True).first()
        if user is None or not user.check_password(password):
            return None
        if not self.user_can_authenticate(user):
            return None

        user.last_login_at = timezone.now()
        user.save(update_fields=["last_login_at"])
        return user
