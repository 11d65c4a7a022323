from rest_framework import permissions


class IsSeller(permissions.BasePermission):
    """
    Seller-only surfaces: wallet, payout destinations and withdrawals.
    """
    message = "Only seller accounts can do this."

    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and getattr(request.user, "is_seller", False))


class IsPlatformAdmin(permissions.BasePermission):
    message = "Only platform admins can do this."

    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and getattr(request.user, "is_platform_admin", False))
