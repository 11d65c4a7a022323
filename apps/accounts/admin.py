from django.contrib import admin

from .models import User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ("id", "display_name", "phone", "email", "role", "account_status", "is_active", "created_at")
    list_filter = ("role", "account_status", "is_active", "is_staff")
    search_fields = ("phone", "email", "display_name")
    readonly_fields = ("created_at", "updated_at", "last_login_at")
    ordering = ("-created_at",)
