from django.contrib import admin
from django.contrib.auth.admin import UserAdmin

from .models import CustomUser


@admin.register(CustomUser)
class CustomUserAdmin(UserAdmin):
    list_display = ("email", "username", "role", "phone", "is_active", "is_superuser")
    list_filter = ("role", "is_active", "is_superuser")
    search_fields = ("email", "username", "phone")
    ordering = ("email",)
    fieldsets = UserAdmin.fieldsets + (("Marketplace", {"fields": ("role", "phone")}),)
