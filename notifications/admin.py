from django.contrib import admin

from .models import DeviceToken, Notification


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "type", "title", "is_read", "created_at")
    search_fields = ("user__email", "title")
    list_filter = ("type", "is_read")


@admin.register(DeviceToken)
class DeviceTokenAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "device_type", "is_active", "updated_at")
    search_fields = ("user__email",)
    list_filter = ("device_type", "is_active")
