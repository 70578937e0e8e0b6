from django.contrib import admin

from .models import Order, OrderItem


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ("total",)


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("order_number", "vendor", "customer", "status", "total_amount", "fulfilled_at", "created_at")
    list_filter = ("status",)
    search_fields = ("order_number", "vendor__business_name", "customer__email")
    inlines = [OrderItemInline]
