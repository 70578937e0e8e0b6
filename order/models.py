import uuid
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.db import models

from vendor.models import Vendor


class Order(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending"
        CONFIRMED = "confirmed"
        PROCESSING = "processing"
        READY_FOR_PICKUP = "ready_for_pickup"
        DELIVERED = "delivered"
        FULFILLED = "fulfilled"
        CANCELLED = "cancelled"

    FULFILLABLE_STATUSES = (Status.READY_FOR_PICKUP, Status.DELIVERED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_number = models.CharField(max_length=20, unique=True)

    customer = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="orders")
    vendor = models.ForeignKey(Vendor, on_delete=models.CASCADE, related_name="orders")
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)

    subtotal = models.DecimalField(max_digits=12, decimal_places=2)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    # Per-order commission agreed with the vendor; falls back to the platform rate when empty.
    commission_percentage_override = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)

    fulfilled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["vendor", "status"], name="order_vendor_status_idx"),
        ]

    def __str__(self):
        return self.order_number


class OrderItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, related_name="items", on_delete=models.CASCADE)

    # Snapshot at checkout
    product_name = models.CharField(max_length=255)
    sku = models.CharField(max_length=100, blank=True)
    price = models.DecimalField(max_digits=12, decimal_places=2)
    quantity = models.PositiveIntegerField()
    total = models.DecimalField(max_digits=12, decimal_places=2)

    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.product_name} x {self.quantity}"

    @property
    def gross_amount(self) -> Decimal:
        return (Decimal(self.price) * self.quantity).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
