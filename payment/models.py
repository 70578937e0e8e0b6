import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models

from order.models import Order, OrderItem
from payment.services.errors import ImmutableRecordError
from vendor.models import Vendor


class PlatformSetting(models.Model):

    class SettingType(models.TextChoices):
        STRING = "string", "String"
        NUMBER = "number", "Number"
        BOOLEAN = "boolean", "Boolean"
        JSON = "json", "JSON"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    key = models.CharField(max_length=100, unique=True)
    value = models.TextField()
    description = models.TextField(blank=True)
    setting_type = models.CharField(max_length=20, choices=SettingType.choices, default=SettingType.STRING)
    is_public = models.BooleanField(default=False)

    # Bumped on every change so earnings can record which rate they were computed with.
    version = models.PositiveIntegerField(default=1)
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.key}={self.value} (v{self.version})"


class PayoutRequest(models.Model):

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        PROCESSING = "processing", "Processing"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"
        REJECTED = "rejected", "Rejected"

    TRANSITIONS = {
        Status.PENDING.value: {Status.PROCESSING.value, Status.REJECTED.value},
        Status.PROCESSING.value: {Status.COMPLETED.value, Status.FAILED.value},
        Status.COMPLETED.value: set(),
        Status.FAILED.value: set(),
        Status.REJECTED.value: set(),
    }

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    vendor = models.ForeignKey(Vendor, on_delete=models.CASCADE, related_name="payout_requests")

    requested_amount = models.DecimalField(max_digits=12, decimal_places=2)
    # Vendor's available balance when the request was made
    available_balance = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    request_reason = models.TextField(blank=True)

    reviewed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="reviewed_payout_requests",
    )
    reviewed_at = models.DateTimeField(null=True, blank=True)
    admin_notes = models.TextField(blank=True)

    # Transfer provider
    transfer_reference = models.CharField(max_length=100, unique=True)
    paystack_transfer_id = models.CharField(max_length=100, blank=True)
    paystack_transfer_code = models.CharField(max_length=100, blank=True)
    transfer_status = models.CharField(max_length=50, blank=True)
    transfer_failure_reason = models.TextField(blank=True)

    payment_reference = models.CharField(max_length=150, blank=True)
    actual_paid_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)

    version = models.PositiveIntegerField(default=1)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["status"], name="payout_request_status_idx"),
            models.Index(fields=["vendor", "status"], name="payout_request_vendor_idx"),
        ]

    def __str__(self):
        return f"Payout {self.transfer_reference} - {self.status}"

    @classmethod
    def can_transition(cls, current: str, target: str) -> bool:
        return str(target) in cls.TRANSITIONS.get(str(current), set())

    @property
    def is_terminal(self) -> bool:
        return not self.TRANSITIONS.get(str(self.status))


class VendorEarning(models.Model):

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        AVAILABLE = "available", "Available"
        PAID_OUT = "paid_out", "Paid Out"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    vendor = models.ForeignKey(Vendor, on_delete=models.CASCADE, related_name="earnings")
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="earnings")
    order_item = models.ForeignKey(OrderItem, on_delete=models.CASCADE, related_name="earnings")

    gross_amount = models.DecimalField(max_digits=12, decimal_places=2)
    # Commission snapshot; later rate changes never touch recorded earnings
    platform_fee_percentage = models.DecimalField(max_digits=5, decimal_places=2)
    commission_version = models.PositiveIntegerField(null=True, blank=True)
    platform_fee = models.DecimalField(max_digits=12, decimal_places=2)
    net_earnings = models.DecimalField(max_digits=12, decimal_places=2)

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    earning_date = models.DateTimeField()
    available_date = models.DateTimeField()
    paid_out_at = models.DateTimeField(null=True, blank=True)
    payout_request = models.ForeignKey(
        PayoutRequest,
        on_delete=models.SET_NULL,
        related_name="earnings",
        null=True,
        blank=True,
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["vendor", "order_item"], name="unique_vendor_order_item_earning"),
        ]
        indexes = [
            models.Index(fields=["vendor", "status"], name="earning_vendor_status_idx"),
            models.Index(fields=["available_date"], name="earning_available_date_idx"),
        ]

    def __str__(self):
        return f"{self.vendor_id} - {self.net_earnings} ({self.status})"


class PayoutHistory(models.Model):
    """Audit row for a settled payout. Written once, never changed."""

    class Status(models.TextChoices):
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    payout_request = models.OneToOneField(PayoutRequest, on_delete=models.PROTECT, related_name="history")
    vendor = models.ForeignKey(Vendor, on_delete=models.PROTECT, related_name="payout_history")

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    transaction_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    net_amount = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.COMPLETED)
    payment_reference = models.CharField(max_length=150, blank=True)
    paystack_transfer_id = models.CharField(max_length=100, blank=True)
    failure_reason = models.TextField(blank=True)
    processed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name_plural = "payout history"
        indexes = [
            models.Index(fields=["vendor", "created_at"], name="payout_history_vendor_idx"),
        ]

    def __str__(self):
        return f"{self.vendor_id} - {self.net_amount} ({self.status})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableRecordError("Payout history records cannot be modified")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableRecordError("Payout history records cannot be deleted")


class WebhookLog(models.Model):

    provider = models.CharField(max_length=50)
    event_type = models.CharField(max_length=100)

    reference = models.CharField(max_length=150)
    payload = models.JSONField()

    processed = models.BooleanField(default=False)
    processing_attempts = models.IntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["reference"], name="webhook_reference_idx"),
            models.Index(fields=["processed"], name="webhook_processed_idx"),
        ]
