import uuid
from django.conf import settings
from django.db import models


class DeviceToken(models.Model):
    class DeviceType(models.TextChoices):
        WEB = "web", "Web"
        ANDROID = "android", "Android"
        IOS = "ios", "iOS"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="device_tokens")
    token = models.TextField(unique=True)
    device_type = models.CharField(max_length=20, choices=DeviceType.choices)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["user", "is_active"], name="device_token_user_idx"),
        ]


class Notification(models.Model):
    class Type(models.TextChoices):
        EARNINGS_RECORDED = "earnings_recorded", "Earnings Recorded"
        PAYOUT_REQUESTED = "payout_requested", "Payout Requested"
        PAYOUT_REQUEST_RECEIVED = "payout_request_received", "Payout Request Received"
        PAYOUT_APPROVED = "payout_approved", "Payout Approved"
        PAYOUT_REJECTED = "payout_rejected", "Payout Rejected"
        PAYOUT_COMPLETED = "payout_completed", "Payout Completed"
        PAYOUT_FAILED = "payout_failed", "Payout Failed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="notifications")
    type = models.CharField(max_length=50, choices=Type.choices)
    title = models.CharField(max_length=255)
    message = models.TextField()
    payload = models.JSONField(default=dict)
    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "is_read"], name="notification_user_read_idx"),
            models.Index(fields=["type"], name="notification_type_idx"),
        ]

    def __str__(self):
        return f"{self.type} -> {self.user_id}"
