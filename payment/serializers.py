from decimal import Decimal

from rest_framework import serializers

from .models import PayoutHistory, PayoutRequest, PlatformSetting, VendorEarning


class VendorEarningSerializer(serializers.ModelSerializer):
    order_number = serializers.CharField(source="order.order_number", read_only=True)
    product_name = serializers.CharField(source="order_item.product_name", read_only=True)

    class Meta:
        model = VendorEarning
        fields = [
            "id",
            "vendor",
            "order",
            "order_number",
            "order_item",
            "product_name",
            "gross_amount",
            "platform_fee_percentage",
            "commission_version",
            "platform_fee",
            "net_earnings",
            "status",
            "earning_date",
            "available_date",
            "paid_out_at",
            "payout_request",
        ]


class PayoutRequestSerializer(serializers.ModelSerializer):
    vendor_name = serializers.CharField(source="vendor.business_name", read_only=True)

    class Meta:
        model = PayoutRequest
        fields = [
            "id",
            "vendor",
            "vendor_name",
            "requested_amount",
            "available_balance",
            "status",
            "request_reason",
            "reviewed_by",
            "reviewed_at",
            "admin_notes",
            "transfer_reference",
            "paystack_transfer_code",
            "transfer_status",
            "transfer_failure_reason",
            "payment_reference",
            "actual_paid_amount",
            "completed_at",
            "failed_at",
            "version",
            "created_at",
            "updated_at",
        ]


class PayoutHistorySerializer(serializers.ModelSerializer):
    class Meta:
        model = PayoutHistory
        fields = [
            "id",
            "payout_request",
            "vendor",
            "amount",
            "transaction_fee",
            "net_amount",
            "status",
            "payment_reference",
            "paystack_transfer_id",
            "failure_reason",
            "created_at",
        ]


class PlatformSettingSerializer(serializers.ModelSerializer):
    class Meta:
        model = PlatformSetting
        fields = ["key", "value", "description", "setting_type", "is_public", "version", "updated_at"]


class PayoutCreateSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    reason = serializers.CharField(allow_blank=True, required=False, default="")


class PayoutProcessSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=["approve", "reject"])
    reason = serializers.CharField(allow_blank=True, required=False, default="")
    expected_version = serializers.IntegerField(required=False, allow_null=True, min_value=1)

    def validate(self, attrs):
        if attrs["action"] == "reject" and not attrs.get("reason", "").strip():
            raise serializers.ValidationError({"reason": "A rejection reason is required"})
        return attrs


class PayoutCompleteSerializer(serializers.Serializer):
    payment_reference = serializers.CharField(max_length=150)
    transaction_fee = serializers.DecimalField(
        max_digits=12, decimal_places=2, required=False, default=Decimal("0.00"), min_value=Decimal("0.00")
    )
    expected_version = serializers.IntegerField(required=False, allow_null=True, min_value=1)


class PayoutFailSerializer(serializers.Serializer):
    reason = serializers.CharField()
    expected_version = serializers.IntegerField(required=False, allow_null=True, min_value=1)


class MatureEarningsSerializer(serializers.Serializer):
    as_of = serializers.DateTimeField(required=False, allow_null=True)


class CommissionSettingSerializer(serializers.Serializer):
    commission_percentage = serializers.DecimalField(
        max_digits=5, decimal_places=2, min_value=Decimal("0"), max_value=Decimal("100")
    )


class PlatformSettingUpdateSerializer(serializers.Serializer):
    value = serializers.JSONField()
    description = serializers.CharField(required=False, allow_blank=True)
