from rest_framework import serializers

from .models import DeviceToken, Notification


class DeviceTokenSerializer(serializers.Serializer):
    token = serializers.CharField(trim_whitespace=True)
    device_type = serializers.ChoiceField(choices=DeviceToken.DeviceType.choices)

    def save_for(self, user):
        # A token follows whoever registered it last.
        device_token, _ = DeviceToken.objects.update_or_create(
            token=self.validated_data["token"],
            defaults={
                "user": user,
                "device_type": self.validated_data["device_type"],
                "is_active": True,
            },
        )
        return device_token


class NotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Notification
        fields = ["id", "type", "title", "message", "payload", "is_read", "created_at"]
