from rest_framework import serializers

from .models import DeviceToken, Notification


class DeviceTokenSerializer(serializers.ModelSerializer):
    # No unique validator: a known token moves to the caller.
    token = serializers.CharField(trim_whitespace=True)

    class Meta:
        model = DeviceToken
        fields = ["id", "token", "device_type", "is_active"]
        read_only_fields = ["id", "is_active"]

    def save(self, **kwargs):
        device_token, _ = DeviceToken.objects.update_or_create(
            token=self.validated_data["token"],
            defaults={
                "user": kwargs["user"],
                "device_type": self.validated_data["device_type"],
                "is_active": True,
            },
        )
        self.instance = device_token
        return device_token


class NotificationQuerySerializer(serializers.Serializer):
    type = serializers.MultipleChoiceField(choices=Notification.Type.choices, required=False)
    unread = serializers.BooleanField(required=False, default=False)
    order_id = serializers.UUIDField(required=False)


class NotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Notification
        fields = ["id", "type", "title", "message", "order_id", "payload", "is_read", "created_at"]
        read_only_fields = fields
