from rest_framework import serializers
from django.contrib.auth import get_user_model
User = get_user_model()


class UserSummarySerializer(serializers.ModelSerializer):
    name = serializers.CharField(source="full_name", read_only=True)

    class Meta:
        model = User
        fields = ["id", "name", "email", "phone_number"]
        read_only_fields = fields


class DeliveryPersonSerializer(serializers.ModelSerializer):
    name = serializers.CharField(source="full_name", read_only=True)

    class Meta:
        model = User
        fields = ["id", "name", "first_name", "last_name", "email", "phone_number", "is_active", "created_at"]
        read_only_fields = fields
