import uuid
from django.conf import settings
from django.db import models


class DeviceToken(models.Model):
    """FCM registration token of one user device."""

    class DeviceType(models.TextChoices):
        WEB = "web", "Web"
        ANDROID = "android", "Android"
        IOS = "ios", "iOS"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, related_name="device_tokens", on_delete=models.CASCADE)
    token = models.TextField(unique=True)
    device_type = models.CharField(max_length=20, choices=DeviceType.choices)
    # Cleared when FCM reports the token unregistered.
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["user", "is_active"], name="notif_token_user_active_idx"),
        ]

    def __str__(self):
        return f"{self.user_id} ({self.device_type})"


class Notification(models.Model):
    class Type(models.TextChoices):
        ORDER_CONFIRMED = "order_confirmed", "Order Confirmed"
        ORDER_ASSIGNED = "order_assigned", "Order Assigned"
        ORDER_REASSIGNED = "order_reassigned", "Order Reassigned"
        ORDER_OUT_FOR_DELIVERY = "order_out_for_delivery", "Order Out for Delivery"
        ORDER_DELIVERED = "order_delivered", "Order Delivered"
        ORDER_COMPLETED = "order_completed", "Order Completed"
        ORDER_CANCELLED = "order_cancelled", "Order Cancelled"
        DELIVERY_RATED = "delivery_rated", "Delivery Rated"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, related_name="notifications", on_delete=models.CASCADE)
    type = models.CharField(max_length=50, choices=Type.choices)
    # Plain id, not a foreign key: the inbox outlives purged orders.
    order_id = models.UUIDField(null=True, blank=True)
    title = models.CharField(max_length=255)
    message = models.TextField()
    payload = models.JSONField(default=dict, blank=True)
    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "is_read"], name="notif_user_read_idx"),
            models.Index(fields=["user", "order_id"], name="notif_user_order_idx"),
            models.Index(fields=["created_at"], name="notif_created_idx"),
        ]

    def __str__(self):
        return f"{self.type} -> {self.user_id}"
