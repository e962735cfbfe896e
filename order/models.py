import uuid
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q
from django.contrib.auth import get_user_model
from django.utils import timezone
User = get_user_model()


class Order(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        CONFIRMED = "confirmed", "Confirmed"
        ASSIGNED = "assigned", "Assigned"
        OUT_FOR_DELIVERY = "out_for_delivery", "Out for Delivery"
        DELIVERED = "delivered", "Delivered"
        COMPLETED = "completed", "Completed"
        CANCELLED = "cancelled", "Cancelled"

    # Statuses in which an order is bound to a delivery person.
    COURIER_STATUSES = frozenset({
        Status.ASSIGNED,
        Status.OUT_FOR_DELIVERY,
        Status.DELIVERED,
        Status.COMPLETED,
    })
    IN_TRANSIT_STATUSES = frozenset({Status.ASSIGNED, Status.OUT_FOR_DELIVERY})
    DELIVERED_STATUSES = frozenset({Status.DELIVERED, Status.COMPLETED})
    TERMINAL_STATUSES = frozenset({Status.COMPLETED, Status.CANCELLED})

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_number = models.CharField(max_length=20, unique=True)

    customer = models.ForeignKey(User, related_name="orders", on_delete=models.CASCADE)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)

    # The order never owns the courier record; couriers are deactivated, not deleted.
    delivery_person = models.ForeignKey(
        User,
        null=True,
        blank=True,
        related_name="delivery_orders",
        on_delete=models.PROTECT,
    )
    assigned_at = models.DateTimeField(null=True, blank=True)
    estimated_delivery_time = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    delivery_notes = models.TextField(blank=True)

    total_amount = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])
    delivery_address = models.TextField(blank=True)

    # Compare-and-swap token, bumped by every lifecycle write.
    version = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"], name="order_status_idx"),
            models.Index(fields=["delivery_person", "status"], name="order_courier_status_idx"),
            models.Index(fields=["delivered_at"], name="order_delivered_at_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(delivery_person__isnull=True, status__in=["pending", "confirmed", "cancelled"])
                    | Q(
                        delivery_person__isnull=False,
                        status__in=["assigned", "out_for_delivery", "delivered", "completed"],
                    )
                ),
                name="order_courier_matches_status",
            ),
            models.CheckConstraint(
                condition=Q(total_amount__gte=0),
                name="order_total_amount_non_negative",
            ),
        ]

    def __str__(self):
        return f"{self.order_number} ({self.status})"


class OrderAssignment(models.Model):
    """One binding of an order to a delivery person.

    Rows are never deleted, not on reassignment and not when the order is
    purged, so courier performance is computed from them alone.
    """

    order = models.ForeignKey(Order, null=True, blank=True, related_name="assignments", on_delete=models.SET_NULL)
    # Copy of the order id that survives the purge.
    order_ref = models.UUIDField(null=True, blank=True, editable=False)
    delivery_person = models.ForeignKey(User, related_name="delivery_assignments", on_delete=models.PROTECT)
    assigned_by = models.ForeignKey(
        User,
        null=True,
        blank=True,
        related_name="+",
        on_delete=models.SET_NULL,
    )
    assigned_at = models.DateTimeField(default=timezone.now)
    released_at = models.DateTimeField(null=True, blank=True)
    # Outcome, stamped on the binding that was open when the order was delivered.
    delivered_at = models.DateTimeField(null=True, blank=True)
    delivery_seconds = models.FloatField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["assigned_at"]
        indexes = [
            models.Index(fields=["delivery_person", "assigned_at"], name="order_assign_courier_idx"),
        ]

    def save(self, *args, **kwargs):
        if self.order_ref is None and self.order_id:
            self.order_ref = self.order_id
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.order_ref} -> {self.delivery_person_id}"


class OrderStatusHistory(models.Model):
    order = models.ForeignKey(Order, related_name="status_history", on_delete=models.CASCADE)
    from_status = models.CharField(max_length=20, choices=Order.Status.choices, blank=True)
    to_status = models.CharField(max_length=20, choices=Order.Status.choices)
    changed_by = models.ForeignKey(
        User,
        null=True,
        blank=True,
        related_name="+",
        on_delete=models.SET_NULL,
    )
    notes = models.TextField(blank=True)
    changed_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["changed_at", "id"]
        verbose_name_plural = "order status history"

    def __str__(self):
        return f"{self.order_id}: {self.from_status} -> {self.to_status}"
