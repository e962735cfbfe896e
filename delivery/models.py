import uuid
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.contrib.auth import get_user_model

from order.models import Order

User = get_user_model()


class DeliveryRating(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    # One rating per order. The rating outlives the order when delivered orders are purged.
    order = models.OneToOneField(
        Order, null=True, blank=True, related_name="delivery_rating", on_delete=models.SET_NULL
    )
    order_number = models.CharField(max_length=20, blank=True)
    delivery_person = models.ForeignKey(User, related_name="delivery_ratings", on_delete=models.PROTECT)
    customer = models.ForeignKey(User, related_name="given_delivery_ratings", on_delete=models.CASCADE)
    stars = models.PositiveSmallIntegerField(validators=[MinValueValidator(1), MaxValueValidator(5)])
    feedback = models.TextField(blank=True)
    rated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-rated_at"]
        indexes = [
            models.Index(fields=["delivery_person", "rated_at"], name="delivery_rating_person_idx"),
            models.Index(fields=["stars"], name="delivery_rating_stars_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(stars__gte=1, stars__lte=5), name="delivery_rating_stars_range"),
        ]

    def __str__(self):
        return f"{self.order_number} - {self.delivery_person_id} - {self.stars}"
