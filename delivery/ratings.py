from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict

from django.db import IntegrityError, transaction
from django.db.models import Count
from django.utils import timezone

from notifications.services import NotificationService, NotificationTemplates
from order.models import Order
from order.services import OrderStore, translate_store_errors

from .exceptions import DuplicateRating, InvalidState
from .models import DeliveryRating
from .permissions import require

logger = logging.getLogger(__name__)

STAR_VALUES = range(1, 6)

RATING_SORT_FIELDS = {"rated_at", "stars"}
PERSON_SORT_KEYS = {"average_rating", "total_ratings", "total_deliveries"}
SORT_ORDERS = {"asc", "desc"}


@dataclass(frozen=True)
class RatingStats:
    average_rating: float = 0.0
    total_ratings: int = 0
    distribution: Dict[int, int] = field(default_factory=lambda: {n: 0 for n in STAR_VALUES})

    def as_dict(self):
        return {
            "average_rating": self.average_rating,
            "total_ratings": self.total_ratings,
            "distribution": {str(n): self.distribution.get(n, 0) for n in STAR_VALUES},
        }


class RatingService:

    @staticmethod
    @translate_store_errors
    @transaction.atomic
    def record_rating(actor, order_id, stars, feedback=""):
        if isinstance(stars, bool) or not isinstance(stars, int) or stars not in STAR_VALUES:
            raise ValueError("Rating must be an integer between 1 and 5")

        order = OrderStore.lock(order_id)
        require(actor, "order.rate", order, message="Access denied. You can only rate delivery for your own orders.")
        if order.status not in Order.DELIVERED_STATUSES:
            raise InvalidState("You can only rate delivery after the order has been delivered")
        if order.delivery_person_id is None:
            raise InvalidState("No delivery person was assigned to this order")
        if DeliveryRating.objects.filter(order=order).exists():
            raise DuplicateRating()

        try:
            with transaction.atomic():
                rating = DeliveryRating.objects.create(
                    order=order,
                    order_number=order.order_number,
                    delivery_person_id=order.delivery_person_id,
                    customer=actor,
                    stars=stars,
                    feedback=feedback or "",
                    rated_at=timezone.now(),
                )
        except IntegrityError as exc:
            raise DuplicateRating() from exc

        logger.info("Order %s rated %d star(s) by %s", order.order_number, stars, actor.id)
        NotificationService.notify_after_commit(
            order.delivery_person, NotificationTemplates.delivery_rated(order, rating)
        )
        return rating

    @staticmethod
    def stats_for(delivery_person_id) -> RatingStats:
        stats = RatingService.stats_by_person([delivery_person_id])
        return next(iter(stats.values()), RatingStats())

    @staticmethod
    def stats_by_person(delivery_person_ids=None) -> Dict[object, RatingStats]:
        """Rating stats for many couriers from one grouped query.

        Couriers without ratings are absent from the result.
        """
        rows = DeliveryRating.objects.all()
        if delivery_person_ids is not None:
            rows = rows.filter(delivery_person_id__in=list(delivery_person_ids))
        rows = rows.values("delivery_person", "stars").annotate(count=Count("id")).order_by()

        distributions = {}
        for row in rows:
            distribution = distributions.setdefault(row["delivery_person"], {n: 0 for n in STAR_VALUES})
            distribution[row["stars"]] = row["count"]

        stats = {}
        for person_id, distribution in distributions.items():
            total = sum(distribution.values())
            star_sum = sum(stars * count for stars, count in distribution.items())
            stats[person_id] = RatingStats(
                average_rating=star_sum / total, total_ratings=total, distribution=distribution
            )
        return stats

    @staticmethod
    def ratings_for(delivery_person_id, sort_by="rated_at", sort_order="desc"):
        if sort_by not in RATING_SORT_FIELDS:
            raise ValueError(f"Unsupported sort field: {sort_by}")
        if sort_order not in SORT_ORDERS:
            raise ValueError(f"Unsupported sort order: {sort_order}")
        prefix = "-" if sort_order == "desc" else ""
        return (
            DeliveryRating.objects.filter(delivery_person_id=delivery_person_id)
            .select_related("customer")
            .order_by(f"{prefix}{sort_by}", f"{prefix}rated_at", "id")
        )


def sort_people(rows, sort_by, sort_order="desc"):
    """Sort person summaries on one of ``PERSON_SORT_KEYS``; ties keep name order."""
    if sort_by not in PERSON_SORT_KEYS:
        raise ValueError(f"Unsupported sort key: {sort_by}")
    if sort_order not in SORT_ORDERS:
        raise ValueError(f"Unsupported sort order: {sort_order}")
    rows = sorted(rows, key=lambda row: row["name"].lower())
    return sorted(rows, key=lambda row: row[sort_by], reverse=sort_order == "desc")
