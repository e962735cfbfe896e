from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from django.db.models import Avg, Count, Q

from order.models import OrderAssignment

from .ratings import RatingService, RatingStats


@dataclass(frozen=True)
class PerformanceStats:
    total_assigned: int = 0
    total_delivered: int = 0
    total_completed: int = 0
    delivery_rate: int = 0
    # Mean seconds from assignment to delivery; None until something is delivered.
    average_delivery_time: Optional[float] = None

    def as_dict(self):
        return asdict(self)


def delivery_rate(delivered, assigned):
    """Whole-number percentage, half rounded up; 0 when nothing was assigned."""
    if not assigned:
        return 0
    rate = Decimal(delivered) * 100 / Decimal(assigned)
    return int(rate.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# Assignment rows outlive their orders, so every figure below is computed from
# them. An order counts once per courier however often it was bound to them,
# and only the binding open at delivery time is credited with the delivery.
PERFORMANCE_AGGREGATES = {
    "total_assigned": Count("order_ref", distinct=True),
    "total_delivered": Count("order_ref", distinct=True, filter=Q(delivered_at__isnull=False)),
    "total_completed": Count("order_ref", distinct=True, filter=Q(completed_at__isnull=False)),
    "avg_seconds": Avg("delivery_seconds", filter=Q(delivered_at__isnull=False)),
}


def _assignments(date_from=None, date_to=None):
    rows = OrderAssignment.objects.all()
    if date_from:
        rows = rows.filter(assigned_at__gte=date_from)
    if date_to:
        rows = rows.filter(assigned_at__lte=date_to)
    return rows


def _to_stats(row):
    return PerformanceStats(
        total_assigned=row["total_assigned"],
        total_delivered=row["total_delivered"],
        total_completed=row["total_completed"],
        delivery_rate=delivery_rate(row["total_delivered"], row["total_assigned"]),
        average_delivery_time=row["avg_seconds"],
    )


def performance_by_person(person_ids=None, date_from=None, date_to=None):
    """``{person_id: PerformanceStats}`` from one grouped query; idle couriers are absent."""
    rows = _assignments(date_from, date_to)
    if person_ids is not None:
        rows = rows.filter(delivery_person_id__in=list(person_ids))
    rows = rows.values("delivery_person").annotate(**PERFORMANCE_AGGREGATES).order_by()
    return {row["delivery_person"]: _to_stats(row) for row in rows}


def performance_for(person, date_from=None, date_to=None) -> PerformanceStats:
    stats = performance_by_person([person.pk], date_from, date_to)
    return stats.get(person.pk, PerformanceStats())


def overall_performance(date_from=None, date_to=None) -> PerformanceStats:
    # Across couriers an order counts once, credited to whoever delivered it.
    return _to_stats(_assignments(date_from, date_to).aggregate(**PERFORMANCE_AGGREGATES))


def person_summary(person, performance=None, ratings=None, date_from=None, date_to=None):
    if performance is None:
        performance = performance_for(person, date_from, date_to)
    if ratings is None:
        ratings = RatingService.stats_for(person.pk)
    return {
        "id": str(person.id),
        "name": person.full_name,
        "email": person.email,
        "phone_number": person.phone_number,
        "is_active": person.is_active,
        **performance.as_dict(),
        "average_rating": ratings.average_rating,
        "total_ratings": ratings.total_ratings,
        "total_deliveries": performance.total_delivered,
    }


def summaries(people, date_from=None, date_to=None):
    """Person summaries for ``people`` with a fixed number of queries."""
    people = list(people)
    ids = [person.pk for person in people]
    performance = performance_by_person(ids, date_from, date_to)
    ratings = RatingService.stats_by_person(ids)
    return [
        person_summary(
            person,
            performance=performance.get(person.pk, PerformanceStats()),
            ratings=ratings.get(person.pk, RatingStats()),
        )
        for person in people
    ]


def overview(people, date_from=None, date_to=None):
    """System-wide figures plus a per-courier breakdown, busiest couriers first."""
    overall = overall_performance(date_from, date_to)
    breakdown = [row for row in summaries(people, date_from, date_to) if row["total_assigned"]]
    breakdown.sort(key=lambda row: row["total_delivered"], reverse=True)
    return {
        "overall": {**overall.as_dict(), "success_rate": overall.delivery_rate},
        "delivery_persons": breakdown,
    }
