import functools
import logging
import uuid
from decimal import Decimal

from django.db import OperationalError, transaction
from django.db.models import F
from django.utils import timezone

from delivery.exceptions import InvalidState, NotFound, Unavailable
from .models import Order, OrderAssignment, OrderStatusHistory

logger = logging.getLogger(__name__)


def translate_store_errors(func):
    """Turn store timeouts and lock failures into a retryable ``Unavailable``.

    Must wrap *outside* ``transaction.atomic`` so the rollback has already
    happened when the caller sees the error.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except OperationalError as exc:
            logger.warning("Order store unavailable during %s: %s", func.__qualname__, exc)
            raise Unavailable() from exc

    return wrapper


class OrderService:

    @staticmethod
    def _generate_order_number():
        while True:
            candidate = f"ORD-{uuid.uuid4().hex[:12].upper()}"
            if not Order.objects.filter(order_number=candidate).exists():
                return candidate

    @staticmethod
    @translate_store_errors
    @transaction.atomic
    def create_order(customer, total_amount, delivery_address=""):
        """Entry point used by checkout; every order starts ``pending``."""
        total_amount = Decimal(str(total_amount))
        if total_amount < 0:
            raise ValueError("total_amount must not be negative")

        order = Order.objects.create(
            order_number=OrderService._generate_order_number(),
            customer=customer,
            status=Order.Status.PENDING,
            total_amount=total_amount,
            delivery_address=delivery_address,
        )
        OrderStatusHistory.objects.create(
            order=order,
            from_status="",
            to_status=Order.Status.PENDING,
            changed_by=customer,
            notes="Order placed",
        )
        return order


class OrderStore:
    """Locked reads and compare-and-swap writes for lifecycle engines.

    Callers run inside ``transaction.atomic``.
    """

    @staticmethod
    def get(order_id):
        order = Order.objects.select_related("delivery_person", "customer").filter(pk=order_id).first()
        if not order:
            raise NotFound("Order not found")
        return order

    @staticmethod
    def lock(order_id):
        # No select_related here: FOR UPDATE cannot cover the nullable side of an outer join.
        order = Order.objects.select_for_update().filter(pk=order_id).first()
        if not order:
            raise NotFound("Order not found")
        return order

    @staticmethod
    def compare_and_swap(order, expected_status, **changes):
        """Write ``changes`` only if the row still holds the status/version ``order`` was read with."""
        now = timezone.now()
        updated = Order.objects.filter(
            pk=order.pk,
            status=expected_status,
            version=order.version,
        ).update(version=F("version") + 1, updated_at=now, **changes)
        if updated != 1:
            raise InvalidState(f"Order {order.order_number} was changed by another request, reload and retry")

        for field, value in changes.items():
            setattr(order, field, value)
        order.version += 1
        order.updated_at = now
        return order

    @staticmethod
    def record_history(order, from_status, to_status, actor, notes=""):
        return OrderStatusHistory.objects.create(
            order=order,
            from_status=from_status,
            to_status=to_status,
            changed_by=actor,
            notes=notes,
        )

    @staticmethod
    def open_assignment(order, delivery_person, actor, at=None):
        return OrderAssignment.objects.create(
            order=order,
            order_ref=order.pk,
            delivery_person=delivery_person,
            assigned_by=actor,
            assigned_at=at or timezone.now(),
        )

    @staticmethod
    def release_assignments(order, at=None):
        return OrderAssignment.objects.filter(order=order, released_at__isnull=True).update(
            released_at=at or timezone.now()
        )

    @staticmethod
    def mark_delivered(order, at):
        """Stamp the outcome on the courier's open binding."""
        seconds = (at - order.assigned_at).total_seconds() if order.assigned_at else None
        return OrderAssignment.objects.filter(
            order=order, delivery_person_id=order.delivery_person_id, released_at__isnull=True
        ).update(delivered_at=at, delivery_seconds=seconds)

    @staticmethod
    def mark_completed(order, at):
        return OrderAssignment.objects.filter(order=order, delivered_at__isnull=False).update(completed_at=at)
