from __future__ import annotations

import logging
from datetime import timedelta

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from notifications.services import NotificationService, NotificationTemplates
from order.models import Order
from order.services import OrderStore, translate_store_errors

from .exceptions import ConfirmationRequired, IllegalTransition, InactivePerson, InvalidState, NotFound
from .permissions import require
from .state_machine import DELIVERY_DETAILS_WINDOW, TRANSITIONS, get_transition

logger = logging.getLogger(__name__)

User = get_user_model()
Status = Order.Status

COURIER_ACTIONS = {"order.start_delivery", "order.mark_delivered", "order.update_delivery_details"}


def resolve_delivery_person(person_id):
    try:
        person = User.objects.delivery_persons().filter(pk=person_id).first()
    except (ValueError, ValidationError):
        person = None
    if not person:
        raise NotFound("Delivery person not found")
    return person


def _ensure_active(person):
    if not person.is_active:
        raise InactivePerson(f"Delivery person {person.full_name} is not active")


def _delivery_details(estimated_delivery_time=None, delivery_notes=None):
    details = {}
    if estimated_delivery_time is not None:
        details["estimated_delivery_time"] = estimated_delivery_time
    if delivery_notes is not None:
        details["delivery_notes"] = delivery_notes
    return details


def _forbidden_message(actor, action, from_status, to_status):
    if actor.is_delivery_person and action in COURIER_ACTIONS:
        return "Access denied. This order is not assigned to you."
    return f"You are not allowed to change an order from {from_status} to {to_status}"


class AssignmentService:

    @staticmethod
    @translate_store_errors
    @transaction.atomic
    def assign(actor, order_id, delivery_person_id):
        transition = TRANSITIONS[(Status.CONFIRMED, Status.ASSIGNED)]
        require(actor, transition.action, message="Only admins can assign delivery persons")

        order = OrderStore.lock(order_id)
        if order.status != Status.CONFIRMED:
            raise InvalidState(
                f"Order must be confirmed before assigning a delivery person (current status: {order.status})"
            )
        if order.delivery_person_id is not None:
            raise InvalidState("Order already has a delivery person")

        person = resolve_delivery_person(delivery_person_id)
        _ensure_active(person)

        now = timezone.now()
        OrderStore.compare_and_swap(
            order,
            Status.CONFIRMED,
            status=Status.ASSIGNED,
            delivery_person=person,
            assigned_at=now,
        )
        OrderStore.open_assignment(order, person, actor, at=now)
        OrderStore.record_history(
            order,
            Status.CONFIRMED,
            Status.ASSIGNED,
            actor,
            notes=f"Assigned to delivery person: {person.full_name}",
        )
        logger.info("Order %s assigned to delivery person %s by %s", order.order_number, person.id, actor.id)

        NotificationService.notify_after_commit(person, NotificationTemplates.order_assigned(order))
        return order

    @staticmethod
    @translate_store_errors
    @transaction.atomic
    def reassign(actor, order_id, delivery_person_id):
        require(actor, "order.reassign", message="Only admins can reassign delivery persons")

        order = OrderStore.lock(order_id)
        if order.delivery_person_id is None:
            raise InvalidState("Order is not assigned to any delivery person")
        if order.status not in Order.IN_TRANSIT_STATUSES:
            raise InvalidState(f"Order cannot be reassigned once it is {order.status}")

        person = resolve_delivery_person(delivery_person_id)
        if person.id == order.delivery_person_id:
            raise InvalidState("Order is already assigned to this delivery person")
        _ensure_active(person)

        previous = order.delivery_person
        current_status = order.status
        now = timezone.now()
        OrderStore.compare_and_swap(order, current_status, delivery_person=person)
        OrderStore.release_assignments(order, at=now)
        OrderStore.open_assignment(order, person, actor, at=now)
        OrderStore.record_history(
            order,
            current_status,
            current_status,
            actor,
            notes=f"Reassigned from {previous.full_name} to {person.full_name}",
        )
        logger.info(
            "Order %s reassigned from %s to %s by %s", order.order_number, previous.id, person.id, actor.id
        )

        NotificationService.notify_after_commit(person, NotificationTemplates.order_assigned(order))
        NotificationService.notify_after_commit(previous, NotificationTemplates.order_reassigned(order, previous))
        return order


class StatusTransitionService:

    @staticmethod
    @translate_store_errors
    @transaction.atomic
    def transition(actor, order_id, to_status, estimated_delivery_time=None, delivery_notes=None):
        order = OrderStore.lock(order_id)
        from_status = order.status

        transition = get_transition(from_status, to_status)
        if transition.via_assignment:
            raise IllegalTransition(
                from_status,
                to_status,
                f"Cannot change status from {from_status} to {to_status}; use the assignment endpoint",
            )
        require(actor, transition.action, order, message=_forbidden_message(actor, transition.action, from_status, to_status))

        changes = _delivery_details(estimated_delivery_time, delivery_notes)
        if changes and not transition.accepts_delivery_details:
            raise InvalidState(
                "Estimated delivery time and delivery notes can only change while the order "
                "is assigned or out for delivery"
            )

        now = timezone.now()
        changes["status"] = to_status
        if to_status == Status.DELIVERED:
            changes["delivered_at"] = now
        if to_status == Status.CANCELLED and order.delivery_person_id is not None:
            changes["delivery_person"] = None

        OrderStore.compare_and_swap(order, from_status, **changes)
        if to_status == Status.DELIVERED:
            OrderStore.mark_delivered(order, now)
        elif to_status == Status.COMPLETED:
            OrderStore.mark_completed(order, now)
        elif to_status == Status.CANCELLED:
            OrderStore.release_assignments(order, at=now)
        OrderStore.record_history(
            order,
            from_status,
            to_status,
            actor,
            notes=delivery_notes or f"Status updated to {to_status}",
        )
        logger.info("Order %s moved %s -> %s by %s", order.order_number, from_status, to_status, actor.id)

        StatusTransitionService._notify(order, to_status)
        return order

    @staticmethod
    @translate_store_errors
    @transaction.atomic
    def update_delivery_details(actor, order_id, estimated_delivery_time=None, delivery_notes=None):
        order = OrderStore.lock(order_id)
        if order.status not in DELIVERY_DETAILS_WINDOW:
            raise InvalidState(
                f"Delivery details cannot be changed while the order is {order.status}"
            )
        require(actor, "order.update_delivery_details", order, message="Access denied. This order is not assigned to you.")

        changes = _delivery_details(estimated_delivery_time, delivery_notes)
        if not changes:
            return order

        OrderStore.compare_and_swap(order, order.status, **changes)
        OrderStore.record_history(
            order,
            order.status,
            order.status,
            actor,
            notes=delivery_notes or "Delivery details updated",
        )
        logger.info("Order %s delivery details updated by %s", order.order_number, actor.id)
        return order

    @staticmethod
    def _notify(order, to_status):
        templates = {
            Status.CONFIRMED: NotificationTemplates.order_confirmed,
            Status.OUT_FOR_DELIVERY: NotificationTemplates.order_out_for_delivery,
            Status.DELIVERED: NotificationTemplates.order_delivered,
            Status.COMPLETED: NotificationTemplates.order_completed,
            Status.CANCELLED: NotificationTemplates.order_cancelled,
        }
        template = templates.get(to_status)
        if template:
            NotificationService.notify_after_commit(order.customer, template(order))


class PurgeService:

    @staticmethod
    def eligible_orders(date_from=None, date_to=None, older_than_days=None):
        qs = Order.objects.filter(status__in=Order.DELIVERED_STATUSES)
        if date_from:
            qs = qs.filter(delivered_at__gte=date_from)
        if date_to:
            qs = qs.filter(delivered_at__lte=date_to)
        if older_than_days is not None:
            cutoff = timezone.now() - timedelta(days=int(older_than_days))
            qs = qs.filter(delivered_at__lt=cutoff)
        return qs

    @staticmethod
    @translate_store_errors
    @transaction.atomic
    def purge_delivered(actor, confirm_delete=False, date_from=None, date_to=None, older_than_days=None):
        """Delete delivered/completed orders matching the filter, all or nothing.

        Returns ``(deleted_count, summaries)``.
        """
        require(actor, "order.purge_delivered", message="Only admins can delete delivered orders")
        if confirm_delete is not True:
            raise ConfirmationRequired()

        qs = PurgeService.eligible_orders(date_from, date_to, older_than_days)
        ids = list(qs.select_for_update().values_list("id", flat=True))
        if not ids:
            return 0, []

        summaries = [
            {
                "order_number": order.order_number,
                "customer_name": order.customer.full_name,
                "total_amount": order.total_amount,
                "delivered_at": order.delivered_at,
            }
            for order in Order.objects.filter(pk__in=ids).select_related("customer").order_by("delivered_at")
        ]

        _, per_model = Order.objects.filter(pk__in=ids, status__in=Order.DELIVERED_STATUSES).delete()
        deleted_count = per_model.get(Order._meta.label, 0)
        if deleted_count != len(ids):
            raise InvalidState("Delivered orders changed during deletion; nothing was deleted, retry")

        logger.info(
            "Deleted %d delivered orders by %s at %s: %s",
            deleted_count,
            actor.id,
            timezone.now().isoformat(),
            [s["order_number"] for s in summaries],
        )
        return deleted_count, summaries


class DeliveryPersonService:

    @staticmethod
    @transaction.atomic
    def promote(actor, user_id):
        """Give an existing account the delivery role."""
        require(actor, "delivery_person.manage", message="Only admins can manage delivery persons")
        try:
            user = User.objects.select_for_update().filter(pk=user_id).first()
        except (ValueError, ValidationError):
            user = None
        if not user:
            raise NotFound("User not found")
        if user.is_admin:
            raise InvalidState("Admin accounts cannot be promoted to delivery persons")
        if user.is_delivery_person:
            return user

        user.role = User.Role.DELIVERY_PERSON
        user.is_active = True
        user.save(update_fields=["role", "is_active", "updated_at"])
        logger.info("User %s promoted to delivery person by %s", user.id, actor.id)
        return user

    @staticmethod
    @transaction.atomic
    def set_active(actor, person_id, is_active):
        """Deactivate or reactivate a courier; records are never removed."""
        require(actor, "delivery_person.manage", message="Only admins can manage delivery persons")
        person = resolve_delivery_person(person_id)
        if person.is_active != is_active:
            person.is_active = is_active
            person.save(update_fields=["is_active", "updated_at"])
            logger.info(
                "Delivery person %s %s by %s", person.id, "activated" if is_active else "deactivated", actor.id
            )
        return person
