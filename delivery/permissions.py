"""Capability checks for the delivery lifecycle.

``can(actor, action, resource)`` is the single place that decides who may do
what; the DRF permission classes below only gate whole endpoints by role.
"""
from rest_framework import permissions

from .exceptions import Forbidden


def _is_admin(actor, resource):
    return actor.is_admin


def _is_assigned_courier(actor, order):
    return bool(
        actor.is_delivery_person
        and order is not None
        and order.delivery_person_id is not None
        and order.delivery_person_id == actor.id
    )


def _is_order_customer(actor, order):
    return order is not None and order.customer_id == actor.id


def _can_view_order(actor, order):
    return _is_admin(actor, order) or _is_assigned_courier(actor, order) or _is_order_customer(actor, order)


def _is_admin_or_self(actor, person):
    if actor.is_admin:
        return True
    person_id = getattr(person, "id", person)
    return actor.is_delivery_person and str(person_id) == str(actor.id)


CAPABILITIES = {
    "order.view": _can_view_order,
    "order.confirm": _is_admin,
    "order.assign": _is_admin,
    "order.reassign": _is_admin,
    "order.complete": _is_admin,
    "order.cancel": _is_admin,
    "order.purge_delivered": _is_admin,
    "order.start_delivery": _is_assigned_courier,
    "order.mark_delivered": _is_assigned_courier,
    "order.update_delivery_details": _is_assigned_courier,
    "order.rate": _is_order_customer,
    "delivery_person.manage": _is_admin,
    "delivery_person.view_stats": _is_admin_or_self,
    "delivery_person.view_ratings": _is_admin_or_self,
}


def can(actor, action, resource=None):
    if actor is None or not getattr(actor, "is_authenticated", False) or not actor.is_active:
        return False
    check = CAPABILITIES.get(action)
    if check is None:
        return False
    return bool(check(actor, resource))


def require(actor, action, resource=None, message=None):
    if not can(actor, action, resource):
        raise Forbidden(message)


class IsAdmin(permissions.BasePermission):
    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and request.user.is_admin)


class IsDeliveryPerson(permissions.BasePermission):
    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and request.user.is_delivery_person)


class IsAdminOrDeliveryPerson(permissions.BasePermission):
    def has_permission(self, request, view):
        return bool(
            request.user
            and request.user.is_authenticated
            and (request.user.is_admin or request.user.is_delivery_person)
        )
