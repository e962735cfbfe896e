"""The order delivery state machine.

This table is the only description of the lifecycle. Endpoints and UI hints
are derived from it instead of repeating status lists.
"""
from dataclasses import dataclass

from order.models import Order

from .exceptions import IllegalTransition
from .permissions import can

Status = Order.Status


@dataclass(frozen=True)
class Transition:
    from_status: str
    to_status: str
    action: str
    # Reachable only through the assignment engine, never through a plain status change.
    via_assignment: bool = False
    # estimated_delivery_time / delivery_notes may travel with the status change.
    accepts_delivery_details: bool = False


_TRANSITIONS = [
    Transition(Status.PENDING, Status.CONFIRMED, "order.confirm"),
    Transition(Status.CONFIRMED, Status.ASSIGNED, "order.assign", via_assignment=True),
    Transition(Status.ASSIGNED, Status.OUT_FOR_DELIVERY, "order.start_delivery", accepts_delivery_details=True),
    Transition(Status.OUT_FOR_DELIVERY, Status.DELIVERED, "order.mark_delivered", accepts_delivery_details=True),
    Transition(Status.DELIVERED, Status.COMPLETED, "order.complete"),
    Transition(Status.PENDING, Status.CANCELLED, "order.cancel"),
    Transition(Status.CONFIRMED, Status.CANCELLED, "order.cancel"),
    Transition(Status.ASSIGNED, Status.CANCELLED, "order.cancel"),
    Transition(Status.OUT_FOR_DELIVERY, Status.CANCELLED, "order.cancel"),
]

TRANSITIONS = {(t.from_status, t.to_status): t for t in _TRANSITIONS}

# Window in which delivery details can be edited on their own.
DELIVERY_DETAILS_WINDOW = Order.IN_TRANSIT_STATUSES


def get_transition(from_status, to_status):
    transition = TRANSITIONS.get((from_status, to_status))
    if transition is None:
        raise IllegalTransition(from_status, to_status)
    return transition


def outgoing(from_status):
    return [t for t in _TRANSITIONS if t.from_status == from_status]


def is_terminal(status):
    return not outgoing(status)


def allowed_transitions(order, actor):
    """Statuses ``actor`` may move ``order`` to next, for clients to render controls."""
    return [
        {"status": t.to_status, "via_assignment": t.via_assignment}
        for t in outgoing(order.status)
        if can(actor, t.action, order)
    ]
