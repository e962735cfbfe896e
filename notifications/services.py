import json
import logging
from typing import Any, Dict, Optional

from django.conf import settings
from django.db import transaction

from .models import DeviceToken, Notification

logger = logging.getLogger(__name__)


def _firebase_credentials():
    from firebase_admin import credentials

    if settings.FCM_SERVICE_ACCOUNT_JSON:
        return credentials.Certificate(json.loads(settings.FCM_SERVICE_ACCOUNT_JSON))
    if settings.FCM_SERVICE_ACCOUNT_FILE:
        return credentials.Certificate(settings.FCM_SERVICE_ACCOUNT_FILE)
    return None


class NotificationService:
    """In-app inbox rows plus best-effort FCM push for order lifecycle events."""

    _push_ready = False

    @classmethod
    def _init_firebase(cls) -> bool:
        if cls._push_ready:
            return True
        try:
            import firebase_admin

            if not firebase_admin._apps:
                cred = _firebase_credentials()
                if cred is None:
                    logger.info("FCM credentials are not configured, order push notifications are off")
                    return False
                options = {"projectId": settings.FCM_PROJECT_ID} if settings.FCM_PROJECT_ID else None
                firebase_admin.initialize_app(cred, options)
            cls._push_ready = True
        except Exception:
            logger.exception("Could not initialize the Firebase app")
        return cls._push_ready

    @classmethod
    @transaction.atomic
    def notify(
        cls,
        *,
        user,
        notification_type: str,
        title: str,
        message: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        notification = Notification.objects.create(
            user=user,
            type=notification_type,
            title=title,
            message=message,
            order_id=(payload or {}).get("order_id"),
            payload=payload or {},
        )
        try:
            cls._push(user, title, message, notification.payload)
        except Exception:
            logger.exception("Push for %s to user=%s failed", notification_type, user.id)
        return notification

    @classmethod
    def notify_after_commit(cls, user, template) -> None:
        """Queue a notification for after the current transaction commits.

        ``template`` is a ``(type, title, message, payload)`` tuple from
        :class:`NotificationTemplates`. Failures are logged and never undo
        the lifecycle change that triggered them.
        """
        if user is None:
            return
        notification_type, title, message, payload = template

        def _send():
            try:
                cls.notify(
                    user=user,
                    notification_type=notification_type,
                    title=title,
                    message=message,
                    payload=payload,
                )
            except Exception:
                logger.exception("Failed to send %s notification to user=%s", notification_type, user.id)

        transaction.on_commit(_send)

    @classmethod
    def _push(cls, user, title: str, message: str, payload: Dict[str, Any]) -> int:
        """Send one multicast to the user's active devices; returns the delivered count."""
        tokens = list(
            DeviceToken.objects.filter(user=user, is_active=True).order_by("created_at").values_list("token", flat=True)
        )
        if not tokens or not cls._init_firebase():
            return 0

        from firebase_admin import messaging

        batch = messaging.send_each_for_multicast(
            messaging.MulticastMessage(
                tokens=tokens,
                notification=messaging.Notification(title=title, body=message),
                data={key: str(value) for key, value in payload.items()},
            )
        )
        stale = []
        for token, response in zip(tokens, batch.responses):
            if response.success:
                continue
            if isinstance(response.exception, (messaging.UnregisteredError, messaging.SenderIdMismatchError)):
                stale.append(token)
            logger.warning("FCM push to token=%s... failed: %s", token[:12], response.exception)
        if stale:
            DeviceToken.objects.filter(token__in=stale).update(is_active=False)
        return batch.success_count


def _order_payload(order, notification_type, **extra):
    payload = {
        "type": notification_type,
        "entity_id": str(order.id),
        "entity_type": "order",
        "order_id": str(order.id),
        "order_number": order.order_number,
        "status": order.status,
    }
    payload.update(extra)
    return payload


class NotificationTemplates:
    @staticmethod
    def order_confirmed(order):
        kind = Notification.Type.ORDER_CONFIRMED
        return (
            kind,
            "Order Confirmed",
            f"Your order #{order.order_number} has been confirmed.",
            _order_payload(order, kind),
        )

    @staticmethod
    def order_assigned(order):
        kind = Notification.Type.ORDER_ASSIGNED
        return (
            kind,
            "New Delivery Assigned",
            f"Order #{order.order_number} has been assigned to you.",
            _order_payload(order, kind),
        )

    @staticmethod
    def order_reassigned(order, previous_person):
        kind = Notification.Type.ORDER_REASSIGNED
        return (
            kind,
            "Delivery Reassigned",
            f"Order #{order.order_number} is no longer assigned to you.",
            _order_payload(order, kind, previous_delivery_person_id=str(previous_person.id)),
        )

    @staticmethod
    def order_out_for_delivery(order):
        kind = Notification.Type.ORDER_OUT_FOR_DELIVERY
        return (
            kind,
            "Out for Delivery",
            f"Your order #{order.order_number} is on the way.",
            _order_payload(order, kind),
        )

    @staticmethod
    def order_delivered(order):
        kind = Notification.Type.ORDER_DELIVERED
        return (
            kind,
            "Order Delivered",
            f"Your order #{order.order_number} has been delivered. Rate your delivery!",
            _order_payload(order, kind),
        )

    @staticmethod
    def order_completed(order):
        kind = Notification.Type.ORDER_COMPLETED
        return (
            kind,
            "Order Completed",
            f"Your order #{order.order_number} is complete.",
            _order_payload(order, kind),
        )

    @staticmethod
    def order_cancelled(order):
        kind = Notification.Type.ORDER_CANCELLED
        return (
            kind,
            "Order Cancelled",
            f"Order #{order.order_number} has been cancelled.",
            _order_payload(order, kind),
        )

    @staticmethod
    def delivery_rated(order, rating):
        kind = Notification.Type.DELIVERY_RATED
        return (
            kind,
            "New Delivery Rating",
            f"You received {rating.stars} star(s) for order #{order.order_number}.",
            _order_payload(order, kind, rating_id=str(rating.id), stars=rating.stars),
        )
