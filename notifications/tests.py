import uuid
from unittest import mock

from django.test import TestCase
from rest_framework.test import APIClient

from account.models import User
from order.services import OrderService

from .models import DeviceToken, Notification
from .services import NotificationService, NotificationTemplates


class NotificationsApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(email="user@example.com", password="Pass123!")
        self.other = User.objects.create_user(email="other@example.com", password="Pass123!")
        self.client.force_authenticate(self.user)

    def test_device_token_upsert_and_reassign(self):
        resp1 = self.client.post(
            "/api/notifications/device-token/",
            {"token": "token-123", "device_type": "web"},
            format="json",
        )
        self.assertEqual(resp1.status_code, 200, resp1.data)
        token_row = DeviceToken.objects.get(token="token-123")
        self.assertEqual(token_row.user_id, self.user.id)
        self.assertTrue(token_row.is_active)

        self.client.force_authenticate(self.other)
        resp2 = self.client.post(
            "/api/notifications/device-token/",
            {"token": "token-123", "device_type": "android"},
            format="json",
        )
        self.assertEqual(resp2.status_code, 200, resp2.data)
        token_row.refresh_from_db()
        self.assertEqual(token_row.user_id, self.other.id)
        self.assertEqual(token_row.device_type, "android")
        self.assertEqual(DeviceToken.objects.count(), 1)

    def test_device_token_deactivate(self):
        DeviceToken.objects.create(user=self.user, token="token-a", device_type="web", is_active=True)
        resp = self.client.delete("/api/notifications/device-token/", {"token": "token-a"}, format="json")
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual(resp.data["deactivated"], 1)
        self.assertFalse(DeviceToken.objects.get(token="token-a").is_active)

    def test_inbox_filters_by_order_and_reports_unread(self):
        first_order, second_order = uuid.uuid4(), uuid.uuid4()
        Notification.objects.create(
            user=self.user,
            type=Notification.Type.ORDER_CONFIRMED,
            title="Order Confirmed",
            message="confirmed",
            order_id=first_order,
        )
        Notification.objects.create(
            user=self.user,
            type=Notification.Type.ORDER_DELIVERED,
            title="Order Delivered",
            message="delivered",
            order_id=second_order,
        )
        Notification.objects.create(
            user=self.other, type=Notification.Type.ORDER_ASSIGNED, title="x", message="x", payload={}
        )

        resp = self.client.get("/api/notifications/")
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual(resp.data["count"], 2)
        self.assertEqual(resp.data["unread_count"], 2)

        resp = self.client.get("/api/notifications/", {"type": "order_delivered"})
        self.assertEqual(resp.data["count"], 1)
        self.assertEqual(resp.data["results"][0]["order_id"], str(second_order))

        resp = self.client.get("/api/notifications/", {"order_id": str(first_order)})
        self.assertEqual([row["type"] for row in resp.data["results"]], ["order_confirmed"])

    def test_notification_read_endpoints(self):
        note1 = Notification.objects.create(
            user=self.user, type=Notification.Type.ORDER_CONFIRMED, title="t", message="m", payload={}
        )
        note2 = Notification.objects.create(
            user=self.user, type=Notification.Type.ORDER_COMPLETED, title="t", message="m", payload={}
        )

        read_one = self.client.patch(f"/api/notifications/{note1.id}/read/", {}, format="json")
        self.assertEqual(read_one.status_code, 200, read_one.data)
        note1.refresh_from_db()
        self.assertTrue(note1.is_read)

        resp = self.client.get("/api/notifications/", {"unread": "true"})
        self.assertEqual(resp.data["count"], 1)

        read_all = self.client.post("/api/notifications/read-all/", {}, format="json")
        self.assertEqual(read_all.status_code, 200, read_all.data)
        self.assertEqual(read_all.data["updated"], 1)
        note2.refresh_from_db()
        self.assertTrue(note2.is_read)

    def test_cannot_read_someone_elses_notification(self):
        note = Notification.objects.create(
            user=self.other, type=Notification.Type.ORDER_CONFIRMED, title="t", message="m", payload={}
        )
        resp = self.client.patch(f"/api/notifications/{note.id}/read/", {}, format="json")
        self.assertEqual(resp.status_code, 404)


class NotificationServiceTests(TestCase):
    def setUp(self):
        self.customer = User.objects.create_user(email="notify@example.com", password="Pass123!")
        self.order = OrderService.create_order(self.customer, 25)

    def test_notify_after_commit_waits_for_commit(self):
        with self.captureOnCommitCallbacks(execute=False) as callbacks:
            NotificationService.notify_after_commit(self.customer, NotificationTemplates.order_confirmed(self.order))
        self.assertEqual(Notification.objects.count(), 0)

        for callback in callbacks:
            callback()
        note = Notification.objects.get()
        self.assertEqual(note.type, Notification.Type.ORDER_CONFIRMED)
        self.assertEqual(note.payload["order_number"], self.order.order_number)
        self.assertEqual(note.order_id, self.order.id)

    def test_notification_failure_is_logged_not_raised(self):
        with mock.patch.object(NotificationService, "notify", side_effect=RuntimeError("boom")):
            with self.assertLogs("notifications.services", level="ERROR"):
                with self.captureOnCommitCallbacks(execute=True):
                    NotificationService.notify_after_commit(
                        self.customer, NotificationTemplates.order_cancelled(self.order)
                    )

    def test_push_disabled_without_credentials(self):
        DeviceToken.objects.create(user=self.customer, token="token-x", device_type="android")
        with self.settings(FCM_SERVICE_ACCOUNT_JSON="", FCM_SERVICE_ACCOUNT_FILE=""):
            with mock.patch.object(NotificationService, "_push_ready", False), mock.patch("firebase_admin._apps", {}):
                self.assertFalse(NotificationService._init_firebase())
                self.assertEqual(NotificationService._push(self.customer, "t", "m", {}), 0)

    def test_unregistered_tokens_are_deactivated(self):
        from firebase_admin import messaging

        DeviceToken.objects.create(user=self.customer, token="token-live", device_type="android")
        DeviceToken.objects.create(user=self.customer, token="token-gone", device_type="web")
        batch = mock.Mock(
            success_count=1,
            responses=[
                mock.Mock(success=True, exception=None),
                mock.Mock(success=False, exception=messaging.UnregisteredError("not registered")),
            ],
        )
        with mock.patch.object(NotificationService, "_init_firebase", return_value=True), mock.patch(
            "firebase_admin.messaging.send_each_for_multicast", return_value=batch
        ) as send:
            delivered = NotificationService._push(self.customer, "Order Delivered", "done", {"order_id": "1"})

        self.assertEqual(delivered, 1)
        self.assertEqual(send.call_args.args[0].tokens, ["token-live", "token-gone"])
        self.assertFalse(DeviceToken.objects.get(token="token-gone").is_active)
        self.assertTrue(DeviceToken.objects.get(token="token-live").is_active)
