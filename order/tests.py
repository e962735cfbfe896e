import uuid
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
import threading
import time

from django.contrib import admin
from django.db import IntegrityError, close_old_connections, transaction
from django.test import RequestFactory, TestCase, TransactionTestCase
from django.utils import timezone

from account.models import User
from delivery.exceptions import InvalidState, NotFound, Unavailable
from delivery.services import AssignmentService

from .admin import OrderAdmin
from .models import Order, OrderAssignment
from .services import OrderService, OrderStore


def make_user(email, role=User.Role.CUSTOMER, **extra):
    return User.objects.create_user(email=email, password="pass1234", role=role, **extra)


class OrderServiceTests(TestCase):
    def setUp(self):
        self.customer = make_user("buyer_order_tests@example.com")

    def test_create_order_starts_pending_with_history(self):
        order = OrderService.create_order(self.customer, "120.50", delivery_address="123 Main St")

        self.assertEqual(order.status, Order.Status.PENDING)
        self.assertIsNone(order.delivery_person_id)
        self.assertEqual(order.total_amount, Decimal("120.50"))
        self.assertTrue(order.order_number.startswith("ORD-"))
        history = list(order.status_history.values_list("from_status", "to_status"))
        self.assertEqual(history, [("", Order.Status.PENDING)])

    def test_create_order_generates_unique_order_numbers(self):
        numbers = {OrderService.create_order(self.customer, 10).order_number for _ in range(5)}
        self.assertEqual(len(numbers), 5)

    def test_create_order_rejects_negative_total(self):
        with self.assertRaises(ValueError):
            OrderService.create_order(self.customer, "-1.00")
        self.assertEqual(Order.objects.count(), 0)


class OrderStoreTests(TestCase):
    def setUp(self):
        self.customer = make_user("store_customer@example.com")
        self.courier = make_user("store_courier@example.com", role=User.Role.DELIVERY_PERSON)
        self.order = OrderService.create_order(self.customer, 50)

    def test_get_unknown_order_raises_not_found(self):
        with self.assertRaises(NotFound):
            OrderStore.get(uuid.uuid4())

    def test_compare_and_swap_bumps_version(self):
        with transaction.atomic():
            order = OrderStore.lock(self.order.pk)
            OrderStore.compare_and_swap(order, Order.Status.PENDING, status=Order.Status.CONFIRMED)

        self.assertEqual(order.version, 1)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.CONFIRMED)
        self.assertEqual(self.order.version, 1)

    def test_compare_and_swap_rejects_stale_read(self):
        stale = Order.objects.get(pk=self.order.pk)
        Order.objects.filter(pk=self.order.pk).update(status=Order.Status.CONFIRMED, version=1)

        with self.assertRaises(InvalidState):
            OrderStore.compare_and_swap(stale, Order.Status.PENDING, status=Order.Status.CANCELLED)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.CONFIRMED)

    def test_courier_must_match_status(self):
        with self.assertRaises(IntegrityError), transaction.atomic():
            Order.objects.filter(pk=self.order.pk).update(status=Order.Status.ASSIGNED)
        with self.assertRaises(IntegrityError), transaction.atomic():
            Order.objects.filter(pk=self.order.pk).update(delivery_person=self.courier)

    def test_release_assignments_closes_open_rows(self):
        now = timezone.now()
        Order.objects.filter(pk=self.order.pk).update(
            status=Order.Status.ASSIGNED, delivery_person=self.courier, assigned_at=now
        )
        OrderStore.open_assignment(self.order, self.courier, None, at=now)

        self.assertEqual(OrderStore.release_assignments(self.order), 1)
        self.assertFalse(OrderAssignment.objects.filter(released_at__isnull=True).exists())

    def test_open_assignment_keeps_order_reference_after_delete(self):
        OrderStore.open_assignment(self.order, self.courier, None)
        Order.objects.filter(pk=self.order.pk).delete()

        row = OrderAssignment.objects.get()
        self.assertIsNone(row.order_id)
        self.assertEqual(row.order_ref, self.order.pk)


class OrderAdminTests(TestCase):
    def setUp(self):
        self.superuser = User.objects.create_superuser(email="root_admin@example.com", password="pass1234")
        self.customer = make_user("admin_view_customer@example.com")
        self.order = OrderService.create_order(self.customer, 30)
        self.model_admin = OrderAdmin(Order, admin.site)
        self.request = RequestFactory().get("/")
        self.request.user = self.superuser

    def test_change_form_cannot_edit_lifecycle_fields(self):
        form = self.model_admin.get_form(self.request, self.order)
        for field in ("status", "delivery_person", "assigned_at", "delivered_at", "version"):
            with self.subTest(field=field):
                self.assertNotIn(field, form.base_fields)
        self.assertIn("status", self.model_admin.get_readonly_fields(self.request, self.order))

    def test_change_view_post_leaves_status_alone(self):
        Order.objects.filter(pk=self.order.pk).update(status=Order.Status.CONFIRMED, version=1)
        self.client.force_login(self.superuser)

        self.client.post(
            f"/admin/order/order/{self.order.pk}/change/",
            {"status": Order.Status.PENDING, "customer": str(self.customer.pk), "total_amount": "30.00"},
        )

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.CONFIRMED)
        self.assertEqual(self.order.version, 1)
        self.assertEqual(self.order.status_history.count(), 1)

    def test_orders_cannot_be_deleted_from_admin(self):
        self.assertFalse(self.model_admin.has_delete_permission(self.request, self.order))


class OrderConcurrencyTests(TransactionTestCase):
    reset_sequences = True

    def setUp(self):
        self.admin = make_user("admin_order_conc@example.com", role=User.Role.ADMIN)
        self.customer = make_user("buyer_order_conc@example.com")
        self.first = make_user("first_courier_conc@example.com", role=User.Role.DELIVERY_PERSON)
        self.second = make_user("second_courier_conc@example.com", role=User.Role.DELIVERY_PERSON)
        self.order = OrderService.create_order(self.customer, "100.00")
        Order.objects.filter(pk=self.order.pk).update(status=Order.Status.CONFIRMED)

    def _attempt_assign(self, barrier, person):
        close_old_connections()
        try:
            barrier.wait(timeout=5)
            # Unavailable is retryable; keep going until the request settles.
            for _ in range(50):
                try:
                    AssignmentService.assign(self.admin, self.order.pk, person.pk)
                    return ("ok", str(person.pk))
                except Unavailable:
                    time.sleep(0.05)
                except InvalidState as exc:
                    return ("err", exc.code)
            return ("err", "unavailable")
        finally:
            close_old_connections()

    def test_parallel_assignments_only_one_succeeds(self):
        barrier = threading.Barrier(2)

        with ThreadPoolExecutor(max_workers=2) as executor:
            futures = [executor.submit(self._attempt_assign, barrier, p) for p in (self.first, self.second)]
            results = [f.result(timeout=20) for f in futures]

        successes = [r for r in results if r[0] == "ok"]
        self.assertEqual(len(successes), 1, results)
        self.assertEqual([r for r in results if r[0] == "err"], [("err", "invalid_state")], results)

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.ASSIGNED)
        self.assertEqual(str(self.order.delivery_person_id), successes[0][1])
        self.assertEqual(OrderAssignment.objects.filter(order=self.order).count(), 1)
