import random
import uuid
from datetime import timedelta
from decimal import Decimal
from unittest import mock

from django.db import OperationalError, connection
from django.test import TestCase
from django.test.utils import CaptureQueriesContext
from django.utils import timezone
from rest_framework.test import APIClient

from account.models import User
from notifications.models import Notification
from order.models import Order, OrderAssignment, OrderStatusHistory
from order.services import OrderService

from .exceptions import (
    ConfirmationRequired,
    DeliveryError,
    DuplicateRating,
    Forbidden,
    IllegalTransition,
    InactivePerson,
    InvalidState,
    NotFound,
)
from .models import DeliveryRating
from .permissions import can
from .ratings import RatingService, sort_people
from .services import AssignmentService, DeliveryPersonService, PurgeService, StatusTransitionService
from .state_machine import TRANSITIONS, allowed_transitions, is_terminal
from .stats import delivery_rate, overall_performance, overview, performance_for

Status = Order.Status

ADMIN_MOVES = {
    (Status.PENDING, Status.CONFIRMED),
    (Status.DELIVERED, Status.COMPLETED),
    (Status.PENDING, Status.CANCELLED),
    (Status.CONFIRMED, Status.CANCELLED),
    (Status.ASSIGNED, Status.CANCELLED),
    (Status.OUT_FOR_DELIVERY, Status.CANCELLED),
}
COURIER_MOVES = {
    (Status.ASSIGNED, Status.OUT_FOR_DELIVERY),
    (Status.OUT_FOR_DELIVERY, Status.DELIVERED),
}
UNBOUND_STATUSES = {Status.PENDING, Status.CONFIRMED, Status.CANCELLED}


class DeliveryFixtures:
    def setUp(self):
        self.admin = self.make_user("admin@example.com", User.Role.ADMIN)
        self.customer = self.make_user("customer@example.com", first_name="Hana", last_name="Girma")
        self.courier = self.make_user(
            "courier@example.com", User.Role.DELIVERY_PERSON, first_name="Dawit", last_name="Alemu"
        )
        self.other_courier = self.make_user(
            "other.courier@example.com", User.Role.DELIVERY_PERSON, first_name="Meron", last_name="Bekele"
        )
        self.inactive_courier = self.make_user(
            "inactive.courier@example.com", User.Role.DELIVERY_PERSON, is_active=False
        )

    @staticmethod
    def make_user(email, role=User.Role.CUSTOMER, **extra):
        return User.objects.create_user(email=email, password="pass1234", role=role, **extra)

    def make_order(self, status=Status.PENDING, courier=None, assigned_at=None, delivered_at=None, customer=None):
        order = OrderService.create_order(customer or self.customer, "150.00", delivery_address="Bole, Addis Ababa")
        if status in Order.DELIVERED_STATUSES:
            delivered_at = delivered_at or timezone.now()
        if status in Order.COURIER_STATUSES:
            courier = courier or self.courier
            assigned_at = assigned_at or timezone.now()
            OrderAssignment.objects.create(
                order=order,
                delivery_person=courier,
                assigned_at=assigned_at,
                delivered_at=delivered_at,
                delivery_seconds=(delivered_at - assigned_at).total_seconds() if delivered_at else None,
                completed_at=delivered_at if status == Status.COMPLETED else None,
            )
        else:
            courier = None
        Order.objects.filter(pk=order.pk).update(
            status=status, delivery_person=courier, assigned_at=assigned_at, delivered_at=delivered_at
        )
        order.refresh_from_db()
        return order


class TransitionTableTests(DeliveryFixtures, TestCase):
    def test_every_status_pair_for_every_actor(self):
        actors = {
            "admin": self.admin,
            "assigned_courier": self.courier,
            "other_courier": self.other_courier,
            "customer": self.customer,
        }
        for from_status in Status.values:
            for to_status in Status.values:
                for actor_name, actor in actors.items():
                    with self.subTest(from_status=from_status, to_status=to_status, actor=actor_name):
                        order = self.make_order(from_status)
                        pair = (from_status, to_status)
                        if pair in ADMIN_MOVES:
                            expected = None if actor_name == "admin" else Forbidden
                        elif pair in COURIER_MOVES:
                            expected = None if actor_name == "assigned_courier" else Forbidden
                        else:
                            expected = IllegalTransition

                        if expected is None:
                            StatusTransitionService.transition(actor, order.pk, to_status)
                            order.refresh_from_db()
                            self.assertEqual(order.status, to_status)
                        else:
                            with self.assertRaises(expected):
                                StatusTransitionService.transition(actor, order.pk, to_status)
                            order.refresh_from_db()
                            self.assertEqual(order.status, from_status)

    def test_table_matches_lifecycle(self):
        self.assertEqual(set(TRANSITIONS), ADMIN_MOVES | COURIER_MOVES | {(Status.CONFIRMED, Status.ASSIGNED)})
        self.assertTrue(is_terminal(Status.COMPLETED))
        self.assertTrue(is_terminal(Status.CANCELLED))
        self.assertFalse(is_terminal(Status.DELIVERED))

    def test_assigned_only_reachable_through_assignment(self):
        order = self.make_order(Status.CONFIRMED)
        with self.assertRaises(IllegalTransition) as ctx:
            StatusTransitionService.transition(self.admin, order.pk, Status.ASSIGNED)
        self.assertIn("assignment endpoint", ctx.exception.message)

    def test_inactive_admin_cannot_act(self):
        self.admin.is_active = False
        self.admin.save()
        order = self.make_order(Status.PENDING)
        with self.assertRaises(Forbidden):
            StatusTransitionService.transition(self.admin, order.pk, Status.CONFIRMED)

    def test_allowed_transitions_per_actor(self):
        confirmed = self.make_order(Status.CONFIRMED)
        self.assertEqual(
            allowed_transitions(confirmed, self.admin),
            [
                {"status": Status.ASSIGNED, "via_assignment": True},
                {"status": Status.CANCELLED, "via_assignment": False},
            ],
        )
        assigned = self.make_order(Status.ASSIGNED)
        self.assertEqual(
            allowed_transitions(assigned, self.courier),
            [{"status": Status.OUT_FOR_DELIVERY, "via_assignment": False}],
        )
        self.assertEqual(allowed_transitions(assigned, self.other_courier), [])
        self.assertEqual(allowed_transitions(assigned, self.customer), [])


class LifecycleRandomWalkTests(DeliveryFixtures, TestCase):
    """Random operation sequences never break the courier/status pairing."""

    def _check_invariants(self, order, previous_status):
        if order.status in UNBOUND_STATUSES:
            self.assertIsNone(order.delivery_person_id)
        else:
            self.assertIsNotNone(order.delivery_person_id)
        if order.status != previous_status:
            self.assertIn((previous_status, order.status), TRANSITIONS)
        if previous_status in (Status.COMPLETED, Status.CANCELLED):
            self.assertEqual(order.status, previous_status)

    def test_random_walks_keep_invariants(self):
        actors = [self.admin, self.courier, self.other_courier, self.customer]
        people = [self.courier, self.other_courier, self.inactive_courier, self.customer]
        for seed in range(5):
            rng = random.Random(seed)
            orders = [self.make_order() for _ in range(3)]
            for _ in range(60):
                order = rng.choice(orders)
                order.refresh_from_db()
                previous_status = order.status
                actor = rng.choice(actors)
                op = rng.choice(["assign", "reassign", "transition", "transition", "details"])
                try:
                    if op == "assign":
                        AssignmentService.assign(actor, order.pk, rng.choice(people).pk)
                    elif op == "reassign":
                        AssignmentService.reassign(actor, order.pk, rng.choice(people).pk)
                    elif op == "transition":
                        StatusTransitionService.transition(actor, order.pk, rng.choice(Status.values))
                    else:
                        StatusTransitionService.update_delivery_details(
                            actor, order.pk, delivery_notes=f"note {rng.random()}"
                        )
                except DeliveryError:
                    pass
                order.refresh_from_db()
                self._check_invariants(order, previous_status)

            for order in orders:
                open_rows = OrderAssignment.objects.filter(order=order, released_at__isnull=True)
                if order.delivery_person_id:
                    self.assertEqual([a.delivery_person_id for a in open_rows], [order.delivery_person_id])
                else:
                    self.assertFalse(open_rows.exists())


class AssignmentTests(DeliveryFixtures, TestCase):
    def test_assign_confirmed_order(self):
        order = self.make_order(Status.CONFIRMED)

        with self.captureOnCommitCallbacks(execute=True):
            result = AssignmentService.assign(self.admin, order.pk, self.courier.pk)

        order.refresh_from_db()
        self.assertEqual(order.status, Status.ASSIGNED)
        self.assertEqual(order.delivery_person_id, self.courier.id)
        self.assertIsNotNone(order.assigned_at)
        self.assertEqual(result.version, order.version)
        self.assertTrue(OrderAssignment.objects.filter(order=order, delivery_person=self.courier).exists())
        history = order.status_history.last()
        self.assertEqual((history.from_status, history.to_status), (Status.CONFIRMED, Status.ASSIGNED))
        self.assertEqual(history.changed_by_id, self.admin.id)
        self.assertTrue(
            Notification.objects.filter(user=self.courier, type=Notification.Type.ORDER_ASSIGNED).exists()
        )

    def test_assign_twice_fails_and_keeps_first_courier(self):
        order = self.make_order(Status.CONFIRMED)
        AssignmentService.assign(self.admin, order.pk, self.courier.pk)

        with self.assertRaises(InvalidState):
            AssignmentService.assign(self.admin, order.pk, self.courier.pk)
        with self.assertRaises(InvalidState):
            AssignmentService.assign(self.admin, order.pk, self.other_courier.pk)

        order.refresh_from_db()
        self.assertEqual(order.delivery_person_id, self.courier.id)
        self.assertEqual(OrderAssignment.objects.filter(order=order).count(), 1)

    def test_assign_requires_confirmed(self):
        order = self.make_order(Status.PENDING)
        with self.assertRaises(InvalidState):
            AssignmentService.assign(self.admin, order.pk, self.courier.pk)

    def test_assign_rejects_inactive_person(self):
        order = self.make_order(Status.CONFIRMED)
        with self.assertRaises(InactivePerson):
            AssignmentService.assign(self.admin, order.pk, self.inactive_courier.pk)
        order.refresh_from_db()
        self.assertEqual(order.status, Status.CONFIRMED)
        self.assertIsNone(order.delivery_person_id)

    def test_assign_unknown_person_or_non_courier(self):
        order = self.make_order(Status.CONFIRMED)
        with self.assertRaises(NotFound):
            AssignmentService.assign(self.admin, order.pk, uuid.uuid4())
        with self.assertRaises(NotFound):
            AssignmentService.assign(self.admin, order.pk, self.customer.pk)

    def test_assign_unknown_order(self):
        with self.assertRaises(NotFound):
            AssignmentService.assign(self.admin, uuid.uuid4(), self.courier.pk)

    def test_only_admin_assigns(self):
        order = self.make_order(Status.CONFIRMED)
        for actor in (self.courier, self.customer):
            with self.assertRaises(Forbidden):
                AssignmentService.assign(actor, order.pk, self.courier.pk)

    def test_reassign_keeps_status_and_details(self):
        eta = timezone.now() + timedelta(hours=2)
        order = self.make_order(Status.OUT_FOR_DELIVERY)
        Order.objects.filter(pk=order.pk).update(estimated_delivery_time=eta, delivery_notes="gate B")
        assigned_at = order.assigned_at

        with self.captureOnCommitCallbacks(execute=True):
            AssignmentService.reassign(self.admin, order.pk, self.other_courier.pk)

        order.refresh_from_db()
        self.assertEqual(order.status, Status.OUT_FOR_DELIVERY)
        self.assertEqual(order.delivery_person_id, self.other_courier.id)
        self.assertEqual(order.assigned_at, assigned_at)
        self.assertEqual(order.estimated_delivery_time, eta)
        self.assertEqual(order.delivery_notes, "gate B")
        self.assertTrue(Notification.objects.filter(user=self.courier, type="order_reassigned").exists())
        self.assertTrue(Notification.objects.filter(user=self.other_courier, type="order_assigned").exists())

        # The previous courier keeps credit for the assignment.
        self.assertEqual(performance_for(self.courier).total_assigned, 1)
        self.assertEqual(performance_for(self.other_courier).total_assigned, 1)

    def test_reassign_rejections(self):
        assigned = self.make_order(Status.ASSIGNED)
        with self.assertRaises(InvalidState):
            AssignmentService.reassign(self.admin, assigned.pk, self.courier.pk)
        with self.assertRaises(InactivePerson):
            AssignmentService.reassign(self.admin, assigned.pk, self.inactive_courier.pk)
        with self.assertRaises(Forbidden):
            AssignmentService.reassign(self.courier, assigned.pk, self.other_courier.pk)

        for status in (Status.CONFIRMED, Status.DELIVERED, Status.COMPLETED):
            order = self.make_order(status)
            with self.subTest(status=status), self.assertRaises(InvalidState):
                AssignmentService.reassign(self.admin, order.pk, self.other_courier.pk)


class StatusTransitionTests(DeliveryFixtures, TestCase):
    def test_courier_sets_details_with_transition(self):
        order = self.make_order(Status.ASSIGNED)
        eta = timezone.now() + timedelta(minutes=45)

        StatusTransitionService.transition(
            self.courier, order.pk, Status.OUT_FOR_DELIVERY, estimated_delivery_time=eta, delivery_notes="on my way"
        )

        order.refresh_from_db()
        self.assertEqual(order.status, Status.OUT_FOR_DELIVERY)
        self.assertEqual(order.estimated_delivery_time, eta)
        self.assertEqual(order.delivery_notes, "on my way")

    def test_delivered_sets_timestamp(self):
        order = self.make_order(Status.OUT_FOR_DELIVERY)
        with self.captureOnCommitCallbacks(execute=True):
            StatusTransitionService.transition(self.courier, order.pk, Status.DELIVERED)
        order.refresh_from_db()
        self.assertIsNotNone(order.delivered_at)
        self.assertTrue(Notification.objects.filter(user=self.customer, type="order_delivered").exists())

    def test_details_rejected_outside_window(self):
        order = self.make_order(Status.PENDING)
        with self.assertRaises(InvalidState):
            StatusTransitionService.transition(self.admin, order.pk, Status.CONFIRMED, delivery_notes="x")
        with self.assertRaises(InvalidState):
            StatusTransitionService.update_delivery_details(self.admin, order.pk, delivery_notes="x")

    def test_other_courier_forbidden(self):
        order = self.make_order(Status.ASSIGNED)
        with self.assertRaises(Forbidden) as ctx:
            StatusTransitionService.transition(self.other_courier, order.pk, Status.OUT_FOR_DELIVERY)
        self.assertEqual(ctx.exception.message, "Access denied. This order is not assigned to you.")
        with self.assertRaises(Forbidden):
            StatusTransitionService.update_delivery_details(self.other_courier, order.pk, delivery_notes="x")

    def test_update_details_only(self):
        order = self.make_order(Status.ASSIGNED)
        StatusTransitionService.update_delivery_details(self.courier, order.pk, delivery_notes="call on arrival")
        order.refresh_from_db()
        self.assertEqual(order.status, Status.ASSIGNED)
        self.assertEqual(order.delivery_notes, "call on arrival")
        self.assertEqual(order.version, 1)

    def test_empty_details_update_is_noop(self):
        order = self.make_order(Status.ASSIGNED)
        StatusTransitionService.update_delivery_details(self.courier, order.pk)
        order.refresh_from_db()
        self.assertEqual(order.version, 0)

    def test_cancel_releases_courier(self):
        order = self.make_order(Status.OUT_FOR_DELIVERY)
        StatusTransitionService.transition(self.admin, order.pk, Status.CANCELLED)
        order.refresh_from_db()
        self.assertEqual(order.status, Status.CANCELLED)
        self.assertIsNone(order.delivery_person_id)
        self.assertFalse(OrderAssignment.objects.filter(order=order, released_at__isnull=True).exists())
        with self.assertRaises(IllegalTransition):
            StatusTransitionService.transition(self.admin, order.pk, Status.PENDING)

    def test_history_records_every_step(self):
        order = self.make_order(Status.PENDING)
        StatusTransitionService.transition(self.admin, order.pk, Status.CONFIRMED)
        AssignmentService.assign(self.admin, order.pk, self.courier.pk)
        StatusTransitionService.transition(self.courier, order.pk, Status.OUT_FOR_DELIVERY)

        steps = list(
            OrderStatusHistory.objects.filter(order=order).values_list("from_status", "to_status")
        )
        self.assertEqual(
            steps,
            [
                ("", Status.PENDING),
                (Status.PENDING, Status.CONFIRMED),
                (Status.CONFIRMED, Status.ASSIGNED),
                (Status.ASSIGNED, Status.OUT_FOR_DELIVERY),
            ],
        )


class RatingTests(DeliveryFixtures, TestCase):
    def test_record_rating_for_delivered_order(self):
        order = self.make_order(Status.DELIVERED)
        with self.captureOnCommitCallbacks(execute=True):
            rating = RatingService.record_rating(self.customer, order.pk, 4, "friendly")

        self.assertEqual(rating.delivery_person_id, self.courier.id)
        self.assertEqual(rating.customer_id, self.customer.id)
        self.assertTrue(Notification.objects.filter(user=self.courier, type="delivery_rated").exists())

    def test_rating_rejections(self):
        pending = self.make_order(Status.OUT_FOR_DELIVERY)
        with self.assertRaises(InvalidState):
            RatingService.record_rating(self.customer, pending.pk, 5)

        delivered = self.make_order(Status.COMPLETED)
        stranger = self.make_user("stranger@example.com")
        with self.assertRaises(Forbidden):
            RatingService.record_rating(stranger, delivered.pk, 5)

        for stars in (0, 6, 2.5, True):
            with self.subTest(stars=stars), self.assertRaises(ValueError):
                RatingService.record_rating(self.customer, delivered.pk, stars)

        RatingService.record_rating(self.customer, delivered.pk, 5)
        with self.assertRaises(DuplicateRating):
            RatingService.record_rating(self.customer, delivered.pk, 3)
        self.assertEqual(DeliveryRating.objects.count(), 1)

    def test_stats_average_is_exact(self):
        for stars in (5, 4, 4):
            order = self.make_order(Status.DELIVERED)
            RatingService.record_rating(self.customer, order.pk, stars)

        stats = RatingService.stats_for(self.courier.id)
        self.assertAlmostEqual(stats.average_rating, 13 / 3, delta=1e-9)
        self.assertEqual(stats.total_ratings, 3)
        self.assertEqual(stats.as_dict()["distribution"], {"1": 0, "2": 0, "3": 0, "4": 2, "5": 1})

    def test_stats_without_ratings(self):
        stats = RatingService.stats_for(self.other_courier.id)
        self.assertEqual(stats.average_rating, 0.0)
        self.assertEqual(stats.total_ratings, 0)
        self.assertEqual(sum(stats.distribution.values()), 0)

    def test_ratings_sorted_by_stars(self):
        for stars in (2, 5, 3):
            order = self.make_order(Status.DELIVERED)
            RatingService.record_rating(self.customer, order.pk, stars)
        ratings = RatingService.ratings_for(self.courier.id, sort_by="stars", sort_order="asc")
        self.assertEqual([r.stars for r in ratings], [2, 3, 5])
        with self.assertRaises(ValueError):
            RatingService.ratings_for(self.courier.id, sort_by="feedback")

    def test_sort_people_ties_keep_name_order(self):
        rows = [
            {"name": "Yonas", "average_rating": 4.0},
            {"name": "abel", "average_rating": 4.0},
            {"name": "Kidist", "average_rating": 4.5},
        ]
        self.assertEqual(
            [r["name"] for r in sort_people(rows, "average_rating", "desc")], ["Kidist", "abel", "Yonas"]
        )
        self.assertEqual(
            [r["name"] for r in sort_people(rows, "average_rating", "asc")], ["abel", "Yonas", "Kidist"]
        )


class PerformanceStatsTests(DeliveryFixtures, TestCase):
    def test_delivery_rate_rounding(self):
        self.assertEqual(delivery_rate(0, 0), 0)
        self.assertEqual(delivery_rate(2, 3), 67)
        self.assertEqual(delivery_rate(1, 8), 13)
        self.assertEqual(delivery_rate(1, 3), 33)
        self.assertEqual(delivery_rate(5, 5), 100)

    def test_no_assignments(self):
        stats = performance_for(self.other_courier)
        self.assertEqual(stats.total_assigned, 0)
        self.assertEqual(stats.delivery_rate, 0)
        self.assertIsNone(stats.average_delivery_time)

    def test_counts_and_average_time(self):
        start = timezone.now() - timedelta(hours=5)
        self.make_order(Status.DELIVERED, assigned_at=start, delivered_at=start + timedelta(minutes=30))
        self.make_order(Status.COMPLETED, assigned_at=start, delivered_at=start + timedelta(minutes=90))
        self.make_order(Status.ASSIGNED)

        stats = performance_for(self.courier)
        self.assertEqual(stats.total_assigned, 3)
        self.assertEqual(stats.total_delivered, 2)
        self.assertEqual(stats.total_completed, 1)
        self.assertEqual(stats.delivery_rate, 67)
        self.assertEqual(stats.average_delivery_time, 3600.0)

    def test_date_range_filters_on_assignment(self):
        old = timezone.now() - timedelta(days=30)
        self.make_order(Status.DELIVERED, assigned_at=old)
        self.make_order(Status.ASSIGNED)

        recent = performance_for(self.courier, date_from=timezone.now() - timedelta(days=1))
        self.assertEqual(recent.total_assigned, 1)
        self.assertEqual(recent.total_delivered, 0)

    def test_overview_sorted_by_delivered(self):
        self.make_order(Status.DELIVERED, courier=self.other_courier)
        self.make_order(Status.DELIVERED, courier=self.other_courier)
        self.make_order(Status.ASSIGNED, courier=self.courier)

        result = overview(User.objects.delivery_persons())
        self.assertEqual(result["overall"]["total_assigned"], 3)
        self.assertEqual(result["overall"]["total_delivered"], 2)
        self.assertEqual(result["overall"]["success_rate"], 67)
        self.assertEqual(
            [row["id"] for row in result["delivery_persons"]],
            [str(self.other_courier.id), str(self.courier.id)],
        )

    def test_delivery_credited_to_courier_holding_the_order(self):
        order = self.make_order(Status.CONFIRMED)
        AssignmentService.assign(self.admin, order.pk, self.courier.pk)
        AssignmentService.reassign(self.admin, order.pk, self.other_courier.pk)
        StatusTransitionService.transition(self.other_courier, order.pk, Status.OUT_FOR_DELIVERY)
        StatusTransitionService.transition(self.other_courier, order.pk, Status.DELIVERED)
        StatusTransitionService.transition(self.admin, order.pk, Status.COMPLETED)

        previous = performance_for(self.courier)
        current = performance_for(self.other_courier)
        self.assertEqual((previous.total_assigned, previous.total_delivered), (1, 0))
        self.assertEqual((current.total_assigned, current.total_delivered, current.total_completed), (1, 1, 1))
        self.assertIsNotNone(current.average_delivery_time)
        self.assertEqual(overall_performance().total_assigned, 1)

    def test_overview_queries_do_not_grow_with_couriers(self):
        def count_queries():
            with CaptureQueriesContext(connection) as queries:
                overview(User.objects.delivery_persons())
            return len(queries)

        self.make_order(Status.DELIVERED)
        baseline = count_queries()
        for n in range(4):
            rider = self.make_user(f"rider{n}@example.com", User.Role.DELIVERY_PERSON)
            order = self.make_order(Status.DELIVERED, courier=rider)
            RatingService.record_rating(self.customer, order.pk, 5)

        self.assertEqual(count_queries(), baseline)


class PurgeTests(DeliveryFixtures, TestCase):
    def test_requires_confirmation(self):
        self.make_order(Status.DELIVERED)
        with self.assertRaises(ConfirmationRequired):
            PurgeService.purge_delivered(self.admin)
        with self.assertRaises(ConfirmationRequired):
            PurgeService.purge_delivered(self.admin, confirm_delete="true")
        self.assertEqual(Order.objects.count(), 1)

    def test_only_admin(self):
        with self.assertRaises(Forbidden):
            PurgeService.purge_delivered(self.courier, confirm_delete=True)

    def test_deletes_only_delivered_orders(self):
        delivered = self.make_order(Status.DELIVERED)
        self.make_order(Status.COMPLETED)
        kept = [self.make_order(status) for status in (Status.PENDING, Status.OUT_FOR_DELIVERY, Status.CANCELLED)]
        RatingService.record_rating(self.customer, delivered.pk, 5)

        with self.assertLogs("delivery.services", level="INFO") as logs:
            count, summaries = PurgeService.purge_delivered(self.admin, confirm_delete=True)

        self.assertEqual(count, 2)
        self.assertEqual({s["customer_name"] for s in summaries}, {"Hana Girma"})
        self.assertEqual(summaries[0]["total_amount"], Decimal("150.00"))
        self.assertEqual(set(Order.objects.values_list("pk", flat=True)), {o.pk for o in kept})
        rating = DeliveryRating.objects.get()
        self.assertIsNone(rating.order_id)
        self.assertEqual(rating.order_number, delivered.order_number)
        self.assertIn("Deleted 2 delivered orders", logs.output[0])

    def test_courier_history_survives_purge(self):
        now = timezone.now()
        order = self.make_order(
            Status.DELIVERED, assigned_at=now - timedelta(days=40, hours=1), delivered_at=now - timedelta(days=40)
        )
        RatingService.record_rating(self.customer, order.pk, 4, "on time")

        def snapshot():
            ratings = RatingService.stats_for(self.courier.id)
            performance = performance_for(self.courier)
            return (
                ratings.total_ratings,
                ratings.average_rating,
                performance.total_assigned,
                performance.total_delivered,
                performance.average_delivery_time,
            )

        before = snapshot()
        self.assertEqual(before, (1, 4.0, 1, 1, 3600.0))

        count, _ = PurgeService.purge_delivered(self.admin, confirm_delete=True, older_than_days=30)

        self.assertEqual(count, 1)
        self.assertFalse(Order.objects.filter(pk=order.pk).exists())
        self.assertEqual(snapshot(), before)
        self.assertEqual(overview(User.objects.delivery_persons())["overall"]["total_delivered"], 1)
        assignment = OrderAssignment.objects.get(delivery_person=self.courier)
        self.assertIsNone(assignment.order_id)
        self.assertEqual(assignment.order_ref, order.pk)

    def test_date_filters_combine(self):
        now = timezone.now()
        ancient = self.make_order(Status.DELIVERED, delivered_at=now - timedelta(days=90))
        self.make_order(Status.DELIVERED, delivered_at=now - timedelta(days=40))
        self.make_order(Status.DELIVERED, delivered_at=now - timedelta(days=1))

        count, summaries = PurgeService.purge_delivered(
            self.admin, confirm_delete=True, older_than_days=30, date_to=now - timedelta(days=60)
        )
        self.assertEqual(count, 1)
        self.assertEqual(summaries[0]["order_number"], ancient.order_number)
        self.assertEqual(Order.objects.count(), 2)

    def test_nothing_to_delete(self):
        self.assertEqual(PurgeService.purge_delivered(self.admin, confirm_delete=True), (0, []))


class DeliveryPersonServiceTests(DeliveryFixtures, TestCase):
    def test_promote_customer(self):
        user = self.make_user("new.rider@example.com")
        person = DeliveryPersonService.promote(self.admin, user.pk)
        self.assertTrue(person.is_delivery_person)

    def test_promote_rejections(self):
        with self.assertRaises(InvalidState):
            DeliveryPersonService.promote(self.admin, self.admin.pk)
        with self.assertRaises(NotFound):
            DeliveryPersonService.promote(self.admin, uuid.uuid4())
        with self.assertRaises(Forbidden):
            DeliveryPersonService.promote(self.courier, self.customer.pk)

    def test_deactivate_keeps_history(self):
        order = self.make_order(Status.DELIVERED)
        DeliveryPersonService.set_active(self.admin, self.courier.pk, False)
        self.courier.refresh_from_db()
        self.assertFalse(self.courier.is_active)
        order.refresh_from_db()
        self.assertEqual(order.delivery_person_id, self.courier.id)
        self.assertFalse(can(self.courier, "order.mark_delivered", order))


class EndToEndTests(DeliveryFixtures, TestCase):
    def test_full_lifecycle(self):
        order = self.make_order(Status.PENDING)
        StatusTransitionService.transition(self.admin, order.pk, Status.CONFIRMED)
        AssignmentService.assign(self.admin, order.pk, self.courier.pk)
        StatusTransitionService.transition(self.courier, order.pk, Status.OUT_FOR_DELIVERY)
        StatusTransitionService.transition(self.courier, order.pk, Status.DELIVERED)
        RatingService.record_rating(self.customer, order.pk, 5)

        stats = performance_for(self.courier)
        self.assertEqual((stats.total_assigned, stats.total_delivered, stats.delivery_rate), (1, 1, 100))
        ratings = RatingService.stats_for(self.courier.id)
        self.assertEqual((ratings.average_rating, ratings.total_ratings), (5.0, 1))

        with self.assertRaises(InvalidState):
            AssignmentService.assign(self.admin, order.pk, self.courier.pk)


class DeliveryApiTests(DeliveryFixtures, TestCase):
    def setUp(self):
        super().setUp()
        self.client = APIClient()

    def as_user(self, user):
        self.client.force_authenticate(user)
        return self.client

    def test_assign_and_progress_over_http(self):
        order = self.make_order(Status.CONFIRMED)
        resp = self.as_user(self.admin).post(
            f"/orders/{order.pk}/assign/", {"delivery_person_id": str(self.courier.pk)}, format="json"
        )
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual(resp.data["status"], Status.ASSIGNED)
        self.assertEqual(resp.data["delivery_person"]["id"], str(self.courier.pk))

        resp = self.as_user(self.admin).post(
            f"/orders/{order.pk}/assign/", {"delivery_person_id": str(self.courier.pk)}, format="json"
        )
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.data["code"], "invalid_state")

        resp = self.as_user(self.courier).patch(
            f"/orders/{order.pk}/status/", {"status": "out_for_delivery"}, format="json"
        )
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual(resp.data["allowed_transitions"], [{"status": "delivered", "via_assignment": False}])

    def test_status_errors_over_http(self):
        order = self.make_order(Status.ASSIGNED)
        resp = self.as_user(self.other_courier).patch(
            f"/orders/{order.pk}/status/", {"status": "out_for_delivery"}, format="json"
        )
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.data["code"], "forbidden")

        resp = self.as_user(self.courier).patch(f"/orders/{order.pk}/status/", {"status": "completed"}, format="json")
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.data["code"], "illegal_transition")
        self.assertEqual((resp.data["from_status"], resp.data["to_status"]), ("assigned", "completed"))

        resp = self.as_user(self.courier).patch(f"/orders/{order.pk}/status/", {}, format="json")
        self.assertEqual(resp.status_code, 400)

        resp = self.as_user(self.customer).patch(f"/orders/{order.pk}/status/", {"status": "cancelled"}, format="json")
        self.assertEqual(resp.status_code, 403)

    def test_store_outage_is_retryable(self):
        order = self.make_order(Status.PENDING)
        with mock.patch("order.services.OrderStore.lock", side_effect=OperationalError("database is locked")):
            resp = self.as_user(self.admin).patch(
                f"/orders/{order.pk}/status/", {"status": "confirmed"}, format="json"
            )
        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.data["code"], "unavailable")
        self.assertEqual(resp["Retry-After"], "1")

    def test_order_detail_visibility(self):
        order = self.make_order(Status.ASSIGNED)
        resp = self.as_user(self.customer).get(f"/orders/{order.pk}/")
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual(resp.data["allowed_transitions"], [])
        self.assertEqual(resp.data["status_history"][0]["to_status"], "pending")

        resp = self.as_user(self.other_courier).get(f"/orders/{order.pk}/")
        self.assertEqual(resp.status_code, 403)

        resp = self.as_user(self.admin).get(f"/orders/{uuid.uuid4()}/")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.data["code"], "not_found")

    def test_rating_over_http(self):
        order = self.make_order(Status.DELIVERED)
        resp = self.as_user(self.customer).post(
            f"/orders/{order.pk}/rating/", {"stars": 5, "feedback": "fast"}, format="json"
        )
        self.assertEqual(resp.status_code, 201, resp.data)
        self.assertEqual(resp.data["delivery_person"]["average_rating"], 5.0)

        resp = self.as_user(self.customer).post(f"/orders/{order.pk}/rating/", {"stars": 4}, format="json")
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.data["code"], "duplicate_rating")

        resp = self.as_user(self.customer).post(f"/orders/{order.pk}/rating/", {"stars": 9}, format="json")
        self.assertEqual(resp.status_code, 400)

    def test_purge_over_http(self):
        self.make_order(Status.DELIVERED)
        resp = self.as_user(self.admin).delete("/orders/delivered/")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.data["code"], "confirmation_required")

        resp = self.as_user(self.courier).delete("/orders/delivered/?confirm_delete=true")
        self.assertEqual(resp.status_code, 403)

        resp = self.as_user(self.admin).delete("/orders/delivered/?confirm_delete=true")
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual(resp.data["deleted_count"], 1)
        self.assertEqual(resp.data["deleted_orders"][0]["total_amount"], "150.00")

    def test_delivery_person_directory(self):
        resp = self.as_user(self.admin).get("/delivery-persons/", {"is_active": "false"})
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual([row["id"] for row in resp.data["results"]], [str(self.inactive_courier.pk)])

        resp = self.as_user(self.admin).get("/delivery-persons/", {"search": "meron"})
        self.assertEqual(resp.data["count"], 1)
        self.assertIn("stats", resp.data["results"][0])

        resp = self.as_user(self.courier).get("/delivery-persons/")
        self.assertEqual(resp.status_code, 403)

    def test_promote_and_deactivate_over_http(self):
        user = self.make_user("walkin@example.com")
        resp = self.as_user(self.admin).post("/delivery-persons/", {"user_id": str(user.pk)}, format="json")
        self.assertEqual(resp.status_code, 201, resp.data)

        resp = self.as_user(self.admin).post(f"/delivery-persons/{user.pk}/deactivate/")
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertFalse(resp.data["is_active"])

    def test_stats_visibility(self):
        self.make_order(Status.DELIVERED)
        resp = self.as_user(self.courier).get(f"/delivery-persons/{self.courier.pk}/stats/")
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual(resp.data["total_delivered"], 1)
        self.assertEqual(resp.data["delivery_rate"], 100)

        resp = self.as_user(self.other_courier).get(f"/delivery-persons/{self.courier.pk}/stats/")
        self.assertEqual(resp.status_code, 403)

        resp = self.as_user(self.admin).get("/delivery-persons/stats/")
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual(resp.data["overall"]["total_delivered"], 1)

    def test_ratings_endpoints(self):
        order = self.make_order(Status.DELIVERED)
        RatingService.record_rating(self.customer, order.pk, 4)

        resp = self.as_user(self.courier).get(f"/delivery-persons/{self.courier.pk}/ratings/")
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual(resp.data["count"], 1)
        self.assertEqual(resp.data["stats"]["average_rating"], 4.0)
        self.assertEqual(resp.data["results"][0]["order_number"], order.order_number)

        resp = self.as_user(self.other_courier).get(f"/delivery-persons/{self.courier.pk}/ratings/")
        self.assertEqual(resp.status_code, 403)

        resp = self.as_user(self.admin).get("/delivery-persons/ratings/", {"sort_by": "total_ratings"})
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual(resp.data["total"], 2)
        self.assertEqual(resp.data["delivery_persons"][0]["id"], str(self.courier.pk))

    def test_leaderboard_queries_do_not_grow_with_couriers(self):
        client = self.as_user(self.admin)

        def count_queries():
            with CaptureQueriesContext(connection) as queries:
                resp = client.get("/delivery-persons/ratings/", {"sort_by": "average_rating"})
            self.assertEqual(resp.status_code, 200, resp.data)
            return len(queries), resp.data["total"]

        baseline, total = count_queries()
        for n in range(3):
            rider = self.make_user(f"leader{n}@example.com", User.Role.DELIVERY_PERSON)
            order = self.make_order(Status.DELIVERED, courier=rider)
            RatingService.record_rating(self.customer, order.pk, 3)

        self.assertEqual(count_queries(), (baseline, total + 3))

    def test_my_orders(self):
        mine = self.make_order(Status.ASSIGNED)
        self.make_order(Status.ASSIGNED, courier=self.other_courier)
        self.make_order(Status.DELIVERED)

        resp = self.as_user(self.courier).get("/delivery-persons/me/orders/", {"status": "assigned"})
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual([row["id"] for row in resp.data["results"]], [str(mine.pk)])

        resp = self.as_user(self.customer).get("/delivery-persons/me/orders/")
        self.assertEqual(resp.status_code, 403)
