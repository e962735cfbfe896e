from django.contrib.auth import get_user_model
from django.db.models import Q
from rest_framework import permissions, status
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from account.serializers import DeliveryPersonSerializer
from order.models import Order

from .exceptions import DeliveryError
from .permissions import IsAdmin, IsAdminOrDeliveryPerson, IsDeliveryPerson, require
from .ratings import RatingService, sort_people
from .serializers import (
    DateRangeSerializer,
    DeliveryRatingSerializer,
    MyOrdersQuerySerializer,
    OrderDeliverySerializer,
    PersonRatingsQuerySerializer,
    PromoteDeliveryPersonSerializer,
    RatingListQuerySerializer,
)
from .services import DeliveryPersonService, resolve_delivery_person
from .stats import PerformanceStats, overview, performance_by_person, performance_for, summaries

User = get_user_model()


def error_response(exc):
    response = Response(exc.as_dict(), status=exc.status_code)
    if exc.retryable:
        response["Retry-After"] = str(exc.retry_after)
    return response


class DeliveryPagination(PageNumberPagination):
    page_size = 20
    page_size_query_param = "limit"
    max_page_size = 100


class DeliveryPersonListView(APIView):
    """Admin directory of delivery persons with their performance figures."""

    permission_classes = [permissions.IsAuthenticated, IsAdmin]

    def get(self, request):
        qs = User.objects.delivery_persons().order_by("-created_at")

        is_active = request.query_params.get("is_active")
        if is_active is not None and is_active != "":
            qs = qs.filter(is_active=is_active.lower() in {"1", "true", "yes"})

        search = (request.query_params.get("search") or "").strip()
        if search:
            qs = qs.filter(
                Q(first_name__icontains=search)
                | Q(last_name__icontains=search)
                | Q(email__icontains=search)
                | Q(phone_number__icontains=search)
            )

        paginator = DeliveryPagination()
        page = paginator.paginate_queryset(qs, request, view=self)
        performance = performance_by_person([person.pk for person in page])
        data = [
            {
                **DeliveryPersonSerializer(person).data,
                "stats": performance.get(person.pk, PerformanceStats()).as_dict(),
            }
            for person in page
        ]
        return paginator.get_paginated_response(data)

    def post(self, request):
        serializer = PromoteDeliveryPersonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            person = DeliveryPersonService.promote(request.user, serializer.validated_data["user_id"])
        except DeliveryError as exc:
            return error_response(exc)
        return Response(DeliveryPersonSerializer(person).data, status=status.HTTP_201_CREATED)


class _DeliveryPersonActiveView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsAdmin]
    target_active = None

    def post(self, request, pk):
        try:
            person = DeliveryPersonService.set_active(request.user, pk, self.target_active)
        except DeliveryError as exc:
            return error_response(exc)
        return Response(DeliveryPersonSerializer(person).data)


class DeliveryPersonActivateView(_DeliveryPersonActiveView):
    target_active = True


class DeliveryPersonDeactivateView(_DeliveryPersonActiveView):
    target_active = False


class DeliveryStatsOverviewView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsAdmin]

    def get(self, request):
        serializer = DateRangeSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        people = User.objects.delivery_persons().order_by("first_name", "last_name")
        return Response(overview(people, **serializer.validated_data))


class DeliveryPersonStatsView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsAdminOrDeliveryPerson]

    def get(self, request, pk):
        serializer = DateRangeSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        try:
            person = resolve_delivery_person(pk)
            require(request.user, "delivery_person.view_stats", person, message="You can only view your own stats.")
        except DeliveryError as exc:
            return error_response(exc)
        return Response(
            {
                "delivery_person": DeliveryPersonSerializer(person).data,
                **performance_for(person, **serializer.validated_data).as_dict(),
            }
        )


class DeliveryPersonRatingsView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsAdminOrDeliveryPerson]

    def get(self, request, pk):
        query = RatingListQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        try:
            person = resolve_delivery_person(pk)
            require(
                request.user,
                "delivery_person.view_ratings",
                person,
                message="Access denied. You can only view your own ratings.",
            )
        except DeliveryError as exc:
            return error_response(exc)

        ratings = RatingService.ratings_for(person.id, **query.validated_data)
        paginator = DeliveryPagination()
        page = paginator.paginate_queryset(ratings, request, view=self)
        response = paginator.get_paginated_response(DeliveryRatingSerializer(page, many=True).data)
        response.data["delivery_person"] = DeliveryPersonSerializer(person).data
        response.data["stats"] = RatingService.stats_for(person.id).as_dict()
        return response


class DeliveryPersonsRatingsView(APIView):
    """Active couriers ranked by rating or delivery volume."""

    permission_classes = [permissions.IsAuthenticated, IsAdmin]

    def get(self, request):
        query = PersonRatingsQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        people = User.objects.delivery_persons().filter(is_active=True)
        rows = sort_people(
            summaries(people),
            query.validated_data["sort_by"],
            query.validated_data["sort_order"],
        )
        return Response({"delivery_persons": rows, "total": len(rows)})


class MyDeliveryOrdersView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsDeliveryPerson]

    def get(self, request):
        query = MyOrdersQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        filters = query.validated_data

        qs = Order.objects.filter(delivery_person=request.user).select_related("customer", "delivery_person")
        if filters.get("status"):
            qs = qs.filter(status__in=filters["status"])
        if filters.get("date_from"):
            qs = qs.filter(assigned_at__gte=filters["date_from"])
        if filters.get("date_to"):
            qs = qs.filter(assigned_at__lte=filters["date_to"])
        qs = qs.order_by("-assigned_at", "-created_at")

        paginator = DeliveryPagination()
        page = paginator.paginate_queryset(qs, request, view=self)
        return paginator.get_paginated_response(OrderDeliverySerializer(page, many=True).data)
