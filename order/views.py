from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status, permissions

from delivery.exceptions import DeliveryError
from delivery.permissions import IsAdmin, IsAdminOrDeliveryPerson, require
from delivery.ratings import RatingService
from delivery.serializers import (
    DeliveryPersonIdSerializer,
    DeliveryRatingSerializer,
    OrderDeliverySerializer,
    PurgeDeliveredSerializer,
    RatingCreateSerializer,
    StatusUpdateSerializer,
)
from delivery.services import AssignmentService, PurgeService, StatusTransitionService
from delivery.state_machine import allowed_transitions
from delivery.views import error_response

from .serializers import OrderStatusHistorySerializer
from .services import OrderStore


def _order_payload(order, actor):
    data = OrderDeliverySerializer(order).data
    data["allowed_transitions"] = allowed_transitions(order, actor)
    return data


class OrderDetailView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, pk):
        try:
            order = OrderStore.get(pk)
            require(request.user, "order.view", order, message="You do not have access to this order.")
        except DeliveryError as exc:
            return error_response(exc)

        data = _order_payload(order, request.user)
        data["status_history"] = OrderStatusHistorySerializer(
            order.status_history.select_related("changed_by"), many=True
        ).data
        return Response(data)


class _AssignmentView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsAdmin]
    action = None

    def post(self, request, pk):
        serializer = DeliveryPersonIdSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            order = self.action(request.user, pk, serializer.validated_data["delivery_person_id"])
        except DeliveryError as exc:
            return error_response(exc)
        return Response(_order_payload(order, request.user), status=status.HTTP_200_OK)


class AssignDeliveryPersonView(_AssignmentView):
    action = staticmethod(AssignmentService.assign)


class ReassignDeliveryPersonView(_AssignmentView):
    action = staticmethod(AssignmentService.reassign)


class OrderStatusUpdateView(APIView):
    """Status change and/or delivery details update.

    Without ``status`` only ``estimated_delivery_time``/``delivery_notes`` change.
    """

    permission_classes = [permissions.IsAuthenticated, IsAdminOrDeliveryPerson]

    def patch(self, request, pk):
        serializer = StatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        details = {
            "estimated_delivery_time": data.get("estimated_delivery_time"),
            "delivery_notes": data.get("delivery_notes"),
        }
        try:
            if "status" in data:
                order = StatusTransitionService.transition(request.user, pk, data["status"], **details)
            else:
                order = StatusTransitionService.update_delivery_details(request.user, pk, **details)
        except DeliveryError as exc:
            return error_response(exc)
        return Response(_order_payload(order, request.user), status=status.HTTP_200_OK)


class OrderRatingView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, pk):
        serializer = RatingCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            rating = RatingService.record_rating(request.user, pk, **serializer.validated_data)
        except DeliveryError as exc:
            return error_response(exc)
        except ValueError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        stats = RatingService.stats_for(rating.delivery_person_id)
        return Response(
            {
                "message": "Delivery rating submitted successfully",
                "rating": DeliveryRatingSerializer(rating).data,
                "delivery_person": {
                    "id": str(rating.delivery_person_id),
                    "name": rating.delivery_person.full_name,
                    **stats.as_dict(),
                },
            },
            status=status.HTTP_201_CREATED,
        )


class PurgeDeliveredOrdersView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsAdmin]

    def delete(self, request):
        params = request.data if request.data else request.query_params
        serializer = PurgeDeliveredSerializer(data=params)
        serializer.is_valid(raise_exception=True)
        try:
            deleted_count, summaries = PurgeService.purge_delivered(request.user, **serializer.validated_data)
        except DeliveryError as exc:
            return error_response(exc)

        return Response(
            {
                "message": f"Successfully deleted {deleted_count} delivered orders",
                "deleted_count": deleted_count,
                "deleted_orders": [
                    {
                        **summary,
                        "total_amount": str(summary["total_amount"]),
                        "delivered_at": summary["delivered_at"].isoformat() if summary["delivered_at"] else None,
                    }
                    for summary in summaries
                ],
            },
            status=status.HTTP_200_OK,
        )
