from rest_framework import permissions, status
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import DeviceToken, Notification
from .serializers import DeviceTokenSerializer, NotificationQuerySerializer, NotificationSerializer


class NotificationPagination(PageNumberPagination):
    page_size = 20
    page_size_query_param = "limit"
    max_page_size = 100


def _inbox(user, order_id=None):
    qs = Notification.objects.filter(user=user)
    if order_id:
        qs = qs.filter(order_id=order_id)
    return qs


class DeviceTokenView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = DeviceTokenSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        serializer.save(user=request.user)
        return Response(serializer.data, status=status.HTTP_200_OK)

    def delete(self, request):
        token = (request.data.get("token") or "").strip()
        qs = DeviceToken.objects.filter(user=request.user, is_active=True)
        if token:
            qs = qs.filter(token=token)
        return Response({"deactivated": qs.update(is_active=False)})


class NotificationListView(APIView):
    """Lifecycle notifications for the caller, newest first.

    Filters: ``type`` (repeatable), ``unread`` and ``order_id``.
    """

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        query = NotificationQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        filters = query.validated_data

        qs = _inbox(request.user, filters.get("order_id"))
        if filters.get("type"):
            qs = qs.filter(type__in=filters["type"])
        if filters["unread"]:
            qs = qs.filter(is_read=False)

        paginator = NotificationPagination()
        page = paginator.paginate_queryset(qs.order_by("-created_at"), request, view=self)
        response = paginator.get_paginated_response(NotificationSerializer(page, many=True).data)
        response.data["unread_count"] = _inbox(request.user).filter(is_read=False).count()
        return response


class NotificationReadView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def patch(self, request, pk):
        notification = _inbox(request.user).filter(id=pk).first()
        if not notification:
            return Response({"detail": "Notification not found", "code": "not_found"}, status=status.HTTP_404_NOT_FOUND)
        if not notification.is_read:
            notification.is_read = True
            notification.save(update_fields=["is_read"])
        return Response(NotificationSerializer(notification).data)


class NotificationMarkAllReadView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        query = NotificationQuerySerializer(data=request.data)
        query.is_valid(raise_exception=True)
        updated = _inbox(request.user, query.validated_data.get("order_id")).filter(is_read=False).update(is_read=True)
        return Response({"updated": updated})
