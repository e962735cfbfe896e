from rest_framework import serializers

from account.serializers import UserSummarySerializer
from order.models import Order

from .models import DeliveryRating
from .ratings import PERSON_SORT_KEYS, RATING_SORT_FIELDS, SORT_ORDERS


class DeliveryPersonIdSerializer(serializers.Serializer):
    delivery_person_id = serializers.UUIDField()


class PromoteDeliveryPersonSerializer(serializers.Serializer):
    user_id = serializers.UUIDField()


class StatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Order.Status.choices, required=False)
    estimated_delivery_time = serializers.DateTimeField(required=False)
    delivery_notes = serializers.CharField(required=False, allow_blank=True, max_length=2000)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError(
                "Provide status, estimated_delivery_time or delivery_notes."
            )
        return attrs


class RatingCreateSerializer(serializers.Serializer):
    stars = serializers.IntegerField(min_value=1, max_value=5)
    feedback = serializers.CharField(required=False, allow_blank=True, max_length=1000, default="")


class PurgeDeliveredSerializer(serializers.Serializer):
    confirm_delete = serializers.BooleanField(required=False, default=False)
    date_from = serializers.DateTimeField(required=False)
    date_to = serializers.DateTimeField(required=False)
    older_than_days = serializers.IntegerField(required=False, min_value=0)

    def validate(self, attrs):
        date_from, date_to = attrs.get("date_from"), attrs.get("date_to")
        if date_from and date_to and date_from > date_to:
            raise serializers.ValidationError({"date_to": "date_to must not be before date_from."})
        return attrs


class DateRangeSerializer(serializers.Serializer):
    date_from = serializers.DateTimeField(required=False)
    date_to = serializers.DateTimeField(required=False)


class RatingListQuerySerializer(serializers.Serializer):
    sort_by = serializers.ChoiceField(choices=sorted(RATING_SORT_FIELDS), required=False, default="rated_at")
    sort_order = serializers.ChoiceField(choices=sorted(SORT_ORDERS), required=False, default="desc")


class PersonRatingsQuerySerializer(serializers.Serializer):
    sort_by = serializers.ChoiceField(choices=sorted(PERSON_SORT_KEYS), required=False, default="average_rating")
    sort_order = serializers.ChoiceField(choices=sorted(SORT_ORDERS), required=False, default="desc")


class MyOrdersQuerySerializer(DateRangeSerializer):
    status = serializers.MultipleChoiceField(choices=Order.Status.choices, required=False)


class DeliveryRatingSerializer(serializers.ModelSerializer):
    customer = serializers.SerializerMethodField(read_only=True)

    class Meta:
        model = DeliveryRating
        fields = ["id", "order", "order_number", "delivery_person", "customer", "stars", "feedback", "rated_at"]
        read_only_fields = fields

    def get_customer(self, obj):
        return {"id": str(obj.customer_id), "name": obj.customer.full_name}


class OrderDeliverySerializer(serializers.ModelSerializer):
    customer = UserSummarySerializer(read_only=True)
    delivery_person = UserSummarySerializer(read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "status",
            "customer",
            "delivery_person",
            "assigned_at",
            "estimated_delivery_time",
            "delivered_at",
            "delivery_notes",
            "total_amount",
            "delivery_address",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields
