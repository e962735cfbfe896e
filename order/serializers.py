from rest_framework import serializers

from .models import OrderStatusHistory


class OrderStatusHistorySerializer(serializers.ModelSerializer):
    changed_by = serializers.SerializerMethodField(read_only=True)

    class Meta:
        model = OrderStatusHistory
        fields = ["from_status", "to_status", "changed_by", "notes", "changed_at"]
        read_only_fields = fields

    def get_changed_by(self, obj):
        if not obj.changed_by_id:
            return None
        return {"id": str(obj.changed_by_id), "name": obj.changed_by.full_name}
