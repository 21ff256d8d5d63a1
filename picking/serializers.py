from rest_framework import serializers

from picking.models import PickingItem, PickingTask
from picking.services import ACTIONS


class PickingItemSerializer(serializers.ModelSerializer):
    part_code = serializers.CharField(source="part.code", read_only=True)
    part_name = serializers.CharField(source="part.name", read_only=True)
    outbound_transaction_code = serializers.CharField(source="outbound_transaction.code", read_only=True, default=None)

    class Meta:
        model = PickingItem
        fields = [
            "id",
            "task",
            "part",
            "part_code",
            "part_name",
            "storage_location",
            "sequence",
            "required_qty",
            "picked_qty",
            "status",
            "flag_type",
            "notes",
            "scanned_at",
            "verified_at",
            "outbound_transaction",
            "outbound_transaction_code",
        ]
        read_only_fields = fields


class PickingTaskSerializer(serializers.ModelSerializer):
    sales_order_code = serializers.CharField(source="sales_order.code", read_only=True)
    items = PickingItemSerializer(many=True, read_only=True)

    class Meta:
        model = PickingTask
        fields = [
            "id",
            "code",
            "sales_order",
            "sales_order_code",
            "priority",
            "status",
            "total_items",
            "picked_items",
            "assigned_to",
            "notes",
            "started_at",
            "completed_at",
            "items",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class PickingItemUpdateSerializer(serializers.Serializer):
    """Either an ``action`` or a direct field update."""

    action = serializers.ChoiceField(choices=ACTIONS, required=False)
    status = serializers.ChoiceField(choices=PickingItem.Status.choices, required=False)
    picked_qty = serializers.IntegerField(min_value=0, required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    flag_type = serializers.ChoiceField(choices=PickingItem.FlagType.choices, required=False)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError("Provide an action or at least one field to update.")
        if attrs.get("action") == "flag" and not attrs.get("flag_type"):
            raise serializers.ValidationError({"flag_type": "A flag type is required when flagging an item."})
        return attrs


class CreateTaskSerializer(serializers.Serializer):
    assigned_to = serializers.CharField(required=False, allow_blank=True, max_length=150)
    notes = serializers.CharField(required=False, allow_blank=True)


class CompletionResultSerializer(serializers.Serializer):
    task = PickingTaskSerializer()
    picked_count = serializers.IntegerField()
    skipped_count = serializers.IntegerField()
    transaction_count = serializers.IntegerField()
