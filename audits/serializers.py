from rest_framework import serializers

from audits.models import AuditItem, AuditRecord


class AuditItemSerializer(serializers.ModelSerializer):
    part_code = serializers.CharField(source="part.code", read_only=True)
    part_name = serializers.CharField(source="part.name", read_only=True)
    adjustment_transaction_code = serializers.CharField(source="adjustment_transaction.code", read_only=True, default=None)

    class Meta:
        model = AuditItem
        fields = [
            "id",
            "audit",
            "part",
            "part_code",
            "part_name",
            "system_qty",
            "counted_qty",
            "discrepancy",
            "notes",
            "counted_at",
            "adjustment_transaction",
            "adjustment_transaction_code",
        ]
        read_only_fields = fields


class AuditRecordSerializer(serializers.ModelSerializer):
    items = AuditItemSerializer(many=True, read_only=True)

    class Meta:
        model = AuditRecord
        fields = [
            "id",
            "code",
            "audit_date",
            "audit_type",
            "scope",
            "status",
            "total_items",
            "matched_items",
            "discrepancy_items",
            "performed_by",
            "approved_by",
            "notes",
            "completed_at",
            "approved_at",
            "items",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class AuditCreateSerializer(serializers.Serializer):
    audit_type = serializers.ChoiceField(choices=AuditRecord.Type.choices)
    audit_date = serializers.DateField()
    part_ids = serializers.ListField(child=serializers.UUIDField(), required=False, allow_null=True)
    performed_by = serializers.CharField(required=False, allow_blank=True, max_length=150)
    notes = serializers.CharField(required=False, allow_blank=True)


class CountSerializer(serializers.Serializer):
    counted_qty = serializers.IntegerField(min_value=0)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)
