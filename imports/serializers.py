from rest_framework import serializers

from imports.models import BulkUploadLog


class BulkImportRequestSerializer(serializers.Serializer):
    data = serializers.ListField(allow_empty=False)
    file_name = serializers.CharField(required=False, allow_blank=True, max_length=255)

    def validate_data(self, value):
        if not isinstance(value, list):
            raise serializers.ValidationError("Expected a list of rows.")
        return value


class BulkImportResultSerializer(serializers.Serializer):
    success = serializers.IntegerField()
    failed = serializers.IntegerField()
    errors = serializers.ListField(child=serializers.CharField())
    created_codes = serializers.ListField(child=serializers.CharField())
    log_id = serializers.UUIDField(allow_null=True)


class BulkUploadLogSerializer(serializers.ModelSerializer):
    class Meta:
        model = BulkUploadLog
        fields = [
            "id",
            "upload_type",
            "file_name",
            "total_rows",
            "success_count",
            "failed_count",
            "status",
            "errors",
            "created_codes",
            "performed_by",
            "created_at",
        ]
        read_only_fields = fields
