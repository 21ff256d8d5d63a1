from rest_framework import status, viewsets
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.activity import record_activity_from_request
from common.permissions import RoleCapabilityPermission, performer_name
from imports.models import BulkUploadLog
from imports.serializers import BulkImportRequestSerializer, BulkImportResultSerializer, BulkUploadLogSerializer
from imports.services import run_import


def bulk_import_response(request, upload_type):
    """Shared body of the ``.../bulk/`` endpoints."""
    serializer = BulkImportRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    result = run_import(
        upload_type,
        serializer.validated_data["data"],
        file_name=serializer.validated_data.get("file_name", ""),
        performed_by=performer_name(request),
    )
    record_activity_from_request(
        request,
        action=f"bulk_import.{upload_type.lower()}",
        entity="bulk_upload_log",
        entity_id=result.log.id,
        after_snapshot={"success": result.success, "failed": result.failed, "status": result.log.status},
    )
    payload = BulkImportResultSerializer(result.as_dict()).data
    return Response(payload, status=status.HTTP_200_OK)


class BulkUploadLogViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = BulkUploadLog.objects.all()
    serializer_class = BulkUploadLogSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "bulk.import", "retrieve": "bulk.import"}

    def get_queryset(self):
        qs = super().get_queryset().order_by("-created_at")
        upload_type = self.request.query_params.get("upload_type")
        status_filter = self.request.query_params.get("status")
        if upload_type:
            qs = qs.filter(upload_type=upload_type.upper())
        if status_filter:
            qs = qs.filter(status=status_filter.upper())
        return qs
