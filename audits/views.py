from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from audits.models import AuditItem, AuditRecord
from audits.serializers import AuditCreateSerializer, AuditItemSerializer, AuditRecordSerializer, CountSerializer
from audits.services import apply_adjustments, approve_audit, complete_audit, create_audit, record_count
from common.activity import record_activity_from_request
from common.permissions import RoleCapabilityPermission, performer_name
from inventory.serializers import TransactionSerializer


class AuditRecordViewSet(mixins.CreateModelMixin, viewsets.ReadOnlyModelViewSet):
    queryset = AuditRecord.objects.prefetch_related("items__part", "items__adjustment_transaction")
    serializer_class = AuditRecordSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "inventory.view",
        "retrieve": "inventory.view",
        "create": "audit.manage",
        "complete": "audit.manage",
        "approve": "audit.approve",
        "apply_adjustments": "audit.approve",
    }

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params
        if params.get("status"):
            qs = qs.filter(status=params["status"].upper())
        if params.get("audit_type"):
            qs = qs.filter(audit_type=params["audit_type"].upper())
        return qs

    def _respond(self, audit, status_code=status.HTTP_200_OK):
        return Response(self.get_serializer(self.get_queryset().get(pk=audit.pk)).data, status=status_code)

    def create(self, request, *args, **kwargs):
        serializer = AuditCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        audit = create_audit(
            audit_type=data["audit_type"],
            audit_date=data["audit_date"],
            part_ids=data.get("part_ids"),
            performed_by=performer_name(request, data.get("performed_by")),
            notes=data.get("notes", ""),
        )
        record_activity_from_request(
            request,
            action="audit.create",
            entity="audit",
            entity_id=audit.id,
            after_snapshot={"code": audit.code, "total_items": audit.total_items},
        )
        return self._respond(audit, status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="complete")
    def complete(self, request, pk=None):
        audit = complete_audit(self.get_object())
        record_activity_from_request(request, action="audit.complete", entity="audit", entity_id=audit.id)
        return self._respond(audit)

    @action(detail=True, methods=["post"], url_path="approve")
    def approve(self, request, pk=None):
        audit = approve_audit(self.get_object(), approved_by=performer_name(request))
        record_activity_from_request(request, action="audit.approve", entity="audit", entity_id=audit.id)
        return self._respond(audit)

    @action(detail=True, methods=["post"], url_path="apply-adjustments")
    def apply_adjustments(self, request, pk=None):
        audit = self.get_object()
        entries = apply_adjustments(audit, performed_by=performer_name(request))
        record_activity_from_request(
            request,
            action="audit.apply_adjustments",
            entity="audit",
            entity_id=audit.id,
            after_snapshot={"transactions": [entry.code for entry in entries]},
        )
        return Response({"transactions": TransactionSerializer(entries, many=True).data})


class AuditItemViewSet(mixins.RetrieveModelMixin, mixins.UpdateModelMixin, viewsets.GenericViewSet):
    queryset = AuditItem.objects.select_related("part", "audit", "adjustment_transaction")
    serializer_class = AuditItemSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "retrieve": "inventory.view",
        "update": "audit.count",
        "partial_update": "audit.count",
    }

    def update(self, request, *args, **kwargs):
        item = self.get_object()
        serializer = CountSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        item = record_count(item, serializer.validated_data["counted_qty"], serializer.validated_data.get("notes"))
        return Response(self.get_serializer(self.get_queryset().get(pk=item.pk)).data)

    def partial_update(self, request, *args, **kwargs):
        return self.update(request, *args, **kwargs)
