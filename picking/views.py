from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.generics import get_object_or_404
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.activity import record_activity_from_request
from common.permissions import RoleCapabilityPermission, performer_name
from orders.models import SalesOrder
from picking.models import PickingItem, PickingTask
from picking.serializers import (
    CompletionResultSerializer,
    CreateTaskSerializer,
    PickingItemSerializer,
    PickingItemUpdateSerializer,
    PickingTaskSerializer,
)
from picking.services import apply_item_action, complete_task, create_task_from_sales_order, update_item_fields


class PickingTaskViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = PickingTask.objects.select_related("sales_order").prefetch_related("items__part", "items__outbound_transaction")
    serializer_class = PickingTaskSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "inventory.view",
        "retrieve": "inventory.view",
        "from_sales_order": "picking.create",
        "complete": "picking.perform",
    }

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params
        if params.get("status"):
            qs = qs.filter(status=params["status"].upper())
        if params.get("priority"):
            qs = qs.filter(priority=params["priority"].upper())
        return qs

    @action(detail=False, methods=["post"], url_path=r"from-sales-order/(?P<sales_order_id>[0-9a-fA-F-]{36})")
    def from_sales_order(self, request, sales_order_id=None):
        sales_order = get_object_or_404(SalesOrder, pk=sales_order_id)
        serializer = CreateTaskSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        task = create_task_from_sales_order(
            sales_order,
            assigned_to=serializer.validated_data.get("assigned_to", ""),
            notes=serializer.validated_data.get("notes", ""),
        )
        payload = self.get_serializer(self.get_queryset().get(pk=task.pk)).data
        record_activity_from_request(request, action="picking_task.create", entity="picking_task", entity_id=task.id, after_snapshot=payload)
        return Response(payload, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="complete")
    def complete(self, request, pk=None):
        task = self.get_object()
        result = complete_task(task, performed_by=performer_name(request))
        result_task = self.get_queryset().get(pk=result.task.pk)
        payload = CompletionResultSerializer(
            {
                "task": result_task,
                "picked_count": result.picked_count,
                "skipped_count": result.skipped_count,
                "transaction_count": result.transaction_count,
            }
        ).data
        record_activity_from_request(
            request,
            action="picking_task.complete",
            entity="picking_task",
            entity_id=task.id,
            after_snapshot={"status": result_task.status, "transaction_count": result.transaction_count},
        )
        return Response(payload)


class PickingItemViewSet(mixins.RetrieveModelMixin, mixins.UpdateModelMixin, viewsets.GenericViewSet):
    queryset = PickingItem.objects.select_related("part", "task", "outbound_transaction")
    serializer_class = PickingItemSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "retrieve": "inventory.view",
        "update": "picking.perform",
        "partial_update": "picking.perform",
    }

    def update(self, request, *args, **kwargs):
        item = self.get_object()
        serializer = PickingItemUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        if data.get("action"):
            item = apply_item_action(
                item,
                data["action"],
                picked_qty=data.get("picked_qty"),
                notes=data.get("notes"),
                flag_type=data.get("flag_type"),
            )
        else:
            item = update_item_fields(
                item,
                status=data.get("status"),
                picked_qty=data.get("picked_qty"),
                notes=data.get("notes"),
            )
        return Response(self.get_serializer(self.get_queryset().get(pk=item.pk)).data)

    def partial_update(self, request, *args, **kwargs):
        return self.update(request, *args, **kwargs)
