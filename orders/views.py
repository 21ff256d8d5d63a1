from rest_framework import viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.exceptions import InvalidState
from common.permissions import RoleCapabilityPermission, performer_name
from imports.models import BulkUploadLog
from imports.views import bulk_import_response
from inventory.serializers import TransactionSerializer
from inventory.views import ActivityMutationMixin
from orders.models import Order, SalesOrder
from orders.serializers import OrderSerializer, ReceiveOrderSerializer, SalesOrderSerializer
from orders.services import receive_order


class OrderViewSet(ActivityMutationMixin, viewsets.ModelViewSet):
    queryset = Order.objects.select_related("supplier").prefetch_related("items__part")
    serializer_class = OrderSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "inventory.view",
        "retrieve": "inventory.view",
        "create": "master.manage",
        "update": "master.manage",
        "partial_update": "master.manage",
        "destroy": "master.manage",
        "receive": "orders.receive",
        "bulk": "bulk.import",
    }
    event_entity = "order"

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params
        if params.get("status"):
            qs = qs.filter(status=params["status"].upper())
        if params.get("supplier_id"):
            qs = qs.filter(supplier_id=params["supplier_id"])
        return qs

    def perform_destroy(self, instance):
        if instance.items.filter(received_qty__gt=0).exists():
            raise InvalidState("Orders with received lines cannot be deleted.")
        super().perform_destroy(instance)

    @action(detail=True, methods=["post"], url_path="receive")
    def receive(self, request, pk=None):
        order = self.get_object()
        serializer = ReceiveOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        receipts = [(line["order_item_id"], line["received_qty"]) for line in serializer.validated_data["items"]]

        before_snapshot = self.get_serializer(order).data
        order, entries = receive_order(order, receipts, performed_by=performer_name(request))
        order = self.get_queryset().get(pk=order.pk)
        after_snapshot = self.get_serializer(order).data
        self._activity(action="order.receive", instance=order, before_snapshot=before_snapshot, after_snapshot=after_snapshot)
        return Response({"order": after_snapshot, "transactions": TransactionSerializer(entries, many=True).data})

    @action(detail=False, methods=["post"], url_path="bulk")
    def bulk(self, request):
        return bulk_import_response(request, BulkUploadLog.UploadType.ORDERS)


class SalesOrderViewSet(ActivityMutationMixin, viewsets.ModelViewSet):
    queryset = SalesOrder.objects.prefetch_related("items__product").select_related("picking_task")
    serializer_class = SalesOrderSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "inventory.view",
        "retrieve": "inventory.view",
        "create": "master.manage",
        "update": "master.manage",
        "partial_update": "master.manage",
        "destroy": "master.manage",
    }
    event_entity = "sales_order"

    def get_queryset(self):
        qs = super().get_queryset()
        status_filter = self.request.query_params.get("status")
        if status_filter:
            qs = qs.filter(status=status_filter.upper())
        return qs

    def perform_destroy(self, instance):
        if instance.status != SalesOrder.Status.RECEIVED:
            raise InvalidState("Only sales orders that have not been released can be deleted.")
        super().perform_destroy(instance)
