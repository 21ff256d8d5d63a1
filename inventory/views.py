from django.db.models import F
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.activity import record_activity_from_request
from common.permissions import RoleCapabilityPermission, performer_name
from common.utils import emit_event
from imports.models import BulkUploadLog
from imports.views import bulk_import_response
from inventory.ledger import apply_transaction
from inventory.models import Category, Inventory, Part, Product, Supplier, Transaction
from inventory.serializers import (
    CategorySerializer,
    InventorySerializer,
    PartSerializer,
    ProductSerializer,
    SupplierSerializer,
    TransactionCreateSerializer,
    TransactionSerializer,
)
from inventory.services import retire_part

READ_ACTIONS = ("list", "retrieve")
WRITE_ACTIONS = ("create", "update", "partial_update", "destroy")


def _truthy(value):
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


class ActivityMutationMixin:
    """Records an activity log row and an outbox event for every write."""

    event_entity = None

    def _activity(self, *, action, instance, before_snapshot=None, after_snapshot=None):
        record_activity_from_request(
            self.request,
            action=action,
            entity=self.event_entity,
            entity_id=instance.id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
        )

    def _emit(self, instance, op):
        emit_event(self.event_entity, instance.id, op, self.get_serializer(instance).data)

    def perform_create(self, serializer):
        instance = serializer.save()
        self._emit(instance, "upsert")
        self._activity(action=f"{self.event_entity}.create", instance=instance, after_snapshot=self.get_serializer(instance).data)

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        instance = serializer.save()
        self._emit(instance, "upsert")
        self._activity(
            action=f"{self.event_entity}.update",
            instance=instance,
            before_snapshot=before_snapshot,
            after_snapshot=self.get_serializer(instance).data,
        )

    def perform_destroy(self, instance):
        before_snapshot = self.get_serializer(instance).data
        self._emit(instance, "delete")
        self._activity(action=f"{self.event_entity}.delete", instance=instance, before_snapshot=before_snapshot)
        instance.delete()


class CategoryViewSet(ActivityMutationMixin, viewsets.ModelViewSet):
    queryset = Category.objects.all()
    serializer_class = CategorySerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        **{name: "inventory.view" for name in READ_ACTIONS},
        **{name: "master.manage" for name in WRITE_ACTIONS},
    }
    event_entity = "category"


class SupplierViewSet(ActivityMutationMixin, viewsets.ModelViewSet):
    queryset = Supplier.objects.all()
    serializer_class = SupplierSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        **{name: "inventory.view" for name in READ_ACTIONS},
        **{name: "master.manage" for name in WRITE_ACTIONS},
    }
    event_entity = "supplier"

    def get_queryset(self):
        qs = super().get_queryset()
        if not _truthy(self.request.query_params.get("include_inactive", "")):
            qs = qs.filter(is_active=True)
        return qs


class PartViewSet(ActivityMutationMixin, viewsets.ModelViewSet):
    queryset = Part.objects.select_related("category", "supplier", "inventory")
    serializer_class = PartSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        **{name: "inventory.view" for name in READ_ACTIONS},
        **{name: "master.manage" for name in WRITE_ACTIONS},
        "transactions": "inventory.view",
        "bulk": "bulk.import",
    }
    event_entity = "part"

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params
        if self.action == "list" and not _truthy(params.get("include_inactive", "")):
            qs = qs.filter(is_active=True)
        search = params.get("search")
        if search:
            qs = qs.filter(code__icontains=search) | qs.filter(name__icontains=search)
        category_id = params.get("category_id")
        if category_id:
            qs = qs.filter(category_id=category_id)
        supplier_id = params.get("supplier_id")
        if supplier_id:
            qs = qs.filter(supplier_id=supplier_id)
        return qs

    def perform_create(self, serializer):
        instance = serializer.save()
        self._activity(action="part.create", instance=instance, after_snapshot=self.get_serializer(instance).data)

    def destroy(self, request, *args, **kwargs):
        part = self.get_object()
        before_snapshot = self.get_serializer(part).data
        deleted = retire_part(part)
        self._activity(action="part.delete" if deleted else "part.deactivate", instance=part, before_snapshot=before_snapshot)
        if deleted:
            return Response(status=status.HTTP_204_NO_CONTENT)
        part.refresh_from_db()
        return Response(self.get_serializer(part).data)

    @action(detail=True, methods=["get"], url_path="transactions")
    def transactions(self, request, pk=None):
        part = self.get_object()
        qs = Transaction.objects.filter(part=part).select_related("part").order_by("-transaction_date", "-created_at")
        page = self.paginate_queryset(qs)
        if page is not None:
            return self.get_paginated_response(TransactionSerializer(page, many=True).data)
        return Response(TransactionSerializer(qs, many=True).data)

    @action(detail=False, methods=["post"], url_path="bulk")
    def bulk(self, request):
        return bulk_import_response(request, BulkUploadLog.UploadType.PARTS)


class InventoryViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Inventory.objects.select_related("part")
    serializer_class = InventorySerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "inventory.view", "retrieve": "inventory.view", "low_stock": "inventory.view"}

    def get_queryset(self):
        qs = super().get_queryset().filter(part__is_active=True).order_by("part__code")
        search = self.request.query_params.get("search")
        if search:
            qs = qs.filter(part__code__icontains=search) | qs.filter(part__name__icontains=search)
        return qs

    @action(detail=False, methods=["get"], url_path="low-stock")
    def low_stock(self, request):
        qs = self.get_queryset().filter(part__safety_stock__gt=0, current_qty__lte=F("part__safety_stock"))
        return Response(self.get_serializer(qs, many=True).data)


class TransactionViewSet(viewsets.ReadOnlyModelViewSet):
    """Ledger history plus the single-movement and bulk entry points."""

    queryset = Transaction.objects.select_related("part")
    serializer_class = TransactionSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "inventory.view",
        "retrieve": "inventory.view",
        "create": "stock.move",
        "bulk": "bulk.import",
    }

    def get_queryset(self):
        qs = super().get_queryset().order_by("-transaction_date", "-created_at")
        params = self.request.query_params
        if params.get("part_id"):
            qs = qs.filter(part_id=params["part_id"])
        if params.get("transaction_type"):
            qs = qs.filter(transaction_type=params["transaction_type"].upper())
        if params.get("reference_type"):
            qs = qs.filter(reference_type=params["reference_type"].upper())
        if params.get("reference_id"):
            qs = qs.filter(reference_id=params["reference_id"])
        return qs

    def create(self, request, *args, **kwargs):
        serializer = TransactionCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        entry = apply_transaction(
            data["part_id"],
            data["transaction_type"],
            data["quantity"],
            reference=data["reference"],
            performed_by=performer_name(request, data.get("performed_by")),
            reason=data.get("reason", ""),
            notes=data.get("notes", ""),
        )
        payload = TransactionSerializer(entry).data
        record_activity_from_request(request, action="transaction.create", entity="transaction", entity_id=entry.id, after_snapshot=payload)
        return Response(payload, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["post"], url_path="bulk")
    def bulk(self, request):
        return bulk_import_response(request, BulkUploadLog.UploadType.TRANSACTIONS)


class ProductViewSet(ActivityMutationMixin, viewsets.ModelViewSet):
    queryset = Product.objects.prefetch_related("bom_items__part")
    serializer_class = ProductSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        **{name: "inventory.view" for name in READ_ACTIONS},
        **{name: "master.manage" for name in WRITE_ACTIONS},
        "bulk": "bulk.import",
    }
    event_entity = "product"

    @action(detail=False, methods=["post"], url_path="bulk")
    def bulk(self, request):
        return bulk_import_response(request, BulkUploadLog.UploadType.PRODUCTS)
