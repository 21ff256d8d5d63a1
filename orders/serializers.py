from rest_framework import serializers

from inventory.models import Part, Product
from orders.models import Order, OrderItem, SalesOrder, SalesOrderItem
from orders.services import create_order, create_sales_order


class OrderItemSerializer(serializers.ModelSerializer):
    part_code = serializers.CharField(source="part.code", read_only=True)
    part_name = serializers.CharField(source="part.name", read_only=True)
    remaining_qty = serializers.IntegerField(read_only=True)

    class Meta:
        model = OrderItem
        fields = [
            "id",
            "part",
            "part_code",
            "part_name",
            "order_qty",
            "received_qty",
            "remaining_qty",
            "unit_price",
            "total_price",
            "status",
            "notes",
        ]
        read_only_fields = ["id", "received_qty", "total_price", "status"]


class OrderLineInputSerializer(serializers.Serializer):
    part = serializers.PrimaryKeyRelatedField(queryset=Part.objects.filter(is_active=True))
    order_qty = serializers.IntegerField(min_value=1)
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    notes = serializers.CharField(required=False, allow_blank=True)


class OrderSerializer(serializers.ModelSerializer):
    supplier_name = serializers.CharField(source="supplier.name", read_only=True)
    items = OrderItemSerializer(many=True, read_only=True)
    lines = OrderLineInputSerializer(many=True, write_only=True, required=False)
    code = serializers.CharField(max_length=32, required=False, allow_blank=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "code",
            "supplier",
            "supplier_name",
            "project",
            "order_date",
            "expected_date",
            "status",
            "total_amount",
            "notes",
            "received_at",
            "items",
            "lines",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "total_amount", "received_at", "created_at", "updated_at"]

    def validate_code(self, value):
        value = value.strip()
        if value and Order.objects.exclude(pk=getattr(self.instance, "pk", None)).filter(code=value).exists():
            raise serializers.ValidationError("An order with this code already exists.")
        return value

    def validate(self, attrs):
        expected_date = attrs.get("expected_date")
        order_date = attrs.get("order_date") or getattr(self.instance, "order_date", None)
        if expected_date and order_date and expected_date < order_date:
            raise serializers.ValidationError({"expected_date": "Expected date cannot be before the order date."})
        status = attrs.get("status")
        if status in (Order.Status.PARTIAL, Order.Status.RECEIVED):
            raise serializers.ValidationError({"status": "Receipt statuses are set by receiving the order."})
        return attrs

    def create(self, validated_data):
        lines = validated_data.pop("lines", [])
        return create_order(lines=lines, **validated_data)

    def update(self, instance, validated_data):
        validated_data.pop("lines", None)
        if not validated_data.get("code"):
            validated_data.pop("code", None)
        return super().update(instance, validated_data)


class ReceiptLineSerializer(serializers.Serializer):
    order_item_id = serializers.UUIDField()
    received_qty = serializers.IntegerField(min_value=1)


class ReceiveOrderSerializer(serializers.Serializer):
    items = ReceiptLineSerializer(many=True, allow_empty=False)


class SalesOrderItemSerializer(serializers.ModelSerializer):
    product = serializers.PrimaryKeyRelatedField(queryset=Product.objects.filter(is_active=True))
    product_code = serializers.CharField(source="product.code", read_only=True)

    class Meta:
        model = SalesOrderItem
        fields = ["id", "product", "product_code", "order_qty", "notes"]
        read_only_fields = ["id"]
        extra_kwargs = {"order_qty": {"min_value": 1}}


class SalesOrderSerializer(serializers.ModelSerializer):
    items = SalesOrderItemSerializer(many=True)
    code = serializers.CharField(max_length=32, required=False, allow_blank=True)
    picking_task_id = serializers.SerializerMethodField()

    class Meta:
        model = SalesOrder
        fields = [
            "id",
            "code",
            "customer",
            "project",
            "order_date",
            "due_date",
            "status",
            "notes",
            "items",
            "picking_task_id",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "status", "created_at", "updated_at"]

    def get_picking_task_id(self, obj):
        task = getattr(obj, "picking_task", None)
        return str(task.id) if task else None

    def validate_code(self, value):
        value = value.strip()
        if value and SalesOrder.objects.exclude(pk=getattr(self.instance, "pk", None)).filter(code=value).exists():
            raise serializers.ValidationError("A sales order with this code already exists.")
        return value

    def create(self, validated_data):
        lines = validated_data.pop("items", [])
        return create_sales_order(lines=lines, **validated_data)

    def update(self, instance, validated_data):
        if "items" in validated_data:
            raise serializers.ValidationError({"items": "Sales order lines cannot be replaced after creation."})
        if not validated_data.get("code"):
            validated_data.pop("code", None)
        return super().update(instance, validated_data)
