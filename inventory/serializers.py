from rest_framework import serializers

from inventory.ledger import MAX_QUANTITY, Reference
from inventory.models import BomItem, Category, Inventory, Part, Product, Supplier, Transaction
from inventory.services import create_part, create_product


class CategorySerializer(serializers.ModelSerializer):
    class Meta:
        model = Category
        fields = ["id", "name", "parent", "is_active", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]


class SupplierSerializer(serializers.ModelSerializer):
    class Meta:
        model = Supplier
        fields = [
            "id",
            "code",
            "name",
            "contact_name",
            "phone",
            "email",
            "lead_time_days",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]


class InventoryStateSerializer(serializers.ModelSerializer):
    available_qty = serializers.IntegerField(read_only=True)

    class Meta:
        model = Inventory
        fields = [
            "current_qty",
            "reserved_qty",
            "incoming_qty",
            "available_qty",
            "last_inbound_at",
            "last_outbound_at",
            "updated_at",
        ]
        read_only_fields = fields


class PartSerializer(serializers.ModelSerializer):
    code = serializers.CharField(max_length=64, required=False, allow_blank=True)
    category_name = serializers.CharField(source="category.name", read_only=True)
    supplier_name = serializers.CharField(source="supplier.name", read_only=True)
    inventory = InventoryStateSerializer(read_only=True)

    class Meta:
        model = Part
        fields = [
            "id",
            "code",
            "name",
            "description",
            "unit",
            "unit_price",
            "safety_stock",
            "reorder_point",
            "min_order_qty",
            "lead_time_days",
            "storage_location",
            "category",
            "category_name",
            "supplier",
            "supplier_name",
            "is_active",
            "inventory",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate_code(self, value):
        value = value.strip()
        if value and Part.objects.exclude(pk=getattr(self.instance, "pk", None)).filter(code=value).exists():
            raise serializers.ValidationError("A part with this code already exists.")
        if self.instance is not None and value and value != self.instance.code and self.instance.transactions.exists():
            raise serializers.ValidationError("The code of a part with ledger history cannot change.")
        return value

    def create(self, validated_data):
        return create_part(**validated_data)

    def update(self, instance, validated_data):
        if not validated_data.get("code"):
            validated_data.pop("code", None)
        return super().update(instance, validated_data)


class InventorySerializer(serializers.ModelSerializer):
    part_id = serializers.UUIDField(source="part.id", read_only=True)
    part_code = serializers.CharField(source="part.code", read_only=True)
    part_name = serializers.CharField(source="part.name", read_only=True)
    unit = serializers.CharField(source="part.unit", read_only=True)
    safety_stock = serializers.IntegerField(source="part.safety_stock", read_only=True)
    storage_location = serializers.CharField(source="part.storage_location", read_only=True)
    is_active = serializers.BooleanField(source="part.is_active", read_only=True)
    available_qty = serializers.IntegerField(read_only=True)
    below_safety_stock = serializers.SerializerMethodField()

    class Meta:
        model = Inventory
        fields = [
            "id",
            "part_id",
            "part_code",
            "part_name",
            "unit",
            "safety_stock",
            "storage_location",
            "is_active",
            "current_qty",
            "reserved_qty",
            "incoming_qty",
            "available_qty",
            "below_safety_stock",
            "last_inbound_at",
            "last_outbound_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_below_safety_stock(self, obj):
        return bool(obj.part.safety_stock) and obj.current_qty <= obj.part.safety_stock


class TransactionSerializer(serializers.ModelSerializer):
    part_code = serializers.CharField(source="part.code", read_only=True)
    part_name = serializers.CharField(source="part.name", read_only=True)

    class Meta:
        model = Transaction
        fields = [
            "id",
            "code",
            "transaction_type",
            "part",
            "part_code",
            "part_name",
            "quantity",
            "before_qty",
            "after_qty",
            "reference_type",
            "reference_id",
            "reason",
            "notes",
            "performed_by",
            "transaction_date",
            "created_at",
        ]
        read_only_fields = fields


class TransactionCreateSerializer(serializers.Serializer):
    """Input for one ledger movement. ADJUSTMENT quantities are absolute targets."""

    part_id = serializers.UUIDField()
    transaction_type = serializers.CharField()
    quantity = serializers.IntegerField(min_value=0, max_value=MAX_QUANTITY)
    reference_type = serializers.CharField(required=False, allow_blank=True)
    reference_id = serializers.CharField(required=False, allow_blank=True, max_length=64)
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)
    notes = serializers.CharField(required=False, allow_blank=True)
    performed_by = serializers.CharField(required=False, allow_blank=True, max_length=150)

    def validate(self, attrs):
        attrs["reference"] = Reference.parse(attrs.get("reference_type"), attrs.get("reference_id"))
        return attrs


class BomItemSerializer(serializers.ModelSerializer):
    part_code = serializers.CharField(source="part.code", read_only=True)

    class Meta:
        model = BomItem
        fields = ["id", "part", "part_code", "quantity_per_unit", "loss_rate", "is_active"]
        read_only_fields = ["id"]


class ProductSerializer(serializers.ModelSerializer):
    code = serializers.CharField(max_length=64, required=False, allow_blank=True)
    bom_items = BomItemSerializer(many=True, read_only=True)

    class Meta:
        model = Product
        fields = ["id", "code", "name", "description", "category", "unit", "is_active", "bom_items", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate_code(self, value):
        value = value.strip()
        if value and Product.objects.exclude(pk=getattr(self.instance, "pk", None)).filter(code=value).exists():
            raise serializers.ValidationError("A product with this code already exists.")
        return value

    def create(self, validated_data):
        return create_product(**validated_data)

    def update(self, instance, validated_data):
        if not validated_data.get("code"):
            validated_data.pop("code", None)
        return super().update(instance, validated_data)
