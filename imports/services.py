"""Spreadsheet style bulk imports.

Rows are loosely structured mappings whose keys may be English camelCase,
snake_case or the Korean column headers used by the warehouse team. Each row
is applied in its own savepoint: a failing row is reported as ``Row N: ...``
and never undoes the rows before it. One ``BulkUploadLog`` is written per
batch.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime
from rest_framework.exceptions import APIException, NotFound, ValidationError

from common.exceptions import Conflict, InvalidState, exception_message
from common.utils import emit_event
from imports.models import BulkUploadLog
from inventory.codes import allocate_code, date_scope
from inventory.ledger import MAX_QUANTITY, Reference, apply_transaction, normalize_type
from inventory.models import Category, Inventory, Part, Product, Supplier
from orders.models import Order
from orders.services import next_order_code, recompute_order_total, set_line

logger = logging.getLogger("imports")

CLOSED_ORDER_STATUSES = {Order.Status.RECEIVED, Order.Status.CANCELLED}

# largest value a 12 digit, 2 decimal price column holds
MAX_PRICE = Decimal("9999999999.99")


@dataclass
class ImportResult:
    success: int = 0
    failed: int = 0
    errors: list = field(default_factory=list)
    created_codes: list = field(default_factory=list)
    log: BulkUploadLog | None = None

    def as_dict(self):
        return {
            "success": self.success,
            "failed": self.failed,
            "errors": self.errors,
            "created_codes": self.created_codes,
            "log_id": str(self.log.id) if self.log else None,
        }


class Lookup:
    """Case-insensitive index of master records by code and by name."""

    def __init__(self, objects=(), code_attr="code", name_attr="name"):
        self.code_attr = code_attr
        self.name_attr = name_attr
        self.by_code = {}
        self.by_name = {}
        for obj in objects:
            self.add(obj)

    @staticmethod
    def _key(value):
        return str(value).strip().lower() if value not in (None, "") else ""

    def add(self, obj):
        code = self._key(getattr(obj, self.code_attr, None)) if self.code_attr else ""
        name = self._key(getattr(obj, self.name_attr, None)) if self.name_attr else ""
        if code:
            self.by_code[code] = obj
        if name:
            self.by_name.setdefault(name, obj)

    def find(self, code=None, name=None):
        found = self.by_code.get(self._key(code)) if code not in (None, "") else None
        if found is None and name not in (None, ""):
            found = self.by_name.get(self._key(name))
        return found


def parse_int(value, field_name, default=None):
    if value in (None, ""):
        if default is None:
            raise ValidationError({field_name: ["This field is required."]})
        return default
    if isinstance(value, bool):
        raise ValidationError({field_name: ["Must be a whole number."]})
    try:
        number = Decimal(str(value).replace(",", "").strip())
    except InvalidOperation:
        raise ValidationError({field_name: [f"Must be a whole number, got {value!r}."]})
    if not number.is_finite() or number != number.to_integral_value():
        raise ValidationError({field_name: [f"Must be a whole number, got {value!r}."]})
    if abs(number) > MAX_QUANTITY:
        raise ValidationError({field_name: [f"Must not exceed {MAX_QUANTITY}."]})
    return int(number)


def parse_decimal(value, field_name, default=None):
    if value in (None, ""):
        return default
    try:
        number = Decimal(str(value).replace(",", "").strip())
    except InvalidOperation:
        raise ValidationError({field_name: [f"Must be a number, got {value!r}."]})
    if not number.is_finite():
        raise ValidationError({field_name: [f"Must be a number, got {value!r}."]})
    if number < 0:
        raise ValidationError({field_name: ["Must not be negative."]})
    if number > MAX_PRICE:
        raise ValidationError({field_name: [f"Must not exceed {MAX_PRICE}."]})
    return number


def parse_row_date(value, field_name):
    """Accept ``2025-01-15``, ``2025/01/15``, ``2025.01.15`` and ISO datetimes."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    parsed = None
    try:
        parsed = parse_date(text.replace("/", "-").replace(".", "-"))
        if parsed is None:
            moment = parse_datetime(text)
            parsed = moment.date() if moment else None
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError({field_name: [f"Invalid date: {value!r}."]})
    return parsed


def _text(value):
    if value is None:
        return ""
    return str(value).strip()


class BulkImporter:
    upload_type = None
    # canonical field -> accepted column names, first non-empty wins
    aliases = {}

    def __init__(self, *, file_name="", performed_by=""):
        self.file_name = file_name or ""
        self.performed_by = performed_by or ""
        self._pending = []

    def build_lookups(self):
        """Load the master data rows refer to, once per batch."""

    def import_row(self, row):
        """Apply one normalized row; return a created code or None."""
        raise NotImplementedError

    def remember(self, lookup, obj):
        """Register a record created by the current row once the row commits."""
        self._pending.append((lookup, obj))

    def normalize(self, raw):
        row = {}
        for name, keys in self.aliases.items():
            for key in keys:
                value = raw.get(key)
                if isinstance(value, str):
                    value = value.strip()
                if value not in (None, ""):
                    row[name] = value
                    break
        return row

    def validate_batch(self, rows):
        if not isinstance(rows, (list, tuple)) or not rows:
            raise ValidationError({"data": ["Provide a non-empty list of rows to import."]})
        limit = getattr(settings, "BULK_IMPORT_MAX_ROWS", 5000)
        if len(rows) > limit:
            raise ValidationError({"data": [f"A batch may contain at most {limit} rows."]})

    def run(self, rows):
        self.validate_batch(rows)
        self.build_lookups()
        result = ImportResult()

        for index, raw in enumerate(rows):
            label = f"Row {index + 1}"
            if not isinstance(raw, Mapping):
                result.failed += 1
                result.errors.append(f"{label}: each row must be an object.")
                continue

            self._pending = []
            try:
                with transaction.atomic():
                    created = self.import_row(self.normalize(raw))
            except APIException as exc:
                result.failed += 1
                result.errors.append(f"{label}: {exception_message(exc)}")
                continue
            except IntegrityError:
                result.failed += 1
                result.errors.append(f"{label}: conflicts with existing data.")
                continue
            except (DatabaseError, ArithmeticError) as exc:
                logger.warning(
                    "bulk_import_row_rejected",
                    extra={"upload_type": self.upload_type, "row_number": index + 1, "error": str(exc)},
                )
                result.failed += 1
                result.errors.append(f"{label}: contains a value that cannot be stored.")
                continue

            for lookup, obj in self._pending:
                lookup.add(obj)
            result.success += 1
            if created:
                result.created_codes.append(created)

        result.log = self.write_log(len(rows), result)
        return result

    def write_log(self, total_rows, result):
        if result.failed == 0:
            status = BulkUploadLog.Status.COMPLETED
        elif result.success == 0:
            status = BulkUploadLog.Status.FAILED
        else:
            status = BulkUploadLog.Status.PARTIAL

        log = BulkUploadLog.objects.create(
            upload_type=self.upload_type,
            file_name=self.file_name,
            total_rows=total_rows,
            success_count=result.success,
            failed_count=result.failed,
            status=status,
            errors=result.errors,
            created_codes=result.created_codes,
            performed_by=self.performed_by,
        )
        emit_event(
            "bulk_upload",
            log.id,
            "complete",
            {"upload_type": log.upload_type, "status": log.status, "success": log.success_count, "failed": log.failed_count},
        )
        logger.info(
            "bulk_import_finished",
            extra={
                "upload_type": log.upload_type,
                "total_rows": total_rows,
                "success_count": result.success,
                "failed_count": result.failed,
            },
        )
        return log

    def find_part(self, row):
        code, name = row.get("part_code"), row.get("part_name")
        if not code and not name:
            raise ValidationError({"part_code": ["A part code or part name is required."]})
        part = self.parts.find(code, name)
        if part is None:
            raise NotFound(f"Part not found ({code or name}).")
        return part


class TransactionImporter(BulkImporter):
    upload_type = BulkUploadLog.UploadType.TRANSACTIONS
    aliases = {
        "part_code": ("부품코드", "partCode", "part_code", "부품번호"),
        "part_name": ("부품명", "partName", "part_name"),
        "transaction_type": ("유형", "transactionType", "transaction_type", "type", "구분"),
        "quantity": ("수량", "quantity"),
        "reference_type": ("참조유형", "referenceType", "reference_type"),
        "reference_id": ("참조번호", "referenceId", "reference_id"),
        "reason": ("사유", "reason"),
        "notes": ("비고", "notes"),
        "performed_by": ("담당자", "performedBy", "performed_by"),
    }

    def build_lookups(self):
        self.parts = Lookup(Part.objects.all())

    def import_row(self, row):
        part = self.find_part(row)
        if "transaction_type" not in row:
            raise ValidationError({"transaction_type": ["Transaction type is required."]})
        transaction_type = normalize_type(row["transaction_type"])
        quantity = parse_int(row.get("quantity"), "quantity")

        if row.get("reference_type"):
            reference = Reference.parse(row["reference_type"], row.get("reference_id"))
        else:
            reference = Reference.bulk_import(row.get("reference_id") or self.file_name or "bulk-upload")

        entry = apply_transaction(
            part,
            transaction_type,
            quantity,
            reference=reference,
            performed_by=_text(row.get("performed_by")) or self.performed_by,
            reason=_text(row.get("reason")),
            notes=_text(row.get("notes")),
        )
        return entry.code


class OrderImporter(BulkImporter):
    upload_type = BulkUploadLog.UploadType.ORDERS
    aliases = {
        "order_code": ("발주번호", "orderCode", "order_code", "주문번호"),
        "supplier": ("공급업체", "supplier", "업체명"),
        "project": ("프로젝트", "project"),
        "order_date": ("발주일", "orderDate", "order_date", "주문일"),
        "expected_date": ("납기예정일", "expectedDate", "expected_date", "납품예정일"),
        "part_code": ("파츠코드", "partCode", "part_code", "부품코드"),
        "part_name": ("파츠명", "partName", "part_name", "부품명"),
        "order_qty": ("수량", "orderQty", "order_qty", "발주수량"),
        "unit_price": ("단가", "unitPrice", "unit_price"),
        "notes": ("비고", "notes"),
    }

    def build_lookups(self):
        self.suppliers = Lookup(Supplier.objects.filter(is_active=True))
        self.parts = Lookup(Part.objects.all())

    def import_row(self, row):
        supplier_key = row.get("supplier")
        if not supplier_key:
            raise ValidationError({"supplier": ["Supplier is required."]})
        supplier = self.suppliers.find(code=supplier_key, name=supplier_key)
        if supplier is None:
            raise NotFound(f"Supplier not found ({supplier_key}).")

        part = self.find_part(row) if row.get("part_code") or row.get("part_name") else None
        order_date = parse_row_date(row.get("order_date"), "order_date") or timezone.localdate()
        expected_date = parse_row_date(row.get("expected_date"), "expected_date")
        order_qty = parse_int(row.get("order_qty"), "order_qty", default=0)
        unit_price = parse_decimal(row.get("unit_price"), "unit_price")
        if part is not None and order_qty <= 0:
            raise ValidationError({"order_qty": ["Order quantity must be greater than zero."]})
        if part is not None and not part.is_active:
            raise InvalidState(f"Part {part.code} is inactive.")

        code = _text(row.get("order_code"))
        order = Order.objects.select_for_update().filter(code=code).first() if code else None
        created_code = None
        if order is None:
            order = Order.objects.create(
                code=code or next_order_code(),
                supplier=supplier,
                project=_text(row.get("project")),
                order_date=order_date,
                expected_date=expected_date,
                notes=_text(row.get("notes")),
            )
            created_code = order.code
        elif order.status in CLOSED_ORDER_STATUSES:
            raise InvalidState(f"Order {order.code} is {order.status} and cannot be changed.")
        elif order.supplier_id != supplier.id:
            raise Conflict(f"Order {order.code} belongs to supplier {order.supplier.code}, not {supplier.code}.")

        if part is not None:
            set_line(order, part, order_qty, unit_price)
            recompute_order_total(order)
        return created_code


class ProductImporter(BulkImporter):
    upload_type = BulkUploadLog.UploadType.PRODUCTS
    aliases = {
        "product_code": ("제품코드", "productCode", "product_code", "코드"),
        "product_name": ("제품명", "productName", "product_name", "품명", "이름"),
        "description": ("설명", "description", "비고"),
        "category": ("카테고리", "category", "분류"),
        "unit": ("단위", "unit"),
    }

    def build_lookups(self):
        self.products = Lookup(Product.objects.all(), name_attr=None)

    def import_row(self, row):
        name = _text(row.get("product_name"))
        if not name:
            raise ValidationError({"product_name": ["Product name is required."]})

        values = {
            "name": name,
            "description": _text(row.get("description")),
            "category": _text(row.get("category")),
            "unit": _text(row.get("unit")) or "SET",
        }
        code = _text(row.get("product_code"))
        product = self.products.find(code=code) if code else None
        if product is not None:
            Product.objects.filter(pk=product.pk).update(updated_at=timezone.now(), **values)
            return None

        product = Product.objects.create(code=code or allocate_code("PRD", model=Product), **values)
        self.remember(self.products, product)
        return product.code


class PartImporter(BulkImporter):
    upload_type = BulkUploadLog.UploadType.PARTS
    aliases = {
        "part_code": ("부품코드", "partCode", "part_code", "부품번호", "partNumber"),
        "part_name": ("부품명", "partName", "part_name", "품명"),
        "description": ("규격", "description", "사양", "specification"),
        "unit": ("단위", "unit"),
        "unit_price": ("단가", "unitPrice", "unit_price", "가격"),
        "safety_stock": ("안전재고", "safetyStock", "safety_stock"),
        "reorder_point": ("재주문점", "reorderPoint", "reorder_point"),
        "min_order_qty": ("최소발주량", "minOrderQty", "min_order_qty", "MOQ"),
        "lead_time_days": ("리드타임", "leadTimeDays", "lead_time_days", "leadTime"),
        "storage_location": ("보관위치", "storageLocation", "storage_location", "location"),
        "category": ("카테고리", "category", "분류"),
        "supplier": ("공급업체", "supplier", "업체"),
    }

    def build_lookups(self):
        self.parts = Lookup(Part.objects.all(), name_attr=None)
        self.categories = Lookup(Category.objects.all(), code_attr=None)
        self.suppliers = Lookup(Supplier.objects.all())

    def import_row(self, row):
        name = _text(row.get("part_name"))
        if not name:
            raise ValidationError({"part_name": ["Part name is required."]})

        category = None
        if row.get("category"):
            category = self.categories.find(name=row["category"])
            if category is None:
                raise NotFound(f"Category not found ({row['category']}).")
        supplier = None
        if row.get("supplier"):
            supplier = self.suppliers.find(code=row["supplier"], name=row["supplier"])
            if supplier is None:
                raise NotFound(f"Supplier not found ({row['supplier']}).")

        values = {
            "name": name,
            "description": _text(row.get("description")),
            "unit": _text(row.get("unit")) or "EA",
            "unit_price": parse_decimal(row.get("unit_price"), "unit_price", Decimal("0")),
            "safety_stock": max(0, parse_int(row.get("safety_stock"), "safety_stock", 0)),
            "reorder_point": max(0, parse_int(row.get("reorder_point"), "reorder_point", 0)),
            "min_order_qty": max(1, parse_int(row.get("min_order_qty"), "min_order_qty", 1)),
            "lead_time_days": max(0, parse_int(row.get("lead_time_days"), "lead_time_days", 7)),
            "storage_location": _text(row.get("storage_location")),
            "category": category,
            "supplier": supplier,
        }
        code = _text(row.get("part_code"))
        part = self.parts.find(code=code) if code else None
        if part is not None:
            for attr, value in values.items():
                setattr(part, attr, value)
            part.save()
            Inventory.objects.get_or_create(part=part)
            return None

        part = Part.objects.create(code=code or allocate_code(date_scope("P"), model=Part), **values)
        Inventory.objects.create(part=part)
        self.remember(self.parts, part)
        return part.code


IMPORTERS = {
    BulkUploadLog.UploadType.TRANSACTIONS: TransactionImporter,
    BulkUploadLog.UploadType.ORDERS: OrderImporter,
    BulkUploadLog.UploadType.PRODUCTS: ProductImporter,
    BulkUploadLog.UploadType.PARTS: PartImporter,
}


def run_import(upload_type, rows, *, file_name="", performed_by=""):
    importer = IMPORTERS[upload_type](file_name=file_name, performed_by=performed_by)
    return importer.run(rows)
