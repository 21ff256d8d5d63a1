from datetime import date
from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.db import DataError
from django.test import TestCase, override_settings
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient

from imports.models import BulkUploadLog
from imports.services import TransactionImporter, parse_decimal, parse_int, parse_row_date, run_import
from inventory.ledger import apply_transaction
from inventory.models import Category, Inventory, Part, Product, Supplier, Transaction
from inventory.services import create_part
from orders.models import Order

ORDERS = BulkUploadLog.UploadType.ORDERS
PARTS = BulkUploadLog.UploadType.PARTS
PRODUCTS = BulkUploadLog.UploadType.PRODUCTS
TRANSACTIONS = BulkUploadLog.UploadType.TRANSACTIONS


class OrderImportTests(TestCase):
    def setUp(self):
        self.supplier = Supplier.objects.create(code="SUP-1", name="Acme")
        self.bolt = create_part(code="P-BOLT", name="Bolt", unit_price=Decimal("0.25"))
        self.nut = create_part(code="P-NUT", name="Nut", unit_price=Decimal("0.10"))

    def test_unknown_supplier_fails_only_its_row(self):
        rows = [
            {"orderCode": "PO-IMP-1", "supplier": "SUP-1", "partCode": "P-BOLT", "orderQty": 10},
            {"orderCode": "PO-IMP-1", "supplier": "Acme", "partCode": "P-NUT", "orderQty": 5, "unitPrice": "0.20"},
            {"supplier": "GHOST", "partCode": "P-BOLT", "orderQty": 1},
            {"supplier": "acme", "partName": "bolt", "orderQty": 3, "orderDate": "2025/01/15"},
            {"supplier": "SUP-1", "partCode": "P-NUT", "orderQty": 4},
        ]

        result = run_import(ORDERS, rows, file_name="orders.xlsx", performed_by="kim")

        self.assertEqual((result.success, result.failed), (4, 1))
        self.assertEqual(result.errors, ["Row 3: Supplier not found (GHOST)."])
        self.assertEqual(len(result.created_codes), 3)
        self.assertEqual(result.created_codes[0], "PO-IMP-1")
        for code in result.created_codes[1:]:
            self.assertRegex(code, r"^PO\d{4}-\d{4}$")

        merged = Order.objects.get(code="PO-IMP-1")
        self.assertEqual(merged.items.count(), 2)
        self.assertEqual(merged.total_amount, Decimal("3.50"))
        self.assertEqual(Order.objects.get(code=result.created_codes[1]).order_date, date(2025, 1, 15))

        log = result.log
        self.assertEqual(log.status, BulkUploadLog.Status.PARTIAL)
        self.assertEqual((log.total_rows, log.success_count, log.failed_count), (5, 4, 1))
        self.assertEqual(log.file_name, "orders.xlsx")
        self.assertEqual(log.performed_by, "kim")
        self.assertEqual(log.errors, result.errors)

    def test_unknown_part_is_a_row_error(self):
        result = run_import(ORDERS, [{"supplier": "SUP-1", "partCode": "P-NOPE", "orderQty": 1}])

        self.assertEqual(result.failed, 1)
        self.assertIn("Part not found", result.errors[0])
        self.assertFalse(Order.objects.exists())
        self.assertEqual(result.log.status, BulkUploadLog.Status.FAILED)

    def test_received_order_cannot_be_merged(self):
        run_import(ORDERS, [{"orderCode": "PO-IMP-2", "supplier": "SUP-1", "partCode": "P-BOLT", "orderQty": 1}])
        Order.objects.filter(code="PO-IMP-2").update(status=Order.Status.RECEIVED)

        result = run_import(ORDERS, [{"orderCode": "PO-IMP-2", "supplier": "SUP-1", "partCode": "P-NUT", "orderQty": 1}])

        self.assertEqual(result.failed, 1)
        self.assertEqual(Order.objects.get(code="PO-IMP-2").items.count(), 1)

    def test_explicit_zero_price_is_kept(self):
        run_import(ORDERS, [{"orderCode": "PO-IMP-4", "supplier": "SUP-1", "partCode": "P-BOLT", "orderQty": 2, "unitPrice": "0"}])

        item = Order.objects.get(code="PO-IMP-4").items.get()
        self.assertEqual(item.unit_price, Decimal("0.00"))
        self.assertEqual(item.total_price, Decimal("0.00"))

    def test_merge_with_other_supplier_is_a_row_error(self):
        Supplier.objects.create(code="SUP-2", name="Other")
        rows = [
            {"orderCode": "PO-IMP-3", "supplier": "SUP-1", "partCode": "P-BOLT", "orderQty": 1},
            {"orderCode": "PO-IMP-3", "supplier": "SUP-2", "partCode": "P-NUT", "orderQty": 1},
        ]

        result = run_import(ORDERS, rows)

        self.assertEqual((result.success, result.failed), (1, 1))
        self.assertEqual(result.errors, ["Row 2: Order PO-IMP-3 belongs to supplier SUP-1, not SUP-2."])
        order = Order.objects.get(code="PO-IMP-3")
        self.assertEqual(order.supplier, self.supplier)
        self.assertEqual(order.items.count(), 1)

    def test_korean_headers(self):
        result = run_import(ORDERS, [{"발주번호": "PO-KR-1", "공급업체": "Acme", "부품코드": "P-NUT", "수량": "12"}])

        self.assertEqual(result.success, 1)
        self.assertEqual(Order.objects.get(code="PO-KR-1").items.get().order_qty, 12)


class TransactionImportTests(TestCase):
    def setUp(self):
        self.part = create_part(code="P-IMP", name="Gasket")

    def test_rows_post_ledger_entries_independently(self):
        rows = [
            {"부품코드": "P-IMP", "유형": "입고", "수량": "1,000"},
            {"partName": "gasket", "transactionType": "OUT", "quantity": 5},
            {"partCode": "P-IMP", "transactionType": "OUTBOUND", "quantity": 5000},
            {"partCode": "P-IMP", "quantity": 1},
            "not a row",
            {"partCode": "P-IMP", "transactionType": "ADJ", "quantity": 900, "referenceType": "AUDIT", "referenceId": "AUD-1"},
        ]

        result = run_import(TRANSACTIONS, rows, file_name="moves.csv")

        self.assertEqual((result.success, result.failed), (3, 3))
        self.assertTrue(result.errors[0].startswith("Row 3: Insufficient stock"))
        self.assertTrue(result.errors[1].startswith("Row 4: transaction_type"))
        self.assertEqual(result.errors[2], "Row 5: each row must be an object.")
        self.assertEqual(Inventory.objects.get(part=self.part).current_qty, 900)

        entries = Transaction.objects.filter(part=self.part).order_by("transaction_date", "created_at")
        self.assertEqual([entry.after_qty for entry in entries], [1000, 995, 900])
        self.assertEqual(entries[0].reference_type, Transaction.ReferenceType.IMPORT)
        self.assertEqual(entries[0].reference_id, "moves.csv")
        self.assertEqual(entries[2].reference_type, Transaction.ReferenceType.AUDIT)
        self.assertEqual(result.created_codes, [entry.code for entry in entries])

    def test_non_finite_and_oversized_quantities_fail_only_their_rows(self):
        rows = [
            {"partCode": "P-IMP", "transactionType": "IN", "quantity": 5},
            {"partCode": "P-IMP", "transactionType": "IN", "quantity": "Infinity"},
            {"partCode": "P-IMP", "transactionType": "IN", "quantity": "NaN"},
            {"partCode": "P-IMP", "transactionType": "IN", "quantity": "99999999999999999999"},
            {"partCode": "P-IMP", "transactionType": "IN", "quantity": 1},
        ]

        result = run_import(TRANSACTIONS, rows)

        self.assertEqual((result.success, result.failed), (2, 3))
        for error, row in zip(result.errors, (2, 3, 4)):
            self.assertTrue(error.startswith(f"Row {row}: quantity"), error)
        self.assertEqual(Inventory.objects.get(part=self.part).current_qty, 6)
        self.assertEqual(result.log.status, BulkUploadLog.Status.PARTIAL)

    def test_storage_errors_are_row_errors(self):
        failures = ["IN-0001", DataError("value out of range"), OverflowError("int too large")]

        with mock.patch.object(TransactionImporter, "import_row", side_effect=failures):
            result = run_import(TRANSACTIONS, [{}, {}, {}])

        self.assertEqual((result.success, result.failed), (1, 2))
        self.assertEqual(
            result.errors,
            ["Row 2: contains a value that cannot be stored.", "Row 3: contains a value that cannot be stored."],
        )
        self.assertEqual(BulkUploadLog.objects.get().status, BulkUploadLog.Status.PARTIAL)

    def test_inactive_part_is_a_row_error(self):
        apply_transaction(self.part, "INBOUND", 3)
        Part.objects.filter(pk=self.part.pk).update(is_active=False)

        result = run_import(TRANSACTIONS, [{"partCode": "P-IMP", "transactionType": "OUT", "quantity": 1}])

        self.assertEqual(result.failed, 1)
        self.assertIn("inactive", result.errors[0])
        self.assertEqual(Inventory.objects.get(part=self.part).current_qty, 3)

    def test_empty_batch_is_rejected(self):
        with self.assertRaises(ValidationError):
            run_import(TRANSACTIONS, [])
        self.assertFalse(BulkUploadLog.objects.exists())

    @override_settings(BULK_IMPORT_MAX_ROWS=2)
    def test_batch_size_limit(self):
        with self.assertRaises(ValidationError):
            run_import(TRANSACTIONS, [{}, {}, {}])


class MasterDataImportTests(TestCase):
    def setUp(self):
        self.category = Category.objects.create(name="Fasteners")
        self.supplier = Supplier.objects.create(code="SUP-1", name="Acme")

    def test_part_import_creates_and_updates(self):
        create_part(code="P-OLD", name="Old name")
        rows = [
            {"partCode": "P-OLD", "partName": "New name", "safetyStock": "5", "category": "fasteners"},
            {"부품명": "Spring", "단가": "1.20", "공급업체": "Acme", "보관위치": "C-01-01"},
            {"partName": "Orphan", "category": "Missing"},
            {"partCode": "P-NEW", "partName": "New part", "leadTime": "x"},
        ]

        result = run_import(PARTS, rows)

        self.assertEqual((result.success, result.failed), (2, 2))
        self.assertEqual(result.errors[0], "Row 3: Category not found (Missing).")
        self.assertTrue(result.errors[1].startswith("Row 4: lead_time_days"))
        updated = Part.objects.get(code="P-OLD")
        self.assertEqual((updated.name, updated.safety_stock, updated.category), ("New name", 5, self.category))
        spring = Part.objects.get(code=result.created_codes[0])
        self.assertRegex(spring.code, r"^P\d{4}-0001$")
        self.assertEqual(spring.supplier, self.supplier)
        self.assertEqual(Inventory.objects.get(part=spring).current_qty, 0)
        self.assertFalse(Part.objects.filter(code="P-NEW").exists())

    def test_non_numeric_price_fails_only_its_row(self):
        rows = [
            {"partName": "Spring", "unitPrice": "1.20"},
            {"partName": "Broken", "unitPrice": "NaN"},
            {"partName": "Huge", "unitPrice": "1e20"},
            {"partName": "Clip", "unitPrice": "0"},
        ]

        result = run_import(PARTS, rows)

        self.assertEqual((result.success, result.failed), (2, 2))
        self.assertTrue(result.errors[0].startswith("Row 2: unit_price"))
        self.assertTrue(result.errors[1].startswith("Row 3: unit_price"))
        self.assertEqual(BulkUploadLog.objects.get().failed_count, 2)

    def test_product_import_allocates_codes_and_upserts(self):
        result = run_import(
            PRODUCTS,
            [
                {"productName": "Kit A"},
                {"제품명": "Kit B", "카테고리": "Kits"},
                {"productCode": "PRD-0001", "productName": "Kit A v2"},
                {"description": "no name"},
            ],
        )

        self.assertEqual(result.created_codes, ["PRD-0001", "PRD-0002"])
        self.assertEqual(result.failed, 1)
        self.assertEqual(Product.objects.get(code="PRD-0001").name, "Kit A v2")
        self.assertEqual(Product.objects.get(code="PRD-0002").category, "Kits")


class ParserTests(TestCase):
    def test_parse_int(self):
        self.assertEqual(parse_int("1,200", "quantity"), 1200)
        self.assertEqual(parse_int("", "quantity", default=0), 0)
        for value in ("1.5", "abc", None, True):
            with self.subTest(value=value):
                with self.assertRaises(ValidationError):
                    parse_int(value, "quantity")

    def test_parse_int_rejects_non_finite_and_out_of_range(self):
        for value in ("Infinity", "-inf", "NaN", "99999999999999999999"):
            with self.subTest(value=value):
                with self.assertRaises(ValidationError):
                    parse_int(value, "quantity")

    def test_parse_decimal(self):
        self.assertEqual(parse_decimal("1,250.50", "unit_price"), Decimal("1250.50"))
        self.assertEqual(parse_decimal("0", "unit_price"), Decimal("0"))
        self.assertIsNone(parse_decimal("", "unit_price"))
        for value in ("NaN", "Infinity", "1e20", "-1", "abc"):
            with self.subTest(value=value):
                with self.assertRaises(ValidationError):
                    parse_decimal(value, "unit_price")

    def test_parse_row_date(self):
        for value in ("2025-01-15", "2025/01/15", "2025.01.15", "2025-01-15T09:00:00"):
            with self.subTest(value=value):
                self.assertEqual(parse_row_date(value, "order_date"), date(2025, 1, 15))
        with self.assertRaises(ValidationError):
            parse_row_date("15th Jan", "order_date")


class BulkImportApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.manager = user_model.objects.create_user(
            username="manager",
            password="pass1234",
            role=user_model.Role.MANAGER,
        )
        self.operator = user_model.objects.create_user(
            username="operator",
            password="pass1234",
            role=user_model.Role.OPERATOR,
        )
        self.part = create_part(code="P-API", name="Widget")

    def test_bulk_transactions_endpoint(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(
            "/api/v1/transactions/bulk/",
            {"data": [{"partCode": "P-API", "transactionType": "IN", "quantity": 4}], "file_name": "a.csv"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual((payload["success"], payload["failed"]), (1, 0))
        log = BulkUploadLog.objects.get(pk=payload["log_id"])
        self.assertEqual(log.status, BulkUploadLog.Status.COMPLETED)
        self.assertEqual(log.performed_by, "manager")

        response = self.client.get("/api/v1/bulk-upload-logs/", {"upload_type": "transactions"})
        self.assertEqual(response.json()["count"], 1)

    def test_empty_or_malformed_payload_returns_400(self):
        self.client.force_authenticate(user=self.manager)

        for body in ({"data": []}, {"data": "rows"}, {}):
            with self.subTest(body=body):
                response = self.client.post("/api/v1/parts/bulk/", body, format="json")
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json()["code"], "validation_error")
        self.assertFalse(BulkUploadLog.objects.exists())

    def test_operator_cannot_bulk_import(self):
        self.client.force_authenticate(user=self.operator)

        response = self.client.post("/api/v1/orders/bulk/", {"data": [{}]}, format="json")

        self.assertEqual(response.status_code, 403)
